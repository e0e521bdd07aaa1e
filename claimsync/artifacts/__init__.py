"""
Content-addressed storage for serialized claims.
"""
