"""
Event publishing for stored and resolved claims.
"""
