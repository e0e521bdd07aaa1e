"""
Claim sync control plane: synchronizer, polling scheduler, HTTP surface.
"""
