"""
claimsync - reconciles a content-addressed claim store with a local entry index.

Claims are written to content-addressed storage and their addresses are
recorded in the entry index. Addresses discovered elsewhere are registered as
unresolved entries and resolved lazily by a polling scheduler.
"""

__version__ = "1.0.0"
