"""
Entry index for content addresses.

Tracks, per address, whether the claim behind it has been resolved and the
retry bookkeeping for resolution attempts.
"""
