"""
Stores app: store records, per-store stock levels, store selection.
"""
