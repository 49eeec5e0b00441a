"""
Inventory app: catalogue items, expiry batches and the stock movement log.
"""
