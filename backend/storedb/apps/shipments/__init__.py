"""
Shipments and receipts: stock leaving for, and arriving from, outside parties.
"""
