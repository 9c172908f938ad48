"""
Coconut stock inventory.

Models:
- InventoryItem (one stock line: name, type, quantity, unit, location, status)
  optionally bound to one Blob picture through asset_id.
"""
