from .farm import Property, Season, Machine
from .inventory import Product, Batch
from .catalog import Item, ITEM_TYPES, ITEM_TYPE_STOCK, ITEM_TYPE_SERVICE, ITEM_TYPE_MACHINE_HOUR
from .entries import Entry, EntryLine, AuditEvent, ENTRY_STATUS_COMMITTED

__all__ = [
    'Property', 'Season', 'Machine',
    'Product', 'Batch',
    'Item', 'ITEM_TYPES', 'ITEM_TYPE_STOCK', 'ITEM_TYPE_SERVICE', 'ITEM_TYPE_MACHINE_HOUR',
    'Entry', 'EntryLine', 'AuditEvent', 'ENTRY_STATUS_COMMITTED',
]
