from .tenancy import Business, new_id
from .inventory import Product, StockMovement, MOVEMENT_TYPES
from .sales import Sale, SaleItem
from .fiscal import FiscalConfig, FiscalDocument, FiscalDocumentItem, NFCE_STATUSES, AMBIENTES

__all__ = [
    'Business', 'new_id',
    'Product', 'StockMovement', 'MOVEMENT_TYPES',
    'Sale', 'SaleItem',
    'FiscalConfig', 'FiscalDocument', 'FiscalDocumentItem', 'NFCE_STATUSES', 'AMBIENTES',
]
