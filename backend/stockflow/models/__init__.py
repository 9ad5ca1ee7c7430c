from .stores import Store
from .inventory import CentralStockLine, StoreStockLine
from .shipments import Shipment, ShipmentLine
from .sales import Sale, SaleLine
from .expenses import Expense
from .ledger import LedgerEvent

__all__ = [
    'Store',
    'CentralStockLine', 'StoreStockLine',
    'Shipment', 'ShipmentLine',
    'Sale', 'SaleLine',
    'Expense',
    'LedgerEvent',
]
