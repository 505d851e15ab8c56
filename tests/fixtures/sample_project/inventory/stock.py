"""Stock levels for catalog items."""

from .catalog import Catalog


class Config:
    """Reorder thresholds for stock levels."""

    def __init__(self, reorder_at=5):
        self.reorder_at = reorder_at


class StockLevel:
    """Quantity on hand for one SKU."""

    def __init__(self, catalog: Catalog, sku, quantity=0):
        self.catalog = catalog
        self.sku = sku
        self.quantity = quantity

    def needs_reorder(self, config: Config):
        return self.quantity <= config.reorder_at

    def item(self):
        return self.catalog.find(self.sku)
