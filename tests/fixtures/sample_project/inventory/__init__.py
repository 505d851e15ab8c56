"""Inventory package: catalog lookups and stock levels."""

from .catalog import Catalog, find_item
from .stock import StockLevel
