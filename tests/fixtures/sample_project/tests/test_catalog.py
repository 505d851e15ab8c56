from inventory.catalog import Catalog, find_item


def test_find_item_returns_added_entry():
    catalog = Catalog()
    catalog.add("A-1", "Widget", 1.0)
    assert find_item(catalog, "A-1") is not None


def test_missing_sku():
    assert Catalog().find("nope") is None
