"""Entry point for the inventory demo."""

from inventory import Catalog, find_item
from settings import Config


def main():
    config = Config()
    catalog = Catalog()
    catalog.add("A-100", "Widget", 9.5)
    return find_item(catalog, "A-100"), config


if __name__ == "__main__":
    main()
