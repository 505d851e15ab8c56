"""Application settings."""

import os


class Config:
    """Runtime settings read from the environment."""

    def __init__(self):
        self.currency = os.environ.get("SHOP_CURRENCY", "USD")
