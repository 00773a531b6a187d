# Overview: Capability category constants for grouping related capabilities.


class CapabilityCategory:
    """Capability categories for organization and UI display."""
    ORDERS = "ORDERS"
    PRODUCTS = "PRODUCTS"
    MEDIA = "MEDIA"
    SETTINGS = "SETTINGS"
    USERS = "USERS"
    AUDIT = "AUDIT"
    PROMOTIONS = "PROMOTIONS"
