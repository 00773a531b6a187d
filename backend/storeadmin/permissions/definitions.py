# Overview: All capability definitions organized by category.
# Each capability is defined as: (code, name, description, category)

from .categories import CapabilityCategory


# -- ORDERS --

ORDER_CAPABILITIES = [
    (
        "VIEW_OWN_ORDERS",
        "View Own Orders",
        "View orders placed by the signed-in customer",
        CapabilityCategory.ORDERS,
    ),
    (
        "VIEW_ALL_ORDERS",
        "View All Orders",
        "View every order, including decrypted contact details",
        CapabilityCategory.ORDERS,
    ),
    (
        "UPDATE_ORDER_STATUS",
        "Update Order Status",
        "Record orders and change their status and notes",
        CapabilityCategory.ORDERS,
    ),
]

# -- PRODUCTS --

PRODUCT_CAPABILITIES = [
    ("VIEW_PRODUCTS", "View Products", "View the product catalogue in the admin console", CapabilityCategory.PRODUCTS),
    ("CREATE_PRODUCTS", "Create Products", "Add products to the catalogue", CapabilityCategory.PRODUCTS),
    ("EDIT_PRODUCTS", "Edit Products", "Change product details, prices and stock", CapabilityCategory.PRODUCTS),
    ("DELETE_PRODUCTS", "Delete Products", "Remove products from the catalogue", CapabilityCategory.PRODUCTS),
]

# -- MEDIA --

MEDIA_CAPABILITIES = [
    ("VIEW_MEDIA", "View Media", "Browse the media library", CapabilityCategory.MEDIA),
    ("UPLOAD_MEDIA", "Upload Media", "Upload and rename media files", CapabilityCategory.MEDIA),
    ("DELETE_MEDIA", "Delete Media", "Delete media files", CapabilityCategory.MEDIA),
]

# -- SETTINGS --

SETTINGS_CAPABILITIES = [
    ("VIEW_SETTINGS", "View Settings", "View site configuration", CapabilityCategory.SETTINGS),
    ("EDIT_SETTINGS", "Edit Settings", "Change or reset site configuration", CapabilityCategory.SETTINGS),
]

# -- USERS --

USER_CAPABILITIES = [
    ("VIEW_USERS", "View Users", "List admin accounts", CapabilityCategory.USERS),
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create admin accounts, change roles and deactivate accounts",
        CapabilityCategory.USERS,
    ),
]

# -- AUDIT --

AUDIT_CAPABILITIES = [
    ("VIEW_AUDIT_LOGS", "View Audit Logs", "Search the audit trail of privileged actions", CapabilityCategory.AUDIT),
]

# -- PROMOTIONS --

PROMOTION_CAPABILITIES = [
    ("MANAGE_DISCOUNTS", "Manage Discounts", "Create and edit discount codes", CapabilityCategory.PROMOTIONS),
    ("VIEW_GIFT_CARDS", "View Gift Cards", "View gift cards and their transaction history", CapabilityCategory.PROMOTIONS),
    (
        "MANAGE_GIFT_CARDS",
        "Manage Gift Cards",
        "Issue, adjust, redeem, refund and cancel gift cards",
        CapabilityCategory.PROMOTIONS,
    ),
]


CAPABILITY_DEFINITIONS = (
    ORDER_CAPABILITIES
    + PRODUCT_CAPABILITIES
    + MEDIA_CAPABILITIES
    + SETTINGS_CAPABILITIES
    + USER_CAPABILITIES
    + AUDIT_CAPABILITIES
    + PROMOTION_CAPABILITIES
)
