# Overview: Fixed role -> capability mapping.

from .definitions import CAPABILITY_DEFINITIONS


WEBSITE_ADMIN = "website_admin"
BUSINESS_PROCESSING = "business_processing"
CUSTOMER = "customer"

ROLES = (WEBSITE_ADMIN, BUSINESS_PROCESSING, CUSTOMER)

# Roles that may sign in to the admin console.
ADMIN_ROLES = (WEBSITE_ADMIN, BUSINESS_PROCESSING)


ROLE_CAPABILITIES = {
    # Everything except the customer-only capability
    WEBSITE_ADMIN: frozenset(
        code for code, _name, _desc, _cat in CAPABILITY_DEFINITIONS if code != "VIEW_OWN_ORDERS"
    ),
    BUSINESS_PROCESSING: frozenset({
        "VIEW_ALL_ORDERS",
        "UPDATE_ORDER_STATUS",
        "VIEW_PRODUCTS",
        "CREATE_PRODUCTS",
        "EDIT_PRODUCTS",
        "DELETE_PRODUCTS",
        "VIEW_MEDIA",
        "UPLOAD_MEDIA",
        "DELETE_MEDIA",
        "VIEW_GIFT_CARDS",
    }),
    CUSTOMER: frozenset({"VIEW_OWN_ORDERS"}),
}
