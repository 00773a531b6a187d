# Overview: Authorization engine package.
# Re-exports all public APIs for short imports.

from .categories import CapabilityCategory
from .definitions import (
    CAPABILITY_DEFINITIONS,
    ORDER_CAPABILITIES,
    PRODUCT_CAPABILITIES,
    MEDIA_CAPABILITIES,
    SETTINGS_CAPABILITIES,
    USER_CAPABILITIES,
    AUDIT_CAPABILITIES,
    PROMOTION_CAPABILITIES,
)
from .roles import (
    ROLE_CAPABILITIES,
    ROLES,
    ADMIN_ROLES,
    WEBSITE_ADMIN,
    BUSINESS_PROCESSING,
    CUSTOMER,
)
from .helpers import (
    get_all_capability_codes,
    get_capabilities_by_category,
    get_capability_definition,
    get_capabilities_for_role,
    validate_capability_code,
)
from .engine import role_of, has, has_any, has_all, has_role, require_cap

__all__ = [
    "CapabilityCategory",
    "CAPABILITY_DEFINITIONS",
    "ORDER_CAPABILITIES",
    "PRODUCT_CAPABILITIES",
    "MEDIA_CAPABILITIES",
    "SETTINGS_CAPABILITIES",
    "USER_CAPABILITIES",
    "AUDIT_CAPABILITIES",
    "PROMOTION_CAPABILITIES",
    "ROLE_CAPABILITIES",
    "ROLES",
    "ADMIN_ROLES",
    "WEBSITE_ADMIN",
    "BUSINESS_PROCESSING",
    "CUSTOMER",
    "get_all_capability_codes",
    "get_capabilities_by_category",
    "get_capability_definition",
    "get_capabilities_for_role",
    "validate_capability_code",
    "role_of",
    "has",
    "has_any",
    "has_all",
    "has_role",
    "require_cap",
]
