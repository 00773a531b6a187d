# Overview: Pure role/capability checks consulted by every privileged endpoint.

from __future__ import annotations

from typing import Any, Iterable, Mapping

from flask import jsonify

from .roles import ROLE_CAPABILITIES


def role_of(user: Any) -> str | None:
    """Role of an identity row, a session descriptor, or a {"role": ...} mapping."""
    if user is None:
        return None
    if isinstance(user, Mapping):
        role = user.get("role")
    else:
        role = getattr(user, "role", None)
    return role if isinstance(role, str) else None


def has(user: Any, capability: str) -> bool:
    role = role_of(user)
    if role is None:
        return False
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def has_any(user: Any, capabilities: Iterable[str]) -> bool:
    return any(has(user, cap) for cap in capabilities)


def has_all(user: Any, capabilities: Iterable[str]) -> bool:
    return all(has(user, cap) for cap in capabilities)


def has_role(user: Any, roles: str | Iterable[str]) -> bool:
    role = role_of(user)
    if role is None or role not in ROLE_CAPABILITIES:
        return False
    if isinstance(roles, str):
        roles = (roles,)
    return role in set(roles)


def require_cap(user: Any, capability: str):
    """None when allowed, else a uniform 403 response (the capability is not echoed)."""
    if has(user, capability):
        return None
    return jsonify({"error": "insufficient permissions"}), 403
