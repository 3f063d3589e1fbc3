from __future__ import annotations
from dataclasses import dataclass
from flask import current_app
from admin_trust.services.permission_cache import PermissionCache, DEFAULT_TTL_SECONDS
from admin_trust.services.policy import PermissionResolver
from admin_trust.services.role_admin import RoleAdmin
from admin_trust.services.audit import AuditLedger


@dataclass
class AdminServices:
    cache: PermissionCache
    resolver: PermissionResolver
    roles: RoleAdmin
    ledger: AuditLedger


def build_services(session_factory, cache_ttl_seconds: float = DEFAULT_TTL_SECONDS) -> AdminServices:
    cache = PermissionCache(ttl_seconds=cache_ttl_seconds)
    resolver = PermissionResolver(session_factory, cache)
    return AdminServices(
        cache=cache,
        resolver=resolver,
        roles=RoleAdmin(session_factory, resolver),
        ledger=AuditLedger(session_factory),
    )


def current_services() -> AdminServices:
    return current_app.extensions['admin_trust']
