"""Effective module / sub-module access from explicit grant rows.

Absence of configuration means unrestricted: a module with no rows at all is
accessible and a sub-module without its own row is viewable. When no grant set
could be loaded the configured default policy decides, which with ``allow``
(the shipped default) opens everything. That fallback is a trust-boundary
decision and is logged every time it is taken.
"""
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from projectcore.core.logging import logger
from projectcore.db.models.permission import AccessLevel
from projectcore.services.wbs.hierarchy import field_of


class DefaultPolicy(str, Enum):
    allow = "allow"
    deny = "deny"


# Modules known to the product and their sub-modules
MODULE_CATALOGUE: dict[str, list[str]] = {
    "projects": ["overview", "wbs", "schedule", "tasks", "files", "team"],
    "finance": ["invoices", "bills", "estimates", "cashflow", "settings"],
    "sales": ["leads", "estimation", "structuring"],
    "ai": ["chat", "knowledge"],
    "admin": ["users", "permissions", "company"],
}


def _level(value: Any) -> AccessLevel:
    try:
        return AccessLevel(getattr(value, "value", value))
    except ValueError:
        logger.warning("permission_unknown_access_level", access_level=value)
        return AccessLevel.no_access


class PermissionResolver:
    def __init__(
        self,
        grants: Iterable[Any] | None,
        default_policy: DefaultPolicy | str = DefaultPolicy.allow,
        user_id: str | None = None,
        company_id: str | None = None,
    ):
        self.default_policy = DefaultPolicy(default_policy)
        self.user_id = user_id
        self.company_id = company_id
        self.loaded = grants is not None
        self._by_module: dict[str, list[AccessLevel]] = {}
        self._exact: dict[tuple[str, str], AccessLevel] = {}
        if grants is None:
            logger.warning(
                "permission_context_missing",
                policy=self.default_policy.value,
                user_id=user_id,
                company_id=company_id,
                note="no grants loaded; access decided by default policy",
            )
            return
        for g in grants:
            module_id = field_of(g, "module_id")
            sub_module_id = field_of(g, "sub_module_id")
            level = _level(field_of(g, "access_level"))
            self._by_module.setdefault(module_id, []).append(level)
            if sub_module_id is not None:
                self._exact[(module_id, sub_module_id)] = level

    def has_module_access(self, module_id: str) -> bool:
        if not self.loaded:
            return self.default_policy == DefaultPolicy.allow
        levels = self._by_module.get(module_id)
        if not levels:
            return True
        return any(lvl != AccessLevel.no_access for lvl in levels)

    def sub_module_access_level(self, module_id: str, sub_module_id: str) -> AccessLevel:
        if not self.loaded:
            return AccessLevel.can_edit if self.default_policy == DefaultPolicy.allow else AccessLevel.no_access
        return self._exact.get((module_id, sub_module_id), AccessLevel.can_view)

    def can_view(self, module_id: str, sub_module_id: str) -> bool:
        return self.sub_module_access_level(module_id, sub_module_id) in (AccessLevel.can_view, AccessLevel.can_edit)

    def can_edit(self, module_id: str, sub_module_id: str) -> bool:
        return self.sub_module_access_level(module_id, sub_module_id) == AccessLevel.can_edit

    def summary(self, catalogue: Mapping[str, list[str]] = MODULE_CATALOGUE):
        modules = {m: self.has_module_access(m) for m in catalogue}
        subs = {m: {s: self.sub_module_access_level(m, s) for s in catalogue[m]} for m in catalogue}
        return modules, subs
