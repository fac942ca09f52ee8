"""Role-based access control (RBAC) for TrustDesk.

Defines the permission rule table, the ``authorize`` decision function and
field redaction for read responses.

The rule table is built once at import time into a read-only mapping keyed
by ``(resource, action)``. A pair without a rule is denied for every role.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from trustdesk.core.models import UserRole
from trustdesk.core.principals import Principal


class Resource(enum.StrEnum):
    CONTACT = "contact"
    OPPORTUNITY = "opportunity"
    ACTIVITY = "activity"
    NCR = "ncr"
    DOCUMENT = "document"
    SUPPLIER = "supplier"
    CONSENT = "consent"
    DSR = "dsr"


class Action(enum.StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    RECORD = "record"
    WITHDRAW = "withdraw"
    ASSIGN = "assign"
    COMPLETE = "complete"
    REJECT = "reject"
    ERASE = "erase"


# Ordered from most to least privileged. Used for stable ordering when
# listing roles; authorization never compares positions.
ROLE_HIERARCHY: list[UserRole] = [
    UserRole.ADMIN,
    UserRole.QA,
    UserRole.MANAGER,
    UserRole.AGENT,
    UserRole.VIEWER,
]

REDACTION_MASK = "***"


@dataclass(frozen=True)
class PermissionRule:
    """Which roles may perform an action, and what each role sees redacted."""

    resource: Resource
    action: Action
    allowed_roles: frozenset[UserRole]
    redacted_fields_for: Mapping[UserRole, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""

    allow: bool
    redact: frozenset[str] = frozenset()


DENY = Decision(allow=False)

_ALL_ROLES = frozenset(UserRole)
_SALES_WRITERS = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.AGENT})
_QUALITY_ROLES = frozenset({UserRole.ADMIN, UserRole.QA, UserRole.MANAGER})
_PRIVACY_OFFICERS = _QUALITY_ROLES


def _rule(
    resource: Resource,
    action: Action,
    roles: Iterable[UserRole],
    redacted: dict[UserRole, set[str]] | None = None,
) -> PermissionRule:
    return PermissionRule(
        resource=resource,
        action=action,
        allowed_roles=frozenset(roles),
        redacted_fields_for=MappingProxyType({role: frozenset(f) for role, f in (redacted or {}).items()}),
    )


def _build_rules(rules: Iterable[PermissionRule]) -> Mapping[tuple[Resource, Action], PermissionRule]:
    table: dict[tuple[Resource, Action], PermissionRule] = {}
    for rule in rules:
        key = (rule.resource, rule.action)
        if key in table:
            raise ValueError(f"Duplicate permission rule for {rule.resource}:{rule.action}")
        table[key] = rule
    return MappingProxyType(table)


# ---------------------------------------------------------------------------
# Permission table
# ---------------------------------------------------------------------------

PERMISSION_RULES: Mapping[tuple[Resource, Action], PermissionRule] = _build_rules(
    [
        # CRM
        _rule(
            Resource.CONTACT,
            Action.READ,
            {UserRole.ADMIN, UserRole.MANAGER, UserRole.AGENT, UserRole.VIEWER},
            redacted={UserRole.VIEWER: {"email"}},
        ),
        _rule(Resource.CONTACT, Action.CREATE, _SALES_WRITERS),
        _rule(Resource.CONTACT, Action.UPDATE, _SALES_WRITERS),
        _rule(Resource.CONTACT, Action.DELETE, {UserRole.ADMIN, UserRole.MANAGER}),
        _rule(Resource.OPPORTUNITY, Action.READ, _ALL_ROLES),
        _rule(Resource.OPPORTUNITY, Action.CREATE, _SALES_WRITERS),
        _rule(Resource.ACTIVITY, Action.READ, _ALL_ROLES),
        _rule(Resource.ACTIVITY, Action.CREATE, _SALES_WRITERS),
        # ISO quality management
        _rule(Resource.NCR, Action.READ, _QUALITY_ROLES),
        _rule(Resource.NCR, Action.CREATE, _QUALITY_ROLES),
        _rule(Resource.DOCUMENT, Action.READ, _ALL_ROLES),
        _rule(Resource.DOCUMENT, Action.CREATE, _QUALITY_ROLES),
        _rule(Resource.DOCUMENT, Action.APPROVE, _QUALITY_ROLES),
        _rule(Resource.SUPPLIER, Action.READ, _QUALITY_ROLES),
        _rule(Resource.SUPPLIER, Action.CREATE, _QUALITY_ROLES),
        # Privacy
        _rule(Resource.CONSENT, Action.READ, _PRIVACY_OFFICERS),
        _rule(Resource.CONSENT, Action.RECORD, _PRIVACY_OFFICERS),
        _rule(Resource.CONSENT, Action.WITHDRAW, _PRIVACY_OFFICERS),
        _rule(Resource.DSR, Action.READ, _PRIVACY_OFFICERS),
        _rule(Resource.DSR, Action.CREATE, _PRIVACY_OFFICERS),
        _rule(Resource.DSR, Action.ASSIGN, _PRIVACY_OFFICERS),
        _rule(Resource.DSR, Action.COMPLETE, _PRIVACY_OFFICERS),
        _rule(Resource.DSR, Action.REJECT, _PRIVACY_OFFICERS),
        _rule(Resource.DSR, Action.ERASE, {UserRole.ADMIN}),
    ]
)


def authorize(
    principal: Principal,
    resource: Resource | str,
    action: Action | str,
    rules: Mapping[tuple[Resource, Action], PermissionRule] = PERMISSION_RULES,
) -> Decision:
    """Decide whether a principal may perform an action on a resource.

    Args:
        principal: The authenticated caller.
        resource: Resource name (e.g. "contact").
        action: Action name (e.g. "read").
        rules: Rule table; defaults to the process-wide table.

    Returns:
        Decision with ``allow`` and the fields to redact on read.
    """
    try:
        key = (Resource(resource), Action(action))
    except ValueError:
        return DENY

    rule = rules.get(key)
    if rule is None or principal.role not in rule.allowed_roles:
        return DENY
    return Decision(allow=True, redact=rule.redacted_fields_for.get(principal.role, frozenset()))


def allowed_roles(resource: Resource, action: Action) -> list[UserRole]:
    """Roles allowed for a pair, ordered by ROLE_HIERARCHY (empty if no rule)."""
    rule = PERMISSION_RULES.get((resource, action))
    if rule is None:
        return []
    return [role for role in ROLE_HIERARCHY if role in rule.allowed_roles]


def capabilities(principal: Principal) -> list[str]:
    """All ``resource:action`` pairs the principal's role may perform."""
    return sorted(
        f"{resource.value}:{action.value}"
        for (resource, action), rule in PERMISSION_RULES.items()
        if principal.role in rule.allowed_roles
    )


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def mask_email(value: str) -> str:
    """Keep the first two characters of the local part and the domain.

    ``jane.doe@example.com`` becomes ``ja***@example.com``.
    """
    local, at, domain = value.rpartition("@")
    if not at:
        return f"{value[:2]}{REDACTION_MASK}"
    return f"{local[:2]}{REDACTION_MASK}@{domain}"


def mask_value(field_name: str, value: Any) -> Any:
    """Mask one field value; ``None`` stays ``None``."""
    if value is None:
        return None
    if field_name == "email":
        return mask_email(str(value))
    return REDACTION_MASK


def apply_redaction(record: dict[str, Any], fields: frozenset[str]) -> dict[str, Any]:
    """Return a copy of ``record`` with the given fields masked."""
    if not fields:
        return dict(record)
    return {key: mask_value(key, value) if key in fields else value for key, value in record.items()}
