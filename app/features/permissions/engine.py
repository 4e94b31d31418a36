"""
Authorization decision engine.

Given a principal snapshot and a required-permission expression, the engine
returns a ``Decision``. Denials are ordinary return values. The two reasons
that signal a misconfiguration or an outage (``invalid_permission_in_policy``
and ``authorization_unavailable``) are flagged by ``Decision.is_error`` so
callers never confuse them with a routine deny.

Evaluation order:
    1. no principal, or an inactive one      -> unauthenticated
    2. admin role                            -> allow
    3. unknown identifiers in the expression -> invalid_permission_in_policy
    4. SINGLE / ANY / ALL / OWNER / ROLE against the effective permission set

A principal with no stored permissions whose role is missing or inactive has
an empty effective set and is denied.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from app.core import config
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.exceptions import RoleNotFound
from app.features.permissions.identifiers import PermissionName, is_admin_role
from app.features.permissions.resolver import PermissionResolver
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

OwnerExtractor = Callable[[Any], Any]


class ExpressionKind(str, Enum):
    SINGLE = "single"
    ANY = "any"
    ALL = "all"
    OWNER = "owner"
    ROLE = "role"


class DenyReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INVALID_PERMISSION_IN_POLICY = "invalid_permission_in_policy"
    INSUFFICIENT_PERMISSION = "insufficient_permission"
    NOT_OWNER = "not_owner"
    INSUFFICIENT_ROLE = "insufficient_role"
    AUTHORIZATION_UNAVAILABLE = "authorization_unavailable"


ERROR_REASONS = frozenset({
    DenyReason.INVALID_PERMISSION_IN_POLICY,
    DenyReason.AUTHORIZATION_UNAVAILABLE,
})


@dataclass(frozen=True)
class PermissionExpression:
    """
    What a route requires.

    Build with the class methods; identifiers are parsed on construction so a
    malformed one fails when the route module is imported.

        PermissionExpression.single("pets.view")
        PermissionExpression.any_of(["appointments.edit", "appointments.delete"])
        PermissionExpression.owner(lambda request: request.path_params["user_id"], or_permission="users.view")
    """
    kind: ExpressionKind
    permissions: Tuple[PermissionName, ...] = ()
    roles: Tuple[str, ...] = ()
    owner_id: Optional[OwnerExtractor] = None

    def __post_init__(self):
        if self.kind is ExpressionKind.SINGLE and len(self.permissions) != 1:
            raise ValueError("SINGLE expressions take exactly one permission")
        if self.kind in (ExpressionKind.ANY, ExpressionKind.ALL) and not self.permissions:
            raise ValueError(f"{self.kind.name} expressions need at least one permission")
        if self.kind is ExpressionKind.OWNER and (self.owner_id is None or len(self.permissions) > 1):
            raise ValueError("OWNER expressions need an owner extractor and at most one fallback permission")
        if self.kind is ExpressionKind.ROLE and not self.roles:
            raise ValueError("ROLE expressions need at least one role")

    @classmethod
    def single(cls, permission: "str | PermissionName") -> "PermissionExpression":
        return cls(ExpressionKind.SINGLE, permissions=(PermissionName.parse(permission),))

    @classmethod
    def any_of(cls, permissions: Iterable["str | PermissionName"]) -> "PermissionExpression":
        return cls(ExpressionKind.ANY, permissions=_parse_all(permissions))

    @classmethod
    def all_of(cls, permissions: Iterable["str | PermissionName"]) -> "PermissionExpression":
        return cls(ExpressionKind.ALL, permissions=_parse_all(permissions))

    @classmethod
    def owner(
        cls,
        owner_id: OwnerExtractor,
        or_permission: "str | PermissionName | None" = None,
    ) -> "PermissionExpression":
        fallback = (PermissionName.parse(or_permission),) if or_permission is not None else ()
        return cls(ExpressionKind.OWNER, permissions=fallback, owner_id=owner_id)

    @classmethod
    def role(cls, *roles: str) -> "PermissionExpression":
        return cls(ExpressionKind.ROLE, roles=tuple(role.strip().lower() for role in roles))

    @property
    def permission_names(self) -> list[str]:
        return [permission.full_name for permission in self.permissions]

    def describe(self) -> str:
        if self.kind is ExpressionKind.ROLE:
            return f"ROLE({', '.join(self.roles)})"
        return f"{self.kind.name}({', '.join(self.permission_names)})"


def _parse_all(permissions: Iterable["str | PermissionName"]) -> Tuple[PermissionName, ...]:
    parsed: dict[PermissionName, None] = {}
    for permission in permissions:
        parsed.setdefault(PermissionName.parse(permission), None)
    return tuple(parsed)


@dataclass(frozen=True)
class Principal:
    """Snapshot of the authenticated user taken when the request arrived."""
    user_id: str
    role: str
    is_active: bool
    permissions: frozenset[str]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    required_permissions: Tuple[str, ...] = ()
    required_roles: Tuple[str, ...] = ()
    invalid_permissions: Tuple[str, ...] = ()
    role: Optional[str] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason, **kwargs) -> "Decision":
        return cls(allowed=False, reason=reason, **kwargs)

    @property
    def is_error(self) -> bool:
        return self.reason in ERROR_REASONS

    def to_detail(self) -> dict:
        """Client-facing body. Never includes the principal's permission set."""
        detail: dict[str, Any] = {"reason": self.reason.value if self.reason else None}
        if self.required_permissions:
            detail["required_permissions"] = list(self.required_permissions)
        if self.required_roles:
            detail["required_roles"] = list(self.required_roles)
        if self.invalid_permissions:
            detail["invalid_permissions"] = list(self.invalid_permissions)
        if self.role is not None:
            detail["user_role"] = self.role
        return detail


class AuthorizationEngine:
    """
    Request-scoped and stateless: build one per request around that request's
    catalog and resolver.
    """

    def __init__(
        self,
        catalog: PermissionCatalog,
        resolver: PermissionResolver,
        lookup_timeout: float = config.AUTHZ_LOOKUP_TIMEOUT,
    ):
        self.catalog = catalog
        self.resolver = resolver
        self.lookup_timeout = lookup_timeout

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self.lookup_timeout and self.lookup_timeout > 0:
            return await asyncio.wait_for(awaitable, timeout=self.lookup_timeout)
        return await awaitable

    async def decide(
        self,
        principal: Optional[Principal],
        expression: PermissionExpression,
        request: Any = None,
    ) -> Decision:
        if principal is None or not principal.is_active:
            return Decision.deny(DenyReason.UNAUTHENTICATED)

        if is_admin_role(principal.role):
            return Decision.allow()

        required = tuple(expression.permission_names)

        try:
            invalid = await self._bounded(self.catalog.find_invalid(list(required)))
            if invalid:
                return Decision.deny(
                    DenyReason.INVALID_PERMISSION_IN_POLICY,
                    required_permissions=required,
                    invalid_permissions=tuple(invalid),
                    role=principal.role,
                )

            if expression.kind is ExpressionKind.ROLE:
                if principal.role.lower() in expression.roles:
                    return Decision.allow()
                return Decision.deny(
                    DenyReason.INSUFFICIENT_ROLE,
                    required_roles=expression.roles,
                    role=principal.role,
                )

            if expression.kind is ExpressionKind.OWNER:
                owner_id = expression.owner_id(request)
                if owner_id is not None and str(owner_id) == str(principal.user_id):
                    return Decision.allow()
                if not required:
                    return Decision.deny(DenyReason.NOT_OWNER, role=principal.role)

            effective = await self._bounded(self.resolver.effective_permissions(principal))
        except (SQLAlchemyError, asyncio.TimeoutError):
            return Decision.deny(
                DenyReason.AUTHORIZATION_UNAVAILABLE,
                required_permissions=required,
                role=principal.role,
            )
        except RoleNotFound:
            # no stored list and no role defaults to fall back on: grants nothing
            log.warning(
                "User %s has no stored permissions and role %s is missing or inactive",
                principal.user_id, principal.role,
            )
            effective = frozenset()

        if _satisfies(expression.kind, required, effective):
            return Decision.allow()

        reason = DenyReason.NOT_OWNER if expression.kind is ExpressionKind.OWNER else DenyReason.INSUFFICIENT_PERMISSION
        return Decision.deny(reason, required_permissions=required, role=principal.role)


def _satisfies(kind: ExpressionKind, required: Tuple[str, ...], effective: frozenset[str]) -> bool:
    if kind is ExpressionKind.ALL:
        return all(permission in effective for permission in required)
    # SINGLE, ANY and the OWNER fallback all need one match
    return any(permission in effective for permission in required)
