"""
FastAPI dependencies for route protection.

Implements:
- ``authorize(expression)`` and the ``require_*`` shorthands
- Per-request wiring of catalog, registry, resolver, engine and auditor
- Startup check of every expression wired into a route
"""
from typing import Annotated, Dict, Iterable, List, Optional

from fastapi import BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, get_db
from app.features.permissions.audit import AuditSink, DatabaseAuditSink, PermissionAuditor
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.engine import (
    AuthorizationEngine,
    Decision,
    DenyReason,
    PermissionExpression,
    Principal,
)
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.service import PermissionAdministration
from app.features.roles.registry import RoleRegistry
from app.features.users.dependencies import get_current_principal
from app.utils import get_logger


log = get_logger(__name__)

# Every expression handed to ``authorize``, checked against the catalog at startup
_declared_policies: List[PermissionExpression] = []


def declared_policies() -> List[PermissionExpression]:
    return list(_declared_policies)


# ============================================================================
# Per-request services
# ============================================================================

async def get_authorization_engine(db: AsyncSession = Depends(get_db)) -> AuthorizationEngine:
    catalog = PermissionCatalog(db)
    registry = RoleRegistry(db, catalog)
    return AuthorizationEngine(catalog, PermissionResolver(catalog, registry))


def get_audit_sink() -> AuditSink:
    """Audit sink for this process. Overridden in tests."""
    return DatabaseAuditSink(AsyncSessionLocal)


def get_auditor(
    background_tasks: BackgroundTasks,
    sink: AuditSink = Depends(get_audit_sink),
) -> PermissionAuditor:
    return PermissionAuditor(sink, background_tasks)


def get_administration(
    db: AsyncSession = Depends(get_db),
    auditor: PermissionAuditor = Depends(get_auditor),
) -> PermissionAdministration:
    return PermissionAdministration.for_session(db, auditor)


# ============================================================================
# Route guards
# ============================================================================

def _raise_for(decision: Decision, principal: Optional[Principal], expression: PermissionExpression, request: Request):
    reason = decision.reason
    route = f"{request.method} {request.url.path}"

    if reason is DenyReason.UNAUTHENTICATED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=decision.to_detail(),
            headers={"WWW-Authenticate": "Bearer"},
        )

    if reason is DenyReason.INVALID_PERMISSION_IN_POLICY:
        log.error(
            "Route %s requires unknown permission(s) %s in %s",
            route, list(decision.invalid_permissions), expression.describe(),
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=decision.to_detail())

    if reason is DenyReason.AUTHORIZATION_UNAVAILABLE:
        log.error("Permission store unavailable while authorizing %s for %s", route, expression.describe())
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=decision.to_detail())

    log.info(
        "Denied %s: user=%s role=%s reason=%s required=%s",
        route, principal.user_id, principal.role, reason.value, expression.describe(),
    )
    log.debug("Stored permissions of user %s: %s", principal.user_id, sorted(principal.permissions))
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.to_detail())


def authorize(expression: PermissionExpression):
    """
    FastAPI dependency enforcing ``expression``.

    Usage:
        @router.get("/pets")
        async def list_pets(
            principal: Principal = Depends(authorize(PermissionExpression.single("pets.view")))
        ):
            pass

    Returns:
        Dependency function that returns the current principal when allowed

    Raises:
        HTTPException: 401 unauthenticated, 403 denied, 500 policy error,
            503 permission store unavailable
    """
    _declared_policies.append(expression)

    async def authorization_dependency(
        request: Request,
        principal: Annotated[Optional[Principal], Depends(get_current_principal)],
        engine: Annotated[AuthorizationEngine, Depends(get_authorization_engine)],
    ) -> Principal:
        decision = await engine.decide(principal, expression, request)
        if not decision.allowed:
            _raise_for(decision, principal, expression, request)
        return principal

    return authorization_dependency


def require_permission(permission: str):
    return authorize(PermissionExpression.single(permission))


def require_any_permission(permissions: Iterable[str]):
    return authorize(PermissionExpression.any_of(permissions))


def require_all_permissions(permissions: Iterable[str]):
    return authorize(PermissionExpression.all_of(permissions))


def require_owner(path_param: str = "user_id", or_permission: Optional[str] = None):
    """Allow the user whose id is in ``path_param``, or holders of ``or_permission``."""
    return authorize(
        PermissionExpression.owner(lambda request: request.path_params.get(path_param), or_permission)
    )


def require_role(*roles: str):
    return authorize(PermissionExpression.role(*roles))


async def get_authenticated_principal(
    principal: Annotated[Optional[Principal], Depends(get_current_principal)],
) -> Principal:
    """Any authenticated, active user."""
    if principal is None or not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"reason": DenyReason.UNAUTHENTICATED.value},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


# ============================================================================
# Startup policy check
# ============================================================================

async def check_declared_policies(db: AsyncSession) -> Dict[str, List[str]]:
    """
    Check every wired expression against the catalog.

    Unknown identifiers are logged at error level; requests hitting those
    routes will fail with ``invalid_permission_in_policy`` until the catalog
    is fixed. Returns the offending identifiers keyed by expression.
    """
    catalog = PermissionCatalog(db)
    problems: Dict[str, List[str]] = {}

    for expression in declared_policies():
        invalid = await catalog.find_invalid(expression.permission_names)
        if invalid:
            problems[expression.describe()] = invalid
            log.error("Policy %s references unknown permission(s): %s", expression.describe(), invalid)

    if not problems:
        log.info("All %d declared route policies reference known permissions", len(_declared_policies))
    return problems
