"""
API tests for the permission, role and user routes.
"""
import pytest
from sqlalchemy.exc import OperationalError

from app.features.permissions.dependencies import get_authorization_engine
from app.features.permissions.engine import AuthorizationEngine
from app.features.users.auth import create_access_token
from app.main import app
from tests.utils.helpers import auth_headers


@pytest.fixture
async def users(make_user, seeded):
    return {
        "admin": await make_user(role="admin", email="admin@vetclinic.com"),
        "vet": await make_user(role="veterinario", email="vet@vetclinic.com"),
        "client": await make_user(role="cliente", email="client@vetclinic.com"),
    }


# ============================================================================
# Public and authentication
# ============================================================================

async def test_health_is_public(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_missing_token_is_401(client, users):
    response = await client.get("/permissions")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["detail"]["reason"] == "unauthenticated"


async def test_expired_token_is_401(client, users):
    token = create_access_token(users["admin"].id, expires_minutes=-5)
    response = await client.get("/permissions", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


async def test_garbage_token_is_401(client, users):
    response = await client.get("/permissions", headers={"Authorization": "Bearer not.a.jwt"})
    assert response.status_code == 401


async def test_inactive_user_is_401(client, make_user, seeded):
    ghost = await make_user(role="admin", is_active=False)
    response = await client.get("/permissions", headers=auth_headers(ghost))
    assert response.status_code == 401


# ============================================================================
# Catalog routes
# ============================================================================

async def test_list_permissions_requires_permissions_view(client, users):
    denied = await client.get("/permissions", headers=auth_headers(users["client"]))
    allowed = await client.get("/permissions", headers=auth_headers(users["admin"]))

    assert denied.status_code == 403
    assert denied.json()["detail"] == {
        "reason": "insufficient_permission",
        "required_permissions": ["permissions.view"],
        "user_role": "cliente",
    }
    assert allowed.status_code == 200
    assert "pets.view" in [p["name"] for p in allowed.json()]


async def test_permission_names_and_stats(client, users):
    headers = auth_headers(users["admin"])

    names = (await client.get("/permissions/names", headers=headers)).json()
    stats = (await client.get("/permissions/stats", headers=headers)).json()

    assert names == sorted(names)
    assert stats["total"] == len(names)


async def test_category_and_action_lookups(client, users):
    headers = auth_headers(users["admin"])

    pets = await client.get("/permissions/category/pets", headers=headers)
    missing = await client.get("/permissions/category/spaceships", headers=headers)
    assign = await client.get("/permissions/action/assign", headers=headers)

    assert pets.status_code == 200 and len(pets.json()) == 4
    assert missing.status_code == 404
    assert [p["name"] for p in assign.json()] == ["permissions.assign"]


async def test_validate_permission(client, users):
    headers = auth_headers(users["admin"])

    valid = await client.get("/permissions/validate/pets.view", headers=headers)
    invalid = await client.get("/permissions/validate/pets.fly", headers=headers)

    assert valid.json() == {"permission": "pets.view", "is_valid": True}
    assert invalid.json()["is_valid"] is False


async def test_create_permission_is_admin_only(client, users):
    body = {"name": "vaccines.apply", "description": "Apply vaccines"}

    denied = await client.post("/permissions", json=body, headers=auth_headers(users["vet"]))
    created = await client.post("/permissions", json=body, headers=auth_headers(users["admin"]))
    duplicate = await client.post("/permissions", json=body, headers=auth_headers(users["admin"]))

    assert denied.status_code == 403
    assert denied.json()["detail"]["reason"] == "insufficient_role"
    assert created.status_code == 201
    assert created.json()["category"] == "vaccines"
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "duplicate_name"


async def test_create_permission_validates_identifier(client, users):
    response = await client.post(
        "/permissions",
        json={"name": "not a permission", "description": "x"},
        headers=auth_headers(users["admin"]),
    )
    assert response.status_code == 400
    assert "name" in response.json()


async def test_deactivated_permission_leaves_effective_sets(client, users):
    headers = auth_headers(users["admin"])

    response = await client.patch("/permissions/pets.create", json={"is_active": False}, headers=headers)
    mine = await client.get("/permissions/me", headers=auth_headers(users["client"]))

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert "pets.create" not in mine.json()["permissions"]


# ============================================================================
# User permission routes
# ============================================================================

async def test_assign_user_permissions(client, users, audit_sink):
    target = users["client"]

    response = await client.put(
        f"/permissions/user/{target.id}",
        json={"permissions": ["pets.view", "reports.view"]},
        headers=auth_headers(users["admin"]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["permissions"] == ["pets.view", "reports.view"]
    assert body["effective_permissions"] == ["pets.view", "reports.view"]
    assert body["has_custom_permissions"] is True

    [entry] = audit_sink.records
    assert entry.actor_id == users["admin"].id
    assert entry.added == {"reports.view"}


async def test_assign_unknown_permission_is_400_and_unchanged(client, users, db, audit_sink):
    target = users["client"]
    before = list(target.permissions)

    response = await client.put(
        f"/permissions/user/{target.id}",
        json={"permissions": ["pets.view", "bogus.perm"]},
        headers=auth_headers(users["admin"]),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "unknown_permission"
    assert response.json()["invalid_permissions"] == ["bogus.perm"]
    await db.refresh(target)
    assert target.permissions == before
    assert audit_sink.records == []


async def test_assign_to_missing_user_is_404(client, users):
    response = await client.put(
        "/permissions/user/01HNOBODY",
        json={"permissions": ["pets.view"]},
        headers=auth_headers(users["admin"]),
    )
    assert response.status_code == 404
    assert response.json()["error"] == "target_not_found"


async def test_assign_requires_permissions_assign(client, users):
    response = await client.put(
        f"/permissions/user/{users['client'].id}",
        json={"permissions": ["pets.view"]},
        headers=auth_headers(users["vet"]),
    )
    assert response.status_code == 403


async def test_reset_user_permissions(client, users, audit_sink):
    target = users["vet"]
    headers = auth_headers(users["admin"])
    await client.put(f"/permissions/user/{target.id}", json={"permissions": ["settings.edit"]}, headers=headers)

    response = await client.post(f"/permissions/user/{target.id}/reset", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["permissions"] == body["default_permissions"]
    assert body["has_custom_permissions"] is False
    assert audit_sink.records[-1].action.value == "reset_permissions"


async def test_my_permissions(client, users):
    response = await client.get("/permissions/me", headers=auth_headers(users["client"]))
    assert response.status_code == 200
    assert response.json()["role"] == "cliente"
    assert "pets.create" in response.json()["permissions"]


async def test_audit_logs_are_admin_only(client, users):
    denied = await client.get("/permissions/audit-logs", headers=auth_headers(users["vet"]))
    allowed = await client.get("/permissions/audit-logs", headers=auth_headers(users["admin"]))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json() == {"items": [], "total": 0, "page": 1, "page_size": 50, "pages": 0}


# ============================================================================
# Role routes
# ============================================================================

async def test_role_listing(client, users):
    response = await client.get("/roles", headers=auth_headers(users["admin"]))
    names = [role["name"] for role in response.json()]
    assert names[0] == "admin"
    assert "cliente" in names


async def test_public_roles_need_only_authentication(client, users):
    response = await client.get("/roles/public", headers=auth_headers(users["client"]))
    assert response.status_code == 200
    assert "admin" not in [role["name"] for role in response.json()]


async def test_custom_role_lifecycle(client, users, audit_sink):
    headers = auth_headers(users["admin"])

    created = await client.post(
        "/roles",
        json={"name": "groomer", "display_name": "Groomer", "permissions": ["pets.view"], "priority": 15},
        headers=headers,
    )
    assert created.status_code == 201
    role_id = created.json()["id"]

    updated = await client.put(
        f"/roles/{role_id}/permissions",
        json={"permissions": ["pets.view", "pets.edit"]},
        headers=headers,
    )
    assert updated.json()["permissions"] == ["pets.edit", "pets.view"]

    permissions = await client.get(f"/roles/{role_id}/permissions", headers=headers)
    assert permissions.json()["permissions"] == ["pets.edit", "pets.view"]

    deleted = await client.delete(f"/roles/{role_id}", headers=headers)
    assert deleted.status_code == 204

    actions = [entry.action.value for entry in audit_sink.records]
    assert actions == ["create_role", "update_role_permissions", "delete_role"]


async def test_system_role_cannot_be_changed(client, users):
    headers = auth_headers(users["admin"])
    roles = (await client.get("/roles/system", headers=headers)).json()
    vet = next(role for role in roles if role["name"] == "veterinario")

    update = await client.put(f"/roles/{vet['id']}", json={"display_name": "Vet"}, headers=headers)
    delete = await client.delete(f"/roles/{vet['id']}", headers=headers)

    assert update.status_code == 403
    assert update.json()["error"] == "system_role_immutable"
    assert delete.status_code == 403


async def test_role_in_use_cannot_be_deleted(client, users, make_user):
    headers = auth_headers(users["admin"])
    created = await client.post("/roles", json={"name": "groomer", "display_name": "Groomer"}, headers=headers)
    await make_user(role="groomer")
    await make_user(role="groomer")

    response = await client.delete(f"/roles/{created.json()['id']}", headers=headers)

    assert response.status_code == 409
    assert response.json() == {
        "error": "role_in_use",
        "message": "Role 'groomer' is still assigned to 2 user(s)",
        "role": "groomer",
        "count": 2,
    }


async def test_role_permission_update_requires_both_permissions(client, users, make_user):
    editor = await make_user(role="cliente", permissions=["roles.edit", "roles.view"])
    headers = auth_headers(users["admin"])
    created = await client.post("/roles", json={"name": "groomer", "display_name": "Groomer"}, headers=headers)
    role_id = created.json()["id"]

    read = await client.get(f"/roles/{role_id}/permissions", headers=auth_headers(editor))
    write = await client.put(
        f"/roles/{role_id}/permissions", json={"permissions": ["pets.view"]}, headers=auth_headers(editor),
    )

    assert read.status_code == 200
    assert write.status_code == 403
    assert write.json()["detail"]["required_permissions"] == ["roles.edit", "permissions.assign"]


async def test_role_in_use_cannot_be_deactivated(client, users, make_user):
    headers = auth_headers(users["admin"])
    created = await client.post(
        "/roles", json={"name": "groomer", "display_name": "Groomer", "permissions": ["pets.view"]}, headers=headers,
    )
    groomer = await make_user(role="groomer", permissions=[])

    response = await client.put(f"/roles/{created.json()['id']}", json={"is_active": False}, headers=headers)
    mine = await client.get("/permissions/me", headers=auth_headers(groomer))

    assert response.status_code == 409
    assert response.json()["error"] == "role_in_use"
    assert response.json()["count"] == 1
    assert mine.status_code == 200
    assert mine.json()["permissions"] == ["pets.view"]


async def test_user_of_missing_role_is_denied(client, users, make_user):
    orphan = await make_user(role="ghost", permissions=[])

    guarded = await client.get("/permissions", headers=auth_headers(orphan))
    mine = await client.get("/permissions/me", headers=auth_headers(orphan))

    assert guarded.status_code == 403
    assert guarded.json()["detail"]["reason"] == "insufficient_permission"
    assert mine.status_code == 200
    assert mine.json()["permissions"] == []


async def test_role_update_cannot_replace_permissions(client, users, make_user, audit_sink):
    editor = await make_user(role="cliente", permissions=["roles.edit", "roles.view"])
    created = await client.post(
        "/roles",
        json={"name": "groomer", "display_name": "Groomer", "permissions": ["pets.view"]},
        headers=auth_headers(users["admin"]),
    )
    role_id = created.json()["id"]

    smuggled = await client.put(
        f"/roles/{role_id}",
        json={"permissions": ["settings.edit", "users.delete"]},
        headers=auth_headers(editor),
    )
    renamed = await client.put(f"/roles/{role_id}", json={"display_name": "Pet Groomer"}, headers=auth_headers(editor))
    permissions = await client.get(f"/roles/{role_id}/permissions", headers=auth_headers(editor))

    assert smuggled.status_code == 400
    assert "permissions" in smuggled.json()
    assert renamed.status_code == 200
    assert renamed.json()["display_name"] == "Pet Groomer"
    assert permissions.json()["permissions"] == ["pets.view"]
    assert [entry.action.value for entry in audit_sink.records] == ["create_role", "update_role"]


# ============================================================================
# User routes
# ============================================================================

async def test_create_user_copies_role_defaults(client, users):
    response = await client.post(
        "/users",
        json={"email": "new@vetclinic.com", "name": "New Client"},
        headers=auth_headers(users["admin"]),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["role"] == "cliente"
    assert body["permissions"] == sorted([
        "pets.view", "pets.create", "appointments.view", "appointments.create", "veterinaries.view",
    ])


async def test_create_user_with_unknown_role(client, users):
    response = await client.post(
        "/users",
        json={"email": "new@vetclinic.com", "name": "New", "role": "astronaut"},
        headers=auth_headers(users["admin"]),
    )
    assert response.status_code == 404
    assert response.json()["error"] == "role_not_found"


async def test_user_can_read_own_profile_only(client, users):
    client_user, vet = users["client"], users["vet"]

    own = await client.get(f"/users/{client_user.id}", headers=auth_headers(client_user))
    other = await client.get(f"/users/{vet.id}", headers=auth_headers(client_user))
    me = await client.get("/users/me", headers=auth_headers(client_user))

    assert own.status_code == 200
    assert other.status_code == 403
    assert other.json()["detail"]["reason"] == "not_owner"
    assert me.json()["email"] == "client@vetclinic.com"


async def test_staff_with_users_view_can_read_profiles(client, users, make_user):
    staff = await make_user(role="recepcionista", permissions=["users.view"])
    response = await client.get(f"/users/{users['client'].id}", headers=auth_headers(staff))
    assert response.status_code == 200


async def test_only_admins_create_admins(client, users, make_user):
    staff = await make_user(role="recepcionista", permissions=["users.create"])

    denied = await client.post(
        "/users",
        json={"email": "boss@vetclinic.com", "name": "Boss", "role": "admin"},
        headers=auth_headers(staff),
    )
    allowed = await client.post(
        "/users",
        json={"email": "owner@vetclinic.com", "name": "Owner", "role": "cliente"},
        headers=auth_headers(staff),
    )
    by_admin = await client.post(
        "/users",
        json={"email": "boss@vetclinic.com", "name": "Boss", "role": "Admin"},
        headers=auth_headers(users["admin"]),
    )

    assert denied.status_code == 403
    assert denied.json()["detail"] == {
        "reason": "insufficient_role",
        "required_roles": ["admin"],
        "user_role": "recepcionista",
    }
    assert allowed.status_code == 201
    assert by_admin.status_code == 201
    assert by_admin.json()["role"] == "admin"


async def test_list_users_requires_users_view(client, users):
    denied = await client.get("/users", headers=auth_headers(users["client"]))
    everyone = await client.get("/users", headers=auth_headers(users["admin"]))
    clients = await client.get("/users", params={"role": "Cliente"}, headers=auth_headers(users["admin"]))

    assert denied.status_code == 403
    assert everyone.json()["total"] == 3
    assert {user["email"] for user in everyone.json()["items"]} == {
        "admin@vetclinic.com", "vet@vetclinic.com", "client@vetclinic.com",
    }
    assert [user["email"] for user in clients.json()["items"]] == ["client@vetclinic.com"]


async def test_list_users_by_role_shows_public_fields(client, users):
    response = await client.get("/users/role/veterinario", headers=auth_headers(users["client"]))

    assert response.status_code == 200
    assert response.json() == [{"id": users["vet"].id, "name": users["vet"].name, "role": "veterinario"}]


async def test_deactivated_user_loses_access(client, users):
    target = users["client"]
    headers = auth_headers(users["admin"])

    deactivated = await client.put(f"/users/{target.id}/activate", json={"is_active": False}, headers=headers)
    locked_out = await client.get("/users/me", headers=auth_headers(target))
    inactive = await client.get("/users", params={"is_active": False}, headers=headers)
    reactivated = await client.put(f"/users/{target.id}/activate", json={"is_active": True}, headers=headers)
    back_in = await client.get("/users/me", headers=auth_headers(target))

    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False
    assert locked_out.status_code == 401
    assert [user["id"] for user in inactive.json()["items"]] == [target.id]
    assert reactivated.json()["is_active"] is True
    assert back_in.status_code == 200


async def test_activation_requires_users_edit(client, users, make_user):
    vet_response = await client.put(
        f"/users/{users['client'].id}/activate", json={"is_active": False}, headers=auth_headers(users["vet"]),
    )
    staff = await make_user(role="recepcionista", permissions=["users.edit"])
    admin_response = await client.put(
        f"/users/{users['admin'].id}/activate", json={"is_active": False}, headers=auth_headers(staff),
    )
    missing = await client.put("/users/01HNOBODY/activate", json={"is_active": False}, headers=auth_headers(staff))

    assert vet_response.status_code == 403
    assert admin_response.status_code == 403
    assert admin_response.json()["detail"]["reason"] == "insufficient_role"
    assert missing.status_code == 404


# ============================================================================
# Failure modes
# ============================================================================

class UnavailableCatalog:
    async def find_invalid(self, names):
        raise OperationalError("SELECT name FROM permissions", {}, Exception("connection refused"))


async def test_store_outage_is_503(client, users, resolver):
    app.dependency_overrides[get_authorization_engine] = lambda: AuthorizationEngine(UnavailableCatalog(), resolver)

    response = await client.get("/permissions", headers=auth_headers(users["vet"]))

    assert response.status_code == 503
    assert response.json()["detail"]["reason"] == "authorization_unavailable"


async def test_policy_with_deactivated_permission_is_500(client, users):
    await client.patch("/permissions/permissions.view", json={"is_active": False}, headers=auth_headers(users["admin"]))

    response = await client.get("/permissions", headers=auth_headers(users["vet"]))

    assert response.status_code == 500
    assert response.json()["detail"]["reason"] == "invalid_permission_in_policy"
    assert response.json()["detail"]["invalid_permissions"] == ["permissions.view"]
