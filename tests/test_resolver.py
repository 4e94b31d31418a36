import pytest

from app.features.permissions.exceptions import RoleNotFound


async def test_new_user_resolves_to_role_defaults(catalog, registry, resolver, make_user):
    for name in ("pets.view", "pets.edit", "appointments.view"):
        await catalog.create(name, name)
    await registry.seed_system_role(
        "veterinario", "Veterinarian", "", ["pets.view", "pets.edit", "appointments.view"], 50,
    )
    user = await make_user(role="veterinario", permissions=[])

    assert await resolver.effective_permissions(user) == {"pets.view", "pets.edit", "appointments.view"}


async def test_stored_list_overrides_role_defaults(resolver, make_user, seeded):
    user = await make_user(role="cliente", permissions=["reports.view"])
    assert await resolver.effective_permissions(user) == {"reports.view"}


async def test_stale_entries_are_dropped(catalog, resolver, make_user, seeded):
    user = await make_user(role="cliente", permissions=["pets.view", "legacy.thing", "reports.view"])
    await catalog.set_active("reports.view", False)

    effective = await resolver.effective_permissions(user)

    assert effective == {"pets.view"}
    assert effective <= await catalog.all_identifiers()


async def test_deactivated_permission_drops_from_role_defaults(catalog, resolver, make_user, seeded):
    user = await make_user(role="cliente", permissions=[])
    await catalog.set_active("pets.create", False)

    assert "pets.create" not in await resolver.effective_permissions(user)


async def test_admin_resolves_to_every_active_permission(catalog, resolver, make_user, seeded):
    admin = await make_user(role="admin", permissions=[])
    await catalog.set_active("settings.edit", False)

    effective = await resolver.effective_permissions(admin)

    assert effective == await catalog.all_identifiers()
    assert "settings.edit" not in effective


async def test_empty_list_with_missing_role_fails(resolver, make_user, seeded):
    user = await make_user(role="ghost", permissions=[])
    with pytest.raises(RoleNotFound):
        await resolver.effective_permissions(user)
