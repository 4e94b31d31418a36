import app.main  # noqa: F401  registers every route policy
from app.features.permissions.dependencies import check_declared_policies, declared_policies


async def test_route_policies_match_seeded_catalog(db, seeded):
    assert declared_policies()
    assert await check_declared_policies(db) == {}


async def test_unknown_policy_permissions_are_reported(db, catalog, seeded, caplog):
    await catalog.set_active("users.create", False)

    problems = await check_declared_policies(db)

    assert problems == {"SINGLE(users.create)": ["users.create"]}
    assert "references unknown permission(s)" in caplog.text
