"""
Permission management feature module.

Flat ``category.action`` permissions checked against a mutable catalog. Users
get their role's defaults, optionally replaced by an explicit per-user list,
and every route declares what it requires through ``authorize``.
"""
