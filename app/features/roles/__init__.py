"""
Role registry feature module.

Roles are named, prioritized bundles of permission identifiers. System roles are
seeded at deployment and cannot be edited or deleted through the API.
"""
