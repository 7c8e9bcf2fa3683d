"""Public API for the warehouse authorization engine.

The SQL execution layer depends on this package only: it checks requests
with :mod:`warehouse_authz.api.permissions` or guards callables with
:func:`warehouse_authz.api.decorators.require_privilege`.
"""
