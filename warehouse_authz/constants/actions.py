"""
Default action constants.

These are the actions a privilege chain may name in its ``action=`` component.
Deployments can accept additional actions through the
``WAREHOUSE_AUTHZ_EXTRA_ACTIONS`` setting.
"""

SELECT = "select"
INSERT = "insert"
CREATE = "create"
DROP = "drop"
ALTER = "alter"
INDEX = "index"
LOCK = "lock"

# Grants every other action on the resource it is attached to
ALL = "all"

BUILTIN_ACTIONS = frozenset({SELECT, INSERT, CREATE, DROP, ALTER, INDEX, LOCK, ALL})
