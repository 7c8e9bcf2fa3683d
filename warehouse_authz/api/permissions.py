"""Public API for authorization checks.

These functions answer questions against the process-wide policy engine
(see :mod:`warehouse_authz.engine.enforcer`). A SQL execution layer calls
them before running a statement and turns a denial into a user-visible
authorization error.
"""

from warehouse_authz.api.data import AccessDecision, Privilege
from warehouse_authz.engine.enforcer import get_engine
from warehouse_authz.exceptions import AuthorizationDenied

__all__ = [
    "check_access",
    "is_user_allowed",
    "assert_user_allowed",
    "get_user_privileges",
    "get_user_groups",
    "reload_policies",
]


def check_access(user: str, action: str, resource) -> AccessDecision:
    """Decide whether a user may perform an action on a resource.

    Args:
        user: Name of the user.
        action: Requested action, e.g. ``select``.
        resource: Resource path, e.g. ``server=server1->db=db1->table=tbl1``.

    Returns:
        AccessDecision: The decision, with its deny reason when denied.
    """
    return get_engine().check(user, action, resource)


def is_user_allowed(user: str, action: str, resource) -> bool:
    """Check whether a user may perform an action on a resource.

    Args:
        user: Name of the user.
        action: Requested action.
        resource: Resource path.

    Returns:
        bool: True if allowed, False otherwise.
    """
    return check_access(user, action, resource).allowed


def assert_user_allowed(user: str, action: str, resource) -> AccessDecision:
    """Like :func:`check_access`, but raise on denial.

    Raises:
        AuthorizationDenied: If the request is denied.
    """
    decision = check_access(user, action, resource)
    if not decision.allowed:
        raise AuthorizationDenied(user, decision.action, decision)
    return decision


def get_user_privileges(user: str) -> frozenset[Privilege]:
    """Get the privileges a user holds through its groups and their roles."""
    return get_engine().resolve(user)


def get_user_groups(user: str) -> frozenset[str]:
    """Get the declared groups a user belongs to."""
    return get_engine().current_graph.groups_for(user)


def reload_policies():
    """Reload the policy documents now.

    Returns:
        ReloadOutcome: Whether a new policy generation was published.
    """
    return get_engine().trigger_reload()
