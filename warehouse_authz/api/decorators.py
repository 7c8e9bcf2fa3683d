"""Decorators for the authorization public API."""

import inspect
from functools import wraps

from warehouse_authz.engine.enforcer import get_engine
from warehouse_authz.exceptions import AuthorizationDenied


def require_privilege(action: str, user_arg: str = "user", resource_arg: str = "resource", engine=None):
    """Decorator that authorizes a call before running it.

    The decorated callable must accept the user and the resource as
    arguments (positionally or by keyword). The check runs before the body;
    a denial raises :class:`AuthorizationDenied`, which the caller can
    translate into its own authorization error.

    Args:
        action (str): Action the call performs, e.g. ``select``.
        user_arg (str): Name of the parameter holding the user name.
        resource_arg (str): Name of the parameter holding the resource path.
        engine: Policy engine to check with. Defaults to the process-wide engine.

    Returns:
        callable: The decorator.

    Examples:
        @require_privilege("select")
        def run_select(user, resource, statement):
            ...

        @require_privilege("insert", user_arg="session_user", resource_arg="target")
        def load_into(session_user, target, rows):
            ...
    """

    def get_checking_engine():
        if engine is not None:
            return engine
        return get_engine()

    def decorator(f):
        """Inner decorator that binds the call arguments and checks them."""
        signature = inspect.signature(f)
        for name in (user_arg, resource_arg):
            if name not in signature.parameters:
                raise TypeError(f"{f.__qualname__} has no parameter named '{name}'")

        @wraps(f)
        def wrapper(*args, **kwargs):
            """Wrapper that authorizes the call, then executes it."""
            bound = signature.bind(*args, **kwargs)
            bound.apply_defaults()
            user = bound.arguments[user_arg]
            decision = get_checking_engine().check(user, action, bound.arguments[resource_arg])
            if not decision.allowed:
                raise AuthorizationDenied(user, decision.action, decision)
            return f(*args, **kwargs)

        return wrapper

    return decorator
