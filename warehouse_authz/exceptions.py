"""Exceptions raised by the warehouse authorization engine.

Load-time errors derive from :class:`PolicyLoadError` and are resolved at the
policy store boundary: they either abort a load (global document problems) or
are recorded as degraded grant paths (delegated document problems). A denied
authorization request is not an error, it is an ``AccessDecision`` with
``allowed=False``.
"""


class AuthzError(Exception):
    """Base class for all warehouse_authz errors."""


class PolicyLoadError(AuthzError):
    """A policy document could not be turned into a usable policy.

    Attributes:
        location: Where the offending document lives (file path or ``<string>``).
    """

    def __init__(self, message: str, location: str = None):
        super().__init__(message)
        self.location = location


class MalformedPolicy(PolicyLoadError):
    """A policy document is syntactically or structurally invalid."""

    def __init__(self, location: str, line_number: int, line: str, message: str):
        super().__init__(f"{location}:{line_number}: {message} ({line!r})", location)
        self.line_number = line_number
        self.line = line
        self.reason = message


class MissingPolicyDocument(PolicyLoadError):
    """A policy document could not be read."""


class MissingDelegatedDocument(MissingPolicyDocument):
    """The document a ``[databases]`` entry points at could not be read."""

    def __init__(self, database: str, location: str, cause: str = ""):
        message = f"Policy document for database '{database}' not readable at {location}"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message, location)
        self.database = database


class DelegationTimeout(PolicyLoadError):
    """Loading a delegated document took longer than the configured bound."""

    def __init__(self, database: str, location: str, timeout: float):
        super().__init__(
            f"Policy document for database '{database}' at {location} not loaded within {timeout}s",
            location,
        )
        self.database = database
        self.timeout = timeout


class UnknownRoleReference(PolicyLoadError):
    """A group grants a role that no loaded document defines."""

    def __init__(self, group: str, role: str, location: str = None):
        super().__init__(f"Group '{group}' references undefined role '{role}'", location)
        self.group = group
        self.role = role


class UnknownGroupReference(PolicyLoadError):
    """A user is mapped to a group that no loaded document declares."""

    def __init__(self, user: str, group: str, location: str = None):
        super().__init__(f"User '{user}' references undefined group '{group}'", location)
        self.user = user
        self.group = group


class OutOfScopePrivilege(PolicyLoadError):
    """A privilege grants access outside the scope its document may govern.

    Raised (and recorded, never propagated) for privileges in a delegated
    document that name a different database, and for privileges naming a
    server other than the configured one.
    """

    def __init__(self, role: str, privilege, scope: str, location: str = None):
        super().__init__(f"Role '{role}' privilege '{privilege}' is outside {scope}", location)
        self.role = role
        self.privilege = privilege
        self.scope = scope


class EngineClosed(AuthzError):
    """The engine was closed and no longer serves requests."""


class InvalidRequest(AuthzError):
    """An authorization request is malformed (unknown action, bad resource path)."""


class AuthorizationDenied(AuthzError):
    """Raised by enforcement helpers when a request is denied.

    The message names the principal and the requested action only. It never
    reveals which group, role or privilege would have allowed the request.
    """

    def __init__(self, principal: str, action: str, decision=None):
        super().__init__(f"User {principal} does not have privileges for {action.upper()}")
        self.principal = principal
        self.action = action
        self.decision = decision
