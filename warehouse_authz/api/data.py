"""Data classes and enums for representing privileges, resources, policies and decisions."""

from enum import Enum
from types import MappingProxyType
from typing import ClassVar, Mapping, Optional

from attrs import define, field, frozen

from warehouse_authz.constants.actions import ALL, BUILTIN_ACTIONS

__all__ = [
    "AccessDecision",
    "DenyReason",
    "EngineConfig",
    "LoadProblem",
    "LoadReport",
    "PolicyDocument",
    "PolicySection",
    "Privilege",
    "ResourceLevel",
    "ResourcePath",
    "parse_authorizable_chain",
]

CHAIN_SEPARATOR = "->"
KEY_VALUE_SEPARATOR = "="
WILDCARD = "*"
ACTION_KEY = "action"


class ResourceLevel(Enum):
    """Levels of the resource hierarchy, coarsest first: server ⊇ db ⊇ table."""

    SERVER = "server"
    DATABASE = "db"
    TABLE = "table"


CHAIN_KEYS = tuple(level.value for level in ResourceLevel) + (ACTION_KEY,)


class PolicySection(Enum):
    """Sections a policy document may contain."""

    GROUPS = "groups"
    ROLES = "roles"
    USERS = "users"
    DATABASES = "databases"


class DenyReason(Enum):
    """Why an authorization request was denied."""

    NO_GROUPS = "principal has no resolvable groups"
    NO_MATCHING_PRIVILEGE = "no granted privilege matches the request"
    UNKNOWN_DATABASE = "resource belongs to no database known to the policy"


@frozen
class ResourcePath:
    """A point in the resource hierarchy.

    Attributes:
        server: Server name, always present.
        database: Database name, or None for a server-wide resource.
        table: Table name, or None for a database-wide resource. Requires ``database``.
    """

    server: str
    database: Optional[str] = None
    table: Optional[str] = None

    def __attrs_post_init__(self):
        """Reject chains that skip a level of the hierarchy."""
        if not self.server:
            raise ValueError("A resource must name a server")
        if self.table is not None and self.database is None:
            raise ValueError("A table resource must name its database")

    @property
    def parts(self) -> tuple[tuple[ResourceLevel, str], ...]:
        """The (level, name) pairs of this path, coarsest first."""
        values = (self.server, self.database, self.table)
        return tuple((level, value) for level, value in zip(ResourceLevel, values) if value is not None)

    @classmethod
    def from_string(cls, chain: str) -> "ResourcePath":
        """Build a resource path from its chain form, e.g. ``server=s1->db=db1``.

        The positional shorthand ``s1->db1->tbl1`` is accepted as well. An
        ``action=`` component is rejected here, use
        :func:`parse_authorizable_chain` when one is expected.
        """
        resource, action = parse_authorizable_chain(chain, allow_positional=True)
        if action is not None:
            raise ValueError(f"Resource path must not name an action: {chain}")
        return resource

    def __str__(self):
        return CHAIN_SEPARATOR.join(f"{level.value}{KEY_VALUE_SEPARATOR}{value}" for level, value in self.parts)


@frozen
class Privilege:
    """A (resource chain, action) pair granted by a role.

    Privileges are stored unexpanded: ``action=all`` and coarse resources are
    interpreted by the authorizer at query time.
    """

    resource: ResourcePath
    action: str = ALL

    @classmethod
    def from_string(cls, chain: str, actions: frozenset = BUILTIN_ACTIONS) -> "Privilege":
        """Parse a privilege string such as ``server=s1->db=db1->table=t1->action=select``.

        A chain without an ``action=`` component grants every action.

        Args:
            chain: The privilege string.
            actions: Accepted action names.

        Returns:
            Privilege: The parsed privilege.

        Raises:
            ValueError: If the chain is malformed or names an unknown action.
        """
        resource, action = parse_authorizable_chain(chain, allow_positional=False)
        action = ALL if action is None else action
        if action not in actions:
            raise ValueError(f"Unknown action '{action}' in privilege {chain}")
        return cls(resource=resource, action=action)

    def __str__(self):
        return f"{self.resource}{CHAIN_SEPARATOR}{ACTION_KEY}{KEY_VALUE_SEPARATOR}{self.action}"


def parse_authorizable_chain(chain: str, allow_positional: bool = False) -> tuple[ResourcePath, Optional[str]]:
    """Split an authorizable chain into its resource path and optional action.

    Keys are case-insensitive and must appear in hierarchy order
    (server, db, table, action) without gaps. Names are kept verbatim.

    Args:
        chain: Text such as ``server=s1->db=db1->action=select``.
        allow_positional: Also accept ``s1->db1->tbl1`` (server, db, table by position).

    Returns:
        tuple: The resource path and the lowercased action, or None if no action was given.

    Raises:
        ValueError: If the chain cannot be parsed.
    """
    if not chain or not chain.strip():
        raise ValueError("Empty authorizable chain")

    parts = [part.strip() for part in chain.strip().split(CHAIN_SEPARATOR)]
    if any(not part for part in parts):
        raise ValueError(f"Empty component in chain: {chain}")

    if allow_positional and not any(KEY_VALUE_SEPARATOR in part for part in parts):
        if len(parts) > len(ResourceLevel):
            raise ValueError(f"Too many components in chain: {chain}")
        parts = [f"{key}{KEY_VALUE_SEPARATOR}{value}" for key, value in zip(CHAIN_KEYS, parts)]

    values = {}
    expected_position = 0
    for part in parts:
        if KEY_VALUE_SEPARATOR not in part:
            raise ValueError(f"Component '{part}' is not key=value in chain: {chain}")
        key, value = part.split(KEY_VALUE_SEPARATOR, 1)
        key, value = key.strip().lower(), value.strip()
        if key not in CHAIN_KEYS:
            raise ValueError(f"Unknown component '{key}' in chain: {chain}")
        if not value:
            raise ValueError(f"Component '{key}' has no value in chain: {chain}")
        if key in values or ACTION_KEY in values:
            raise ValueError(f"Component '{key}' after action or repeated in chain: {chain}")
        position = CHAIN_KEYS.index(key)
        # action may follow any resource level, every other key must be the next one
        if key != ACTION_KEY and position != expected_position:
            raise ValueError(f"Component '{key}' out of order in chain: {chain}")
        values[key] = value
        expected_position = position + 1

    action = values.pop(ACTION_KEY, None)
    if ResourceLevel.SERVER.value not in values:
        raise ValueError(f"Chain does not name a server: {chain}")

    resource = ResourcePath(
        server=values[ResourceLevel.SERVER.value],
        database=values.get(ResourceLevel.DATABASE.value),
        table=values.get(ResourceLevel.TABLE.value),
    )
    return resource, action.lower() if action is not None else None


def freeze_mapping(mapping: Mapping) -> Mapping:
    """Return a read-only view of ``mapping`` with frozenset values."""
    return MappingProxyType({key: frozenset(values) for key, values in mapping.items()})


@frozen
class PolicyDocument:
    """The parsed content of one policy file.

    Each section has its own typed mapping. Only the global document carries
    ``databases`` entries.

    Attributes:
        location: Where the document was read from.
        groups: Group name to the role names it is granted.
        roles: Role name to the privileges it grants.
        users: User name to the group names it belongs to.
        databases: Database name to the location of its delegated document.
        database: The database this document was delegated for, None for the global document.
    """

    location: str
    groups: Mapping[str, frozenset] = field(factory=dict, converter=freeze_mapping)
    roles: Mapping[str, frozenset] = field(factory=dict, converter=freeze_mapping)
    users: Mapping[str, frozenset] = field(factory=dict, converter=freeze_mapping)
    databases: Mapping[str, str] = field(factory=dict, converter=lambda value: MappingProxyType(dict(value)))
    database: Optional[str] = None

    @property
    def is_delegated(self) -> bool:
        return self.database is not None


@frozen
class LoadProblem:
    """A non-fatal failure recorded while building a policy graph.

    Attributes:
        error: The load error that degraded the policy.
        database: The delegated database concerned, if any.
    """

    error: Exception
    database: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        return getattr(self.error, "location", None)

    def __str__(self):
        prefix = f"[{self.database}] " if self.database else ""
        return f"{prefix}{self.error}"


@frozen
class LoadReport:
    """Outcome of a policy load.

    Attributes:
        locations: Every document location the load consulted, including the
            ones that failed, so that watchers can observe them.
        problems: Degraded grant paths, in the order they were found.
        failed_databases: Databases whose delegated document was rejected.
    """

    locations: tuple = ()
    problems: tuple = ()
    failed_databases: frozenset = frozenset()

    @property
    def degraded(self) -> bool:
        return bool(self.problems)


@define(frozen=True)
class AccessDecision:
    """Result of an authorization check.

    A denial carries a :class:`DenyReason`. Decisions never carry the
    privilege that matched or would have matched.
    """

    principal: str
    action: str
    resource: ResourcePath
    allowed: bool
    reason: Optional[DenyReason] = None
    generation: int = 0

    def __bool__(self):
        return self.allowed

    @classmethod
    def allow(cls, principal: str, action: str, resource: ResourcePath, generation: int = 0) -> "AccessDecision":
        return cls(principal, action, resource, allowed=True, generation=generation)

    @classmethod
    def deny(
        cls, principal: str, action: str, resource: ResourcePath, reason: DenyReason, generation: int = 0
    ) -> "AccessDecision":
        return cls(principal, action, resource, allowed=False, reason=reason, generation=generation)


@define(frozen=True)
class EngineConfig:
    """Settings of one policy engine.

    Attributes:
        policy_file: Location of the global policy document.
        server_name: When set, privileges for other servers are dropped at load.
        strict_group_references: Fail the load when a user references an undefined group.
        ignore_unknown_sections: Skip unknown sections with a warning instead of rejecting the document.
        extra_actions: Action names accepted on top of the built-in ones.
        delegation_timeout: Seconds a delegated document may take to load.
    """

    DEFAULT_DELEGATION_TIMEOUT: ClassVar[float] = 10.0

    policy_file: Optional[str] = None
    server_name: Optional[str] = None
    strict_group_references: bool = False
    ignore_unknown_sections: bool = False
    extra_actions: frozenset = field(default=frozenset(), converter=lambda value: frozenset(a.lower() for a in value))
    delegation_timeout: float = DEFAULT_DELEGATION_TIMEOUT

    @property
    def actions(self) -> frozenset:
        return BUILTIN_ACTIONS | self.extra_actions
