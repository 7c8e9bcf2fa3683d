"""Resolved, immutable policy graph.

A graph is the merge of the global policy document with every delegated
document that loaded successfully. It maps users to groups, groups to roles
and roles to privileges. There is no nesting: resolving a principal is three
lookups.

Graphs are never modified after they are built. A reload builds a new graph
and publishes it in place of the old one.
"""

from typing import Mapping

from attrs import field, frozen

from warehouse_authz.api.data import LoadReport, Privilege, freeze_mapping


@frozen
class PolicyGraph:
    """Point-query surface over a resolved policy.

    Attributes:
        users: User name to the names of the declared groups it belongs to.
        groups: Group name to the role names it is granted.
        roles: Role name to its (unexpanded) privileges.
        databases: Names of the databases the policy knows about.
        generation: Monotonic build number assigned by the engine.
        report: Degraded grant paths found while building the graph.
    """

    users: Mapping[str, frozenset] = field(factory=dict, converter=freeze_mapping)
    groups: Mapping[str, frozenset] = field(factory=dict, converter=freeze_mapping)
    roles: Mapping[str, frozenset] = field(factory=dict, converter=freeze_mapping)
    databases: frozenset = field(factory=frozenset, converter=frozenset)
    generation: int = 0
    report: LoadReport = field(factory=LoadReport)

    def groups_for(self, principal: str) -> frozenset:
        """Groups ``principal`` belongs to."""
        return self.users.get(principal, frozenset())

    def roles_for(self, principal: str) -> frozenset:
        """Roles granted to ``principal`` through its groups."""
        roles = set()
        for group in self.groups_for(principal):
            roles.update(self.groups.get(group, ()))
        return frozenset(roles)

    def resolve(self, principal: str) -> frozenset[Privilege]:
        """Every privilege reachable by ``principal`` through its groups and their roles.

        The returned set is not expanded: ``action=all`` and coarse resources
        are interpreted by the authorizer.
        """
        privileges = set()
        for role in self.roles_for(principal):
            privileges.update(self.roles.get(role, ()))
        return frozenset(privileges)

    def knows_database(self, database: str) -> bool:
        return database in self.databases

    @property
    def sources(self) -> tuple:
        """Every document location consulted to build this graph."""
        return self.report.locations
