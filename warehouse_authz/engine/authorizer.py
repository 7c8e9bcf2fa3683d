"""Authorizer: answers point queries against a policy graph.

Privilege implication lives here and only here:

* a privilege on a coarser resource covers every finer resource beneath it
  (``server=s1->db=db1`` covers ``server=s1->db=db1->table=t1``),
* ``action=all`` covers every action,
* ``*`` as a resource name covers any name at that level.
"""

import logging

from warehouse_authz.api.data import (
    WILDCARD,
    AccessDecision,
    DenyReason,
    Privilege,
    ResourcePath,
    parse_authorizable_chain,
)
from warehouse_authz.constants.actions import ALL, BUILTIN_ACTIONS
from warehouse_authz.engine.graph import PolicyGraph
from warehouse_authz.exceptions import InvalidRequest

logger = logging.getLogger(__name__)


class Authorizer:
    """Evaluates ``(principal, action, resource)`` requests.

    The authorizer holds no policy state of its own; callers pass the graph
    snapshot to evaluate against so one request never spans two graphs.

    Args:
        actions: Action names a request may use.
    """

    def __init__(self, actions: frozenset = BUILTIN_ACTIONS):
        self.actions = frozenset(actions)

    def check(self, graph: PolicyGraph, principal: str, action: str, resource) -> AccessDecision:
        """Decide whether ``principal`` may perform ``action`` on ``resource``.

        Args:
            graph: The policy snapshot to evaluate against.
            principal: User name.
            action: Requested action, e.g. ``select``.
            resource: A :class:`ResourcePath` or its chain text. A trailing
                ``action=`` component is accepted when it agrees with ``action``.

        Returns:
            AccessDecision: An allow, or a deny with its reason.

        Raises:
            InvalidRequest: If the principal, action or resource is malformed.
        """
        action, resource = self.validate_request(principal, action, resource)

        if not graph.groups_for(principal):
            return self._deny(graph, principal, action, resource, DenyReason.NO_GROUPS)

        if any(self.implies(privilege, action, resource) for privilege in graph.resolve(principal)):
            return AccessDecision.allow(principal, action, resource, generation=graph.generation)

        if resource.database is not None and not graph.knows_database(resource.database):
            return self._deny(graph, principal, action, resource, DenyReason.UNKNOWN_DATABASE)
        return self._deny(graph, principal, action, resource, DenyReason.NO_MATCHING_PRIVILEGE)

    def validate_request(self, principal, action, resource) -> tuple[str, ResourcePath]:
        """Normalize a request, raising :class:`InvalidRequest` for caller misuse."""
        if not principal or not isinstance(principal, str):
            raise InvalidRequest("An authorization request must name a principal")
        if not isinstance(action, str) or action.lower() not in self.actions:
            raise InvalidRequest(f"Unknown action: {action!r}")
        action = action.lower()

        if isinstance(resource, str):
            try:
                resource, chain_action = parse_authorizable_chain(resource, allow_positional=True)
            except ValueError as e:
                raise InvalidRequest(str(e)) from e
            if chain_action is not None and chain_action != action:
                raise InvalidRequest(f"Resource names action '{chain_action}' but '{action}' was requested")
        elif not isinstance(resource, ResourcePath):
            raise InvalidRequest(f"Unsupported resource: {resource!r}")

        if any(name == WILDCARD for _, name in resource.parts):
            raise InvalidRequest(f"A request must name concrete resources: {resource}")
        return action, resource

    @staticmethod
    def implies(privilege: Privilege, action: str, resource: ResourcePath) -> bool:
        """Whether ``privilege`` grants ``action`` on ``resource``."""
        if privilege.action not in (ALL, action):
            return False

        requested = dict(resource.parts)
        for level, name in privilege.resource.parts:
            # a privilege finer than the request does not cover it
            if level not in requested:
                return False
            if name != WILDCARD and name != requested[level]:
                return False
        return True

    @staticmethod
    def _deny(graph, principal, action, resource, reason):
        logger.debug(f"Denied {action} on {resource} for {principal}: {reason.value}.")
        return AccessDecision.deny(principal, action, resource, reason, generation=graph.generation)
