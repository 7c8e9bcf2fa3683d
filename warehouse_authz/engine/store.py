"""Policy store: composes the global document with its delegated documents.

The global document is the trust root. Any problem with it aborts the load.
Each ``[databases]`` entry of the global document names a per-database
document that governs that one database; a missing, malformed, slow or
inconsistent per-database document only degrades the database it was
delegated for.

Role and group names share one namespace across all documents: a delegated
document may add privileges to a role or roles to a group that the global
document also declares.
"""

import logging
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, wait

import attrs

from warehouse_authz.api.data import WILDCARD, EngineConfig, LoadProblem, LoadReport, PolicyDocument
from warehouse_authz.engine.graph import PolicyGraph
from warehouse_authz.engine.parser import PolicyParser
from warehouse_authz.exceptions import (
    DelegationTimeout,
    MissingDelegatedDocument,
    MissingPolicyDocument,
    OutOfScopePrivilege,
    PolicyLoadError,
    UnknownGroupReference,
    UnknownRoleReference,
)

logger = logging.getLogger(__name__)


class PolicyStore:
    """Loads policy documents and resolves them into a :class:`PolicyGraph`.

    Args:
        config: Engine settings.
        parser: Parser used for every document, built from ``config`` when omitted.
    """

    def __init__(self, config: EngineConfig, parser: PolicyParser = None):
        self.config = config
        self.parser = parser or PolicyParser(config)

    def load(self, location: str = None, generation: int = 0) -> PolicyGraph:
        """Load the global document at ``location`` and everything it delegates to.

        Args:
            location: Global document location, defaults to ``config.policy_file``.
            generation: Build number stamped on the resulting graph.

        Returns:
            PolicyGraph: The resolved graph. Degraded grant paths are listed in ``graph.report``.

        Raises:
            PolicyLoadError: If the global document is missing or invalid, or
                if a structural reference cannot be resolved.
        """
        location = location or self.config.policy_file
        if not location:
            raise MissingPolicyDocument("No global policy document configured")

        problems = []
        global_document = self._restrict_to_server(self.parser.parse_file(location), problems)

        delegations = {
            database: self._resolve_location(delegated_location, location)
            for database, delegated_location in sorted(global_document.databases.items())
        }
        documents, failed = self._load_delegated(delegations, problems)
        documents, rejected = self._check_delegated_references(global_document, documents, problems)
        failed |= rejected

        groups, roles = self._merge(global_document, documents.values())
        self._check_global_references(global_document, roles, failed, problems)
        users = self._resolve_users(global_document, groups, failed, problems)

        databases = set(global_document.databases)
        for privileges in roles.values():
            databases.update(
                privilege.resource.database
                for privilege in privileges
                if privilege.resource.database not in (None, WILDCARD)
            )

        report = LoadReport(
            locations=(location,) + tuple(delegations.values()),
            problems=tuple(problems),
            failed_databases=frozenset(failed),
        )
        graph = PolicyGraph(
            users=users, groups=groups, roles=roles, databases=databases, generation=generation, report=report
        )
        logger.info(
            f"Resolved policy generation {generation} from {location}: {len(users)} users, "
            f"{len(groups)} groups, {len(roles)} roles, {len(documents)}/{len(delegations)} "
            f"delegated documents, {len(problems)} problems."
        )
        return graph

    @staticmethod
    def _resolve_location(delegated_location: str, global_location: str) -> str:
        """Interpret relative delegated locations against the global document's directory."""
        if os.path.isabs(delegated_location):
            return delegated_location
        return os.path.join(os.path.dirname(os.path.abspath(global_location)), delegated_location)

    def _load_delegated(self, delegations, problems):
        """Parse every delegated document concurrently.

        Every document gets its own worker, so all of them start together and
        ``config.delegation_timeout`` bounds each one. A document that is not
        loaded in time is given up on; the loads of other databases are not
        held back by it.

        A worker stuck reading a document cannot be interrupted. It is left
        running after the load returns, and since the interpreter joins
        executor workers at exit it may delay process shutdown until the read
        completes.

        Returns:
            tuple: Database name to scoped document for the successful loads,
            and the set of databases whose load failed.
        """
        documents, failed = {}, set()
        if not delegations:
            return documents, failed

        executor = ThreadPoolExecutor(
            max_workers=len(delegations),
            thread_name_prefix="policy-delegation",
        )
        futures = {
            database: executor.submit(self._load_delegated_document, database, location)
            for database, location in delegations.items()
        }
        try:
            _, pending = wait(futures.values(), timeout=self.config.delegation_timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for database, future in futures.items():
            location = delegations[database]
            if future in pending:
                error = DelegationTimeout(database, location, self.config.delegation_timeout)
            else:
                error = future.exception()
                if error is None:
                    document = self._restrict_to_server(future.result(), problems)
                    documents[database] = self._restrict_to_database(document, problems)
                    continue
                if not isinstance(error, PolicyLoadError):
                    raise error

            logger.error(f"Ignoring policy document for database '{database}': {error}")
            failed.add(database)
            problems.append(LoadProblem(error=error, database=database))

        return documents, failed

    def _load_delegated_document(self, database: str, location: str) -> PolicyDocument:
        try:
            return self.parser.parse_file(location, database=database)
        except MissingPolicyDocument as e:
            raise MissingDelegatedDocument(database, location, str(e.__cause__ or "")) from e

    def _restrict_to_server(self, document: PolicyDocument, problems) -> PolicyDocument:
        """Drop privileges that name a server other than the configured one."""
        server_name = self.config.server_name
        if not server_name:
            return document
        return self._filter_privileges(
            document,
            lambda privilege: privilege.resource.server in (server_name, WILDCARD),
            f"server '{server_name}'",
            problems,
        )

    def _restrict_to_database(self, document: PolicyDocument, problems) -> PolicyDocument:
        """Drop privileges of a delegated document that reach beyond its database."""
        return self._filter_privileges(
            document,
            lambda privilege: privilege.resource.database == document.database,
            f"database '{document.database}'",
            problems,
        )

    @staticmethod
    def _filter_privileges(document, keep, scope, problems):
        roles = {}
        for role, privileges in document.roles.items():
            roles[role] = set()
            for privilege in sorted(privileges, key=str):
                if keep(privilege):
                    roles[role].add(privilege)
                    continue
                error = OutOfScopePrivilege(role, privilege, scope, document.location)
                logger.warning(f"Dropping privilege: {error}")
                problems.append(LoadProblem(error=error, database=document.database))
        return attrs.evolve(document, roles=roles)

    @staticmethod
    def _check_delegated_references(global_document, documents, problems):
        """Reject delegated documents whose groups reference undefined roles.

        A delegated group may use roles from its own document or from the
        global document.

        Returns:
            tuple: The documents that passed and the databases that were rejected.
        """
        accepted, rejected = {}, set()
        for database, document in documents.items():
            known_roles = set(global_document.roles) | set(document.roles)
            error = next(
                (
                    UnknownRoleReference(group, role, document.location)
                    for group, role_names in sorted(document.groups.items())
                    for role in sorted(role_names)
                    if role not in known_roles
                ),
                None,
            )
            if error is None:
                accepted[database] = document
                continue
            logger.error(f"Ignoring policy document for database '{database}': {error}")
            rejected.add(database)
            problems.append(LoadProblem(error=error, database=database))
        return accepted, rejected

    @staticmethod
    def _merge(global_document, documents):
        """Union groups and roles of all documents into one namespace."""
        groups, roles = defaultdict(set), defaultdict(set)
        for document in (global_document, *documents):
            for group, role_names in document.groups.items():
                groups[group].update(role_names)
            for role, privileges in document.roles.items():
                roles[role].update(privileges)
        return groups, roles

    @staticmethod
    def _check_global_references(global_document, roles, failed, problems):
        """Verify the global document's groups only grant defined roles.

        An undefined role is fatal unless a delegated document failed to
        load, since the role may live in the document that failed.
        """
        for group, role_names in sorted(global_document.groups.items()):
            for role in sorted(role_names):
                if role in roles:
                    continue
                error = UnknownRoleReference(group, role, global_document.location)
                if not failed:
                    raise error
                logger.warning(f"{error}; a delegated document failed to load, the grant is ignored.")
                problems.append(LoadProblem(error=error))

    def _resolve_users(self, global_document, groups, failed, problems):
        """Map users onto declared groups, handling undefined groups per configuration.

        With ``strict_group_references`` an undefined group is fatal, unless a
        delegated document failed to load, since the group may live in the
        document that failed.
        """
        users = {}
        for user, group_names in sorted(global_document.users.items()):
            users[user] = set()
            for group in sorted(group_names):
                if group in groups:
                    users[user].add(group)
                    continue
                error = UnknownGroupReference(user, group, global_document.location)
                if self.config.strict_group_references and not failed:
                    raise error
                logger.warning(f"{error}; the user gets no privileges through it.")
                problems.append(LoadProblem(error=error))
        return users
