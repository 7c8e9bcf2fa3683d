"""Django management command to validate policy documents.

Loads the global policy document and every per-database document it
delegates to, then prints what was resolved and which grant paths are
degraded.

Example Usage:
    python manage.py validate_policy
    python manage.py validate_policy --policy-file /etc/warehouse/policy.ini --strict
"""

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from warehouse_authz.engine.enforcer import get_engine_config
from warehouse_authz.engine.store import PolicyStore
from warehouse_authz.exceptions import PolicyLoadError


class Command(BaseCommand):
    """Django management command to validate the configured policy documents.

    Exits with an error when the global document cannot be loaded. Degraded
    per-database documents are reported; with ``--strict`` they fail the
    command as well.
    """

    help = "Validate the global policy document and the per-database documents it delegates to."

    def add_arguments(self, parser) -> None:
        """Add command-line arguments to the argument parser.

        Args:
            parser: The Django argument parser instance to configure.
        """
        parser.add_argument(
            "--policy-file",
            type=str,
            default=None,
            help="Path to the global policy document (defaults to WAREHOUSE_AUTHZ_POLICY_FILE)",
        )
        parser.add_argument(
            "--strict",
            action="store_true",
            help="Fail when any per-database document is degraded",
        )

    def handle(self, *args, **options):
        """Load the policy and report on it.

        Raises:
            CommandError: If the policy cannot be loaded, or is degraded with --strict.
        """
        try:
            config = get_engine_config(policy_file=options["policy_file"])
        except ImproperlyConfigured as e:
            raise CommandError(str(e)) from e

        try:
            graph = PolicyStore(config).load()
        except PolicyLoadError as e:
            raise CommandError(f"Policy is invalid: {e}") from e

        self.stdout.write(
            f"Loaded {len(graph.sources)} documents: {len(graph.users)} users, "
            f"{len(graph.groups)} groups, {len(graph.roles)} roles, "
            f"databases: {', '.join(sorted(graph.databases)) or '-'}"
        )
        for problem in graph.report.problems:
            self.stderr.write(f"WARNING: {problem}")

        if graph.report.degraded and options["strict"]:
            raise CommandError(f"Policy is degraded: {len(graph.report.problems)} problems found")
        self.stdout.write(self.style.SUCCESS("Policy is valid."))
