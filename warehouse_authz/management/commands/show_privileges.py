"""Django management command to show what a user resolves to.

Example Usage:
    python manage.py show_privileges user_1
"""

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from warehouse_authz.engine.coordinator import PolicyEngine
from warehouse_authz.engine.enforcer import get_engine_config
from warehouse_authz.exceptions import AuthzError


class Command(BaseCommand):
    """List the groups, roles and privileges a user holds."""

    help = "Show the groups, roles and privileges resolved for a user."

    def add_arguments(self, parser) -> None:
        parser.add_argument("user", type=str, help="User name")
        parser.add_argument(
            "--policy-file",
            type=str,
            default=None,
            help="Path to the global policy document (defaults to WAREHOUSE_AUTHZ_POLICY_FILE)",
        )

    def handle(self, *args, **options):
        user = options["user"]
        try:
            with PolicyEngine(get_engine_config(policy_file=options["policy_file"])) as engine:
                graph = engine.current_graph
        except (AuthzError, ImproperlyConfigured) as e:
            raise CommandError(str(e)) from e

        self.stdout.write(f"groups: {', '.join(sorted(graph.groups_for(user))) or '-'}")
        self.stdout.write(f"roles: {', '.join(sorted(graph.roles_for(user))) or '-'}")
        for privilege in sorted(graph.resolve(user), key=str):
            self.stdout.write(f"  {privilege}")
