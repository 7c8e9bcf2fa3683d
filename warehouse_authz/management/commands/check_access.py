"""Django management command to evaluate a single authorization request.

Example Usage:
    python manage.py check_access user_1 select "server=server1->db=db1->table=tbl1"
    python manage.py check_access user_1 select server1->db1->tbl1 --policy-file /tmp/policy.ini
"""

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from warehouse_authz.engine.coordinator import PolicyEngine
from warehouse_authz.engine.enforcer import get_engine_config
from warehouse_authz.exceptions import AuthzError


class Command(BaseCommand):
    """Print ALLOW or DENY (with the deny reason) for one request."""

    help = "Check whether a user may perform an action on a resource."

    def add_arguments(self, parser) -> None:
        parser.add_argument("user", type=str, help="User name")
        parser.add_argument("action", type=str, help="Action, e.g. select")
        parser.add_argument("resource", type=str, help="Resource path, e.g. server=s1->db=db1->table=t1")
        parser.add_argument(
            "--policy-file",
            type=str,
            default=None,
            help="Path to the global policy document (defaults to WAREHOUSE_AUTHZ_POLICY_FILE)",
        )

    def handle(self, *args, **options):
        try:
            with PolicyEngine(get_engine_config(policy_file=options["policy_file"])) as engine:
                decision = engine.check(options["user"], options["action"], options["resource"])
        except (AuthzError, ImproperlyConfigured) as e:
            raise CommandError(str(e)) from e

        if decision.allowed:
            self.stdout.write(self.style.SUCCESS(f"ALLOW {decision.action} on {decision.resource}"))
        else:
            self.stdout.write(
                self.style.ERROR(f"DENY {decision.action} on {decision.resource}: {decision.reason.value}")
            )
