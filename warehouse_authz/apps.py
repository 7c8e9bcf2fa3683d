"""
warehouse_authz Django application initialization.
"""

import logging

from django.apps import AppConfig
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


class WarehouseAuthzConfig(AppConfig):
    """
    Configuration for the warehouse_authz Django application.
    """

    name = "warehouse_authz"
    verbose_name = "Warehouse AuthZ"

    def ready(self):
        """Build the policy engine so the first request does not pay for the policy load."""
        from warehouse_authz.engine.enforcer import get_engine  # pylint: disable=import-outside-toplevel

        try:
            get_engine()
        except ImproperlyConfigured:
            # No policy document configured (e.g., management commands given --policy-file).
            logger.info("WAREHOUSE_AUTHZ_POLICY_FILE is not set, policy engine not started.")
