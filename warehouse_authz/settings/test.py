"""
Test settings for warehouse_authz.
"""

from warehouse_authz.settings.common import plugin_settings as common_plugin_settings


def plugin_settings(settings):
    """
    Configure settings for the test-suite.

    Args:
        settings: The Django settings object (or settings module)
    """
    common_plugin_settings(settings)
    # Tests write their own policy documents and build engines explicitly
    settings.WAREHOUSE_AUTHZ_POLICY_FILE = None
    settings.WAREHOUSE_AUTHZ_WATCHER_ENABLED = False
    settings.WAREHOUSE_AUTHZ_DELEGATION_TIMEOUT = 2.0
