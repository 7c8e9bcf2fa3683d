"""
Common settings for warehouse_authz.
"""

from warehouse_authz.api.data import EngineConfig


def plugin_settings(settings):
    """
    Configure default settings for warehouse_authz.

    Values already present on the settings object are left untouched.

    Args:
        settings: The Django settings object (or settings module)
    """
    defaults = {
        # Location of the global policy document; the engine is not built while unset
        "WAREHOUSE_AUTHZ_POLICY_FILE": None,
        "WAREHOUSE_AUTHZ_SERVER_NAME": None,
        "WAREHOUSE_AUTHZ_STRICT_GROUP_REFERENCES": False,
        "WAREHOUSE_AUTHZ_IGNORE_UNKNOWN_SECTIONS": False,
        "WAREHOUSE_AUTHZ_EXTRA_ACTIONS": (),
        "WAREHOUSE_AUTHZ_DELEGATION_TIMEOUT": EngineConfig.DEFAULT_DELEGATION_TIMEOUT,
        "WAREHOUSE_AUTHZ_WATCHER_ENABLED": False,
    }
    for name, value in defaults.items():
        if not hasattr(settings, name):
            setattr(settings, name, value)
