"""
Process-wide policy engine for warehouse_authz.

Builds a :class:`PolicyEngine` from Django settings the first time it is
needed and keeps it for the lifetime of the process.

Usage:
    from warehouse_authz.engine.enforcer import get_engine
    decision = get_engine().check(user, action, resource)

Requires the `WAREHOUSE_AUTHZ_POLICY_FILE` setting. Set
`WAREHOUSE_AUTHZ_WATCHER_ENABLED` to reload when policy documents change.
"""

import logging
import threading

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from warehouse_authz.api.data import EngineConfig
from warehouse_authz.engine.coordinator import PolicyEngine

logger = logging.getLogger(__name__)

_engine = None
_lock = threading.Lock()


def get_engine_config(**overrides) -> EngineConfig:
    """Build the engine settings from Django settings.

    Args:
        **overrides: Values that take precedence over the Django settings
            (e.g. ``policy_file`` given on a command line).

    Raises:
        ImproperlyConfigured: If no global policy document is configured.
    """
    values = {
        "policy_file": getattr(settings, "WAREHOUSE_AUTHZ_POLICY_FILE", None),
        "server_name": getattr(settings, "WAREHOUSE_AUTHZ_SERVER_NAME", None),
        "strict_group_references": getattr(settings, "WAREHOUSE_AUTHZ_STRICT_GROUP_REFERENCES", False),
        "ignore_unknown_sections": getattr(settings, "WAREHOUSE_AUTHZ_IGNORE_UNKNOWN_SECTIONS", False),
        "extra_actions": getattr(settings, "WAREHOUSE_AUTHZ_EXTRA_ACTIONS", ()),
        "delegation_timeout": getattr(
            settings, "WAREHOUSE_AUTHZ_DELEGATION_TIMEOUT", EngineConfig.DEFAULT_DELEGATION_TIMEOUT
        ),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    if not values["policy_file"]:
        raise ImproperlyConfigured("WAREHOUSE_AUTHZ_POLICY_FILE must point at the global policy document.")
    return EngineConfig(**values)


def get_engine() -> PolicyEngine:
    """Return the process-wide engine, building it on first use.

    Raises:
        ImproperlyConfigured: If the settings do not name a policy document.
        PolicyLoadError: If the initial policy load fails.
    """
    global _engine  # pylint: disable=global-statement
    engine = _engine
    if engine is not None:
        return engine

    with _lock:
        if _engine is None:
            engine = PolicyEngine(get_engine_config())
            if getattr(settings, "WAREHOUSE_AUTHZ_WATCHER_ENABLED", False):
                try:
                    engine.start_watching()
                except Exception as e:  # pylint: disable=broad-exception-caught
                    logger.error(f"Failed to start policy watcher: {e}")
            _engine = engine
        return _engine


def reset_engine():
    """Close and forget the process-wide engine; the next :func:`get_engine` builds a new one."""
    global _engine  # pylint: disable=global-statement
    with _lock:
        engine, _engine = _engine, None
    if engine is not None:
        engine.close()
