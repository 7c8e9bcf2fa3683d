"""Test cases for the process-wide engine and its Django settings."""

import types
from unittest import TestCase
from unittest.mock import patch

from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from warehouse_authz.api.data import EngineConfig
from warehouse_authz.engine.coordinator import EngineState
from warehouse_authz.engine.enforcer import get_engine, get_engine_config, reset_engine
from warehouse_authz.settings.common import plugin_settings
from warehouse_authz.tests.test_utils import ConfiguredEngineMixin, PolicyFilesMixin


class TestGetEngineConfig(PolicyFilesMixin):
    """Tests for building engine settings from Django settings."""

    @override_settings(
        WAREHOUSE_AUTHZ_POLICY_FILE="/etc/warehouse/policy.ini",
        WAREHOUSE_AUTHZ_SERVER_NAME="server1",
        WAREHOUSE_AUTHZ_STRICT_GROUP_REFERENCES=True,
        WAREHOUSE_AUTHZ_EXTRA_ACTIONS=("Refresh",),
        WAREHOUSE_AUTHZ_DELEGATION_TIMEOUT=3.5,
    )
    def test_reads_settings(self):
        config = get_engine_config()

        self.assertEqual(
            config,
            EngineConfig(
                policy_file="/etc/warehouse/policy.ini",
                server_name="server1",
                strict_group_references=True,
                extra_actions=("refresh",),
                delegation_timeout=3.5,
            ),
        )

    @override_settings(WAREHOUSE_AUTHZ_POLICY_FILE="/etc/warehouse/policy.ini")
    def test_overrides_take_precedence(self):
        config = get_engine_config(policy_file="/tmp/other.ini", server_name=None)

        self.assertEqual(config.policy_file, "/tmp/other.ini")
        self.assertIsNone(config.server_name)

    def test_missing_policy_file(self):
        with self.assertRaises(ImproperlyConfigured):
            get_engine_config()


class TestGetEngine(ConfiguredEngineMixin):
    """Tests for the lazily built, process-wide engine."""

    def test_engine_is_built_once(self):
        engine = get_engine()

        self.assertIs(get_engine(), engine)
        self.assertEqual(engine.state, EngineState.LOADED)
        self.assertTrue(engine.check("user_1", "select", "server1->db1->tbl1").allowed)

    def test_reset_closes_the_engine(self):
        engine = get_engine()

        reset_engine()

        self.assertEqual(engine.state, EngineState.CLOSED)
        self.assertIsNot(get_engine(), engine)

    def test_watcher_is_started_when_enabled(self):
        with override_settings(WAREHOUSE_AUTHZ_WATCHER_ENABLED=True):
            engine = get_engine()

        self.assertIsNotNone(engine._watcher)  # pylint: disable=protected-access

    def test_watcher_failure_does_not_prevent_the_engine(self):
        with override_settings(WAREHOUSE_AUTHZ_WATCHER_ENABLED=True), patch(
            "warehouse_authz.engine.coordinator.PolicyEngine.start_watching", side_effect=OSError("inotify limit")
        ):
            engine = get_engine()

        self.assertEqual(engine.state, EngineState.LOADED)


class TestPluginSettings(TestCase):
    """Tests for the default settings."""

    def test_defaults_are_added(self):
        settings = types.SimpleNamespace()

        plugin_settings(settings)

        self.assertIsNone(settings.WAREHOUSE_AUTHZ_POLICY_FILE)
        self.assertFalse(settings.WAREHOUSE_AUTHZ_WATCHER_ENABLED)
        self.assertEqual(settings.WAREHOUSE_AUTHZ_DELEGATION_TIMEOUT, EngineConfig.DEFAULT_DELEGATION_TIMEOUT)

    def test_existing_values_are_kept(self):
        settings = types.SimpleNamespace(WAREHOUSE_AUTHZ_POLICY_FILE="/etc/warehouse/policy.ini")

        plugin_settings(settings)

        self.assertEqual(settings.WAREHOUSE_AUTHZ_POLICY_FILE, "/etc/warehouse/policy.ini")
