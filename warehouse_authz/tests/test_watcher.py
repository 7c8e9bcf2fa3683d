"""Test cases for the policy file watcher."""

import os
import time
from unittest.mock import Mock

from watchdog.events import FileModifiedEvent, FileMovedEvent

from warehouse_authz.engine.coordinator import PolicyEngine
from warehouse_authz.engine.watcher import PolicyChangeHandler, PolicyFileWatcher
from warehouse_authz.tests.test_utils import DB2_POLICY_NAME, PolicyFilesMixin


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestPolicyChangeHandler(PolicyFilesMixin):
    """Tests for filtering filesystem events."""

    def setUp(self):
        super().setUp()
        self.watched = os.path.join(self.policy_dir, "policy.ini")
        self.watcher = Mock()
        self.watcher.is_watched.side_effect = lambda path: os.path.abspath(path) == self.watched
        self.handler = PolicyChangeHandler(self.watcher)

    def test_event_on_watched_document(self):
        self.handler.on_any_event(FileModifiedEvent(self.watched))

        self.watcher.notify_change.assert_called_once_with(self.watched)

    def test_event_on_other_file(self):
        self.handler.on_any_event(FileModifiedEvent(os.path.join(self.policy_dir, "notes.txt")))

        self.watcher.notify_change.assert_not_called()

    def test_reads_of_watched_document_are_ignored(self):
        """Opening a document to read it, as every reload does, is not a change."""
        event = Mock(is_directory=False, event_type="opened", src_path=self.watched, dest_path="")

        self.handler.on_any_event(event)

        self.watcher.notify_change.assert_not_called()

    def test_document_replaced_by_rename(self):
        """Editors that save through a temporary file and rename it still trigger a reload."""
        temporary = os.path.join(self.policy_dir, ".policy.ini.swp")

        self.handler.on_any_event(FileMovedEvent(temporary, self.watched))

        self.watcher.notify_change.assert_called_once_with(temporary)


class TestPolicyFileWatcher(PolicyFilesMixin):
    """Tests for reloading the engine when documents change on disk."""

    def setUp(self):
        super().setUp()
        self.policy_file = self.write_scenario()
        self.engine = PolicyEngine(self.make_config(self.policy_file))
        self.addCleanup(self.engine.close)

    def test_watches_global_and_delegated_documents(self):
        watcher = self.engine.start_watching(debounce=0.1)

        self.assertEqual(
            watcher.paths,
            frozenset({os.path.abspath(self.policy_file), os.path.join(self.policy_dir, DB2_POLICY_NAME)}),
        )
        self.assertIs(self.engine.start_watching(), watcher)

    def test_change_to_delegated_document_triggers_reload(self):
        self.engine.start_watching(debounce=0.1)
        self.assertFalse(self.engine.check("user_2", "select", "server1->db2->tbl3").allowed)

        self.write_policy(
            DB2_POLICY_NAME,
            ["[groups]", "user_group2 = select_tbl2", "[roles]", "select_tbl2 = server=server1->db=db2"],
        )

        self.assertTrue(wait_for(lambda: self.engine.generation >= 2))
        self.assertTrue(self.engine.check("user_2", "select", "server1->db2->tbl3").allowed)

    def test_bursts_of_changes_are_debounced(self):
        watcher = PolicyFileWatcher(self.engine, debounce=0.3)
        watcher.start()
        self.addCleanup(watcher.stop)

        for _ in range(5):
            watcher.notify_change(self.policy_file)

        self.assertTrue(wait_for(lambda: self.engine.generation >= 2))
        time.sleep(0.5)
        self.assertEqual(self.engine.generation, 2)

    def test_watched_set_follows_new_delegations(self):
        watcher = self.engine.start_watching(debounce=10)
        db3_policy = self.write_policy("db3.ini", ["[groups]", "user_group3 = select_tbl2"])
        with open(self.policy_file, "a", encoding="utf-8") as policy_file:
            policy_file.write(f"db3 = {db3_policy}\n")

        self.engine.trigger_reload()

        self.assertIn(os.path.abspath(db3_policy), watcher.paths)

    def test_stop_drops_pending_reload(self):
        watcher = PolicyFileWatcher(self.engine, debounce=0.2)
        watcher.start()

        watcher.notify_change(self.policy_file)
        watcher.stop()
        time.sleep(0.4)

        self.assertEqual(self.engine.generation, 1)

    def test_close_stops_watcher(self):
        watcher = self.engine.start_watching(debounce=0.1)

        self.engine.close()
        watcher.notify_change(self.policy_file)

        self.assertIsNone(watcher._timer)  # pylint: disable=protected-access
