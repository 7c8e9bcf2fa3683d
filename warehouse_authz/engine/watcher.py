"""Filesystem watcher that reloads the policy engine when a policy document changes.

The watcher observes the directories of every document the published graph
was built from (the global document and all delegated documents, including
the ones that failed to load so that fixing them takes effect). Bursts of
events are debounced into a single reload. After each publish the watched
set follows the graph's new delegation map.
"""

import logging
import os
import threading

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from warehouse_authz.exceptions import EngineClosed

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5

# reads of a document (including our own reloads) must not trigger a reload
CHANGE_EVENT_TYPES = frozenset(
    {EVENT_TYPE_CLOSED, EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class PolicyChangeHandler(FileSystemEventHandler):
    """Forwards events that touch a watched policy document to the watcher."""

    def __init__(self, watcher: "PolicyFileWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in CHANGE_EVENT_TYPES:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(path and self.watcher.is_watched(path) for path in paths):
            self.watcher.notify_change(event.src_path)


class PolicyFileWatcher:
    """Triggers ``engine.trigger_reload()`` when a policy document changes.

    Args:
        engine: The :class:`PolicyEngine` to reload.
        debounce: Seconds to wait after the last event before reloading.
    """

    def __init__(self, engine, debounce: float = DEFAULT_DEBOUNCE_SECONDS):
        self.engine = engine
        self.debounce = debounce
        self._lock = threading.Lock()
        self._observer = None
        self._timer = None
        self._paths = frozenset()
        self._handler = PolicyChangeHandler(self)

    @property
    def paths(self) -> frozenset:
        """Absolute paths of the watched policy documents."""
        return self._paths

    def is_watched(self, path: str) -> bool:
        return os.path.abspath(path) in self._paths

    def start(self):
        """Start observing the documents of the currently published graph."""
        with self._lock:
            if self._observer is not None:
                return
            self._observer = Observer()
            self._observer.daemon = True
            self._schedule(self.engine.current_graph.sources)
            self._observer.start()
        self.engine.add_reload_listener(self.refresh)
        logger.info(f"Watching {len(self._paths)} policy documents for changes.")

    def stop(self):
        """Stop observing and drop any pending reload."""
        with self._lock:
            observer, self._observer = self._observer, None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)
            logger.info("Stopped watching policy documents.")

    def refresh(self, graph):
        """Follow the documents of a newly published ``graph``."""
        with self._lock:
            if self._observer is None:
                return
            self._observer.unschedule_all()
            self._schedule(graph.sources)

    def notify_change(self, path: str):
        """Record a change and (re)arm the debounce timer."""
        logger.debug(f"Policy document changed: {path}")
        with self._lock:
            if self._observer is None:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._reload)
            self._timer.daemon = True
            self._timer.start()

    def _reload(self):
        with self._lock:
            self._timer = None
            if self._observer is None:
                return
        try:
            outcome = self.engine.trigger_reload()
        except EngineClosed:
            return
        logger.info(f"Policy documents changed on disk, reload {outcome.value}.")

    def _schedule(self, locations):
        self._paths = frozenset(os.path.abspath(location) for location in locations)
        directories = {os.path.dirname(path) for path in self._paths}
        for directory in sorted(directories):
            if not os.path.isdir(directory):
                logger.warning(f"Not watching {directory}: directory does not exist.")
                continue
            self._observer.schedule(self._handler, directory, recursive=False)
