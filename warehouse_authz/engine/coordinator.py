"""Policy engine: serves authorization checks and coordinates reloads.

The engine owns exactly one published :class:`PolicyGraph`. Checks read the
published reference once and evaluate against that snapshot without taking
any lock. A reload builds a complete new graph off to the side and publishes
it with a single reference assignment, so a check sees either the old or the
new generation and never a mix of both.

Lifecycle::

    UNLOADED -> LOADED -> RELOADING -> LOADED -> ... -> CLOSED

Usage:
    engine = PolicyEngine(EngineConfig(policy_file="/etc/warehouse/policy.ini"))
    decision = engine.check("alice", "select", "server=server1->db=sales->table=orders")
    engine.trigger_reload()
    engine.close()
"""

import logging
import threading
from enum import Enum

from warehouse_authz.api.data import AccessDecision, EngineConfig
from warehouse_authz.engine.authorizer import Authorizer
from warehouse_authz.engine.graph import PolicyGraph
from warehouse_authz.engine.store import PolicyStore
from warehouse_authz.engine.watcher import PolicyFileWatcher
from warehouse_authz.exceptions import EngineClosed

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """States of the engine lifecycle."""

    UNLOADED = "unloaded"
    LOADED = "loaded"
    RELOADING = "reloading"
    CLOSED = "closed"


class ReloadOutcome(Enum):
    """What a reload trigger resulted in."""

    PUBLISHED = "published"
    FAILED = "failed"
    CANCELLED = "cancelled"
    # absorbed by a reload that was already running
    COALESCED = "coalesced"


class PolicyEngine:
    """Reload coordinator and public entry point of the authorization engine.

    The initial load happens in the constructor; if it fails the exception
    propagates and no engine is created.

    Args:
        config: Engine settings.
        store: Policy store to load graphs with, built from ``config`` when omitted.
        authorizer: Authorizer to evaluate checks with, built from ``config`` when omitted.

    Raises:
        PolicyLoadError: If the initial load fails.
    """

    def __init__(self, config: EngineConfig, store: PolicyStore = None, authorizer: Authorizer = None):
        self.config = config
        self._store = store or PolicyStore(config)
        self._authorizer = authorizer or Authorizer(config.actions)

        # held for the whole duration of a build, never by readers
        self._reload_lock = threading.Lock()
        # held only around state transitions and the publish assignment
        self._state_lock = threading.Lock()
        self._reload_requested = threading.Event()
        self._cancel_requested = threading.Event()
        self._listeners = []
        self._watcher = None

        self._state = EngineState.UNLOADED
        self._graph = None
        self._publish(self._store.load(generation=1))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def current_graph(self) -> PolicyGraph:
        """The published graph.

        Raises:
            EngineClosed: If the engine was closed.
        """
        graph = self._graph
        if graph is None:
            raise EngineClosed("The policy engine is closed")
        return graph

    @property
    def generation(self) -> int:
        return self.current_graph.generation

    def check(self, principal: str, action: str, resource) -> AccessDecision:
        """Authorize ``action`` on ``resource`` for ``principal``.

        See :meth:`Authorizer.check` for the accepted arguments.

        Raises:
            EngineClosed: If the engine was closed.
            InvalidRequest: If the request is malformed.
        """
        return self._authorizer.check(self.current_graph, principal, action, resource)

    def resolve(self, principal: str) -> frozenset:
        """Privileges reachable by ``principal`` in the published graph."""
        return self.current_graph.resolve(principal)

    def trigger_reload(self) -> ReloadOutcome:
        """Rebuild the policy graph from the policy documents and publish it.

        Only one reload runs at a time. A trigger that arrives while a reload
        is running is absorbed by it: the running reload builds once more
        after it finishes, so changes made during its build are picked up.

        A failed or cancelled reload leaves the published graph untouched.
        Triggers absorbed by a cancelled reload are dropped with it.

        Raises:
            EngineClosed: If the engine was closed.
        """
        if self._graph is None:
            raise EngineClosed("The policy engine is closed")

        # the request is recorded before contending for the lock, so whichever
        # thread holds or next takes the lock is guaranteed to see it
        self._reload_requested.set()
        outcome = ReloadOutcome.COALESCED
        while self._reload_requested.is_set():
            if not self._reload_lock.acquire(blocking=False):
                logger.debug("Policy reload already in progress, trigger coalesced.")
                return outcome
            try:
                while self._reload_requested.is_set():
                    self._reload_requested.clear()
                    outcome = self._reload_once()
                    if outcome is ReloadOutcome.CANCELLED:
                        self._reload_requested.clear()
                        break
            finally:
                # a cancel applies to every build of this acquisition and no further
                self._cancel_requested.clear()
                self._reload_lock.release()

            if self._state is EngineState.CLOSED:
                break
        return outcome

    def cancel_reload(self):
        """Abort the running reload before it publishes. No effect when none is running."""
        if self._reload_lock.locked():
            self._cancel_requested.set()

    def add_reload_listener(self, callback):
        """Call ``callback(graph)`` after each successful publish."""
        self._listeners.append(callback)

    def start_watching(self, debounce: float = None):
        """Reload automatically when any policy document changes on disk.

        Returns:
            PolicyFileWatcher: The running watcher; stopped by :meth:`close`.
        """
        if self._watcher is None:
            kwargs = {} if debounce is None else {"debounce": debounce}
            self._watcher = PolicyFileWatcher(self, **kwargs)
            self._watcher.start()
        return self._watcher

    def close(self):
        """Stop serving checks and release the watcher. Idempotent."""
        with self._state_lock:
            if self._state is EngineState.CLOSED:
                return
            self._state = EngineState.CLOSED
            self._graph = None
        self._cancel_requested.set()
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        logger.info("Policy engine closed.")

    def _reload_once(self) -> ReloadOutcome:
        with self._state_lock:
            if self._state is EngineState.CLOSED:
                return ReloadOutcome.CANCELLED
            self._state = EngineState.RELOADING
            generation = self._graph.generation + 1

        try:
            graph = self._store.load(generation=generation)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(f"Policy reload failed, keeping generation {generation - 1}: {e}")
            self._finish_reload()
            return ReloadOutcome.FAILED

        if self._cancel_requested.is_set():
            logger.info(f"Policy reload cancelled, discarding generation {generation}.")
            self._finish_reload()
            return ReloadOutcome.CANCELLED

        if not self._publish(graph):
            return ReloadOutcome.CANCELLED
        return ReloadOutcome.PUBLISHED

    def _finish_reload(self):
        with self._state_lock:
            if self._state is EngineState.RELOADING:
                self._state = EngineState.LOADED

    def _publish(self, graph: PolicyGraph) -> bool:
        """Make ``graph`` the one served to new checks, unless the engine was closed."""
        with self._state_lock:
            if self._state is EngineState.CLOSED:
                return False
            self._graph = graph
            self._state = EngineState.LOADED

        logger.info(f"Published policy generation {graph.generation}.")
        for problem in graph.report.problems:
            logger.warning(f"Policy generation {graph.generation} is degraded: {problem}")
        for callback in list(self._listeners):
            try:
                callback(graph)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error(f"Reload listener {callback!r} failed: {e}")
        return True
