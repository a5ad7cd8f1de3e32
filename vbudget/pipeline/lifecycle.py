"""Lifecycle of the single encoding-engine instance.

State machine::

    UNLOADED --load--> LOADING --ok--> READY
    LOADING --failure--> UNLOADED
    READY --reset(force=False) while a job is active--> READY   (no-op)
    READY --reset(force or idle)--> RESETTING --> LOADING --> READY
    any --shutdown--> TERMINATED

The manager is the only owner of the engine handle. Jobs borrow it through
``session()`` and must not keep it after the session ends; a reset bumps the
generation so a stale session cannot clear a newer owner's flag.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional
from vbudget.config.models import EngineConfig
from vbudget.domain.errors import EngineLoadError, VBudgetError
from vbudget.domain.events import EngineStateChanged
from vbudget.domain.models import EngineState
from vbudget.infrastructure.event_bus import EventBus


class EngineLifecycleManager:
    """Owns the engine handle: lazy load, resets, periodic recycling.

    Args:
        engine_factory: Creates a fresh, unloaded engine (``FFmpegEngine`` in production).
        config: Timeouts and reset policy.
        event_bus: Optional bus receiving ``EngineStateChanged``.
        sleep: Injected for tests; waits during teardown and settle.
    """

    def __init__(
        self,
        engine_factory: Callable[[], object],
        config: EngineConfig,
        event_bus: Optional[EventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine_factory = engine_factory
        self.config = config
        self.event_bus = event_bus
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

        self._engine = None
        self._state = EngineState.UNLOADED
        self._generation = 0
        self._active_job_id: Optional[str] = None
        self._processed_count = 0
        self._cond = threading.Condition()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active_job_id(self) -> Optional[str]:
        return self._active_job_id

    @property
    def processed_count(self) -> int:
        return self._processed_count

    def _set_state(self, state: EngineState, reason: Optional[str] = None) -> None:
        self._state = state
        self.logger.debug(f"ENGINE_STATE: {state.value} gen={self._generation} reason={reason}")
        if self.event_bus:
            self.event_bus.publish(EngineStateChanged(state=state, generation=self._generation, reason=reason))

    def load(self):
        """Returns the ready engine, loading it if needed.

        Concurrent callers during LOADING wait for the in-flight load instead of
        starting a second one.
        """
        with self._cond:
            while self._state in (EngineState.LOADING, EngineState.RESETTING):
                self._cond.wait()
            if self._state == EngineState.READY:
                return self._engine
            if self._state == EngineState.TERMINATED:
                raise EngineLoadError("Engine has been shut down")
            self._set_state(EngineState.LOADING)

        engine = None
        try:
            engine = self.engine_factory()
            engine.load(timeout=self.config.load_timeout_seconds)
        except Exception as e:
            with self._cond:
                self._engine = None
                self._set_state(EngineState.UNLOADED, reason=str(e))
                self._cond.notify_all()
            self.logger.error(f"Engine load failed: {e}")
            if isinstance(e, VBudgetError):
                raise
            raise EngineLoadError(f"Engine initialization failed: {e}") from e

        with self._cond:
            self._engine = engine
            self._generation += 1
            self._set_state(EngineState.READY)
            self._cond.notify_all()
        self.logger.info(f"Engine ready (generation {self._generation})")
        return engine

    def reset(self, force: bool = False) -> bool:
        """Tears the engine down and loads a fresh one.

        Returns False (and does nothing) when a job holds the engine and
        ``force`` is False. A forced reset clears the active-job flag first.
        """
        with self._cond:
            while self._state in (EngineState.LOADING, EngineState.RESETTING):
                self._cond.wait()
            # Checked after the wait: a job may have claimed the engine meanwhile
            if self._active_job_id is not None and not force:
                self.logger.warning(f"ENGINE_RESET_SKIPPED: job {self._active_job_id} is using the engine")
                return False
            if self._state == EngineState.TERMINATED:
                return False
            if force and self._active_job_id is not None:
                self.logger.warning(f"ENGINE_RESET_FORCED: releasing job {self._active_job_id}")
            self._active_job_id = None
            engine, self._engine = self._engine, None
            self._set_state(EngineState.RESETTING, reason="forced" if force else "requested")

        try:
            if engine is not None:
                self.sleep(self.config.teardown_delay_seconds)
                try:
                    engine.terminate()
                except Exception as e:
                    self.logger.warning(f"Engine terminate failed: {e}")
            self._processed_count = 0
            # Let the OS reclaim the old instance's memory before reloading
            self.sleep(self.config.settle_seconds)
        finally:
            with self._cond:
                self._set_state(EngineState.UNLOADED, reason="reset")
                self._cond.notify_all()

        self.logger.info(f"ENGINE_RESET: force={force}")
        self.load()
        return True

    @contextmanager
    def session(self, job_id: str) -> Iterator[object]:
        """Borrows the engine for one job; releases it on every exit path."""
        while True:
            engine = self.load()
            with self._cond:
                # A reset may have replaced the engine between load() and the claim
                if self._state != EngineState.READY or self._engine is not engine:
                    continue
                if self._active_job_id is not None:
                    raise RuntimeError(
                        f"Engine is already in use by job {self._active_job_id}; it cannot run two jobs at once"
                    )
                self._active_job_id = job_id
                generation = self._generation
                break
        try:
            yield engine
        finally:
            with self._cond:
                owner = self._active_job_id == job_id and self._generation == generation
                if owner:
                    self._active_job_id = None
                    self._processed_count += 1
                due = (
                    owner
                    and self.config.reset_every_jobs is not None
                    and self._processed_count >= self.config.reset_every_jobs
                )
            if due:
                self.logger.info(f"ENGINE_RECYCLE: {self._processed_count} jobs since last reset")
                try:
                    self.reset(force=False)
                except VBudgetError as e:
                    self.logger.warning(f"Periodic engine reset failed: {e}")

    def shutdown(self) -> None:
        with self._cond:
            while self._state in (EngineState.LOADING, EngineState.RESETTING):
                self._cond.wait()
            engine, self._engine = self._engine, None
            self._active_job_id = None
            self._set_state(EngineState.TERMINATED, reason="shutdown")
            self._cond.notify_all()
        if engine is not None:
            try:
                engine.terminate()
            except Exception as e:
                self.logger.warning(f"Engine terminate failed during shutdown: {e}")
