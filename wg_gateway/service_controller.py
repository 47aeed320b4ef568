"""
Service Controller

State machine for the tunnel daemon:

    stopped --start--> starting --> running
    running --stop---> stopping --> stopped
    running --restart--> restarting --> running

Commands that don't apply to the current state are no-ops that return the
current state, so retried or duplicated commands converge. Any exception
from the launcher counts as a failure: start and restart land back in
stopped, stop lands back in running.

Tunnel health is a view:
- restarting while restarting
- the last health reported by the daemon while running
- disconnected otherwise
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import List, Optional

from wg_gateway.errors import ServiceStartFailed, ServiceStopFailed
from wg_gateway.launcher import TunnelLauncher
from wg_gateway.models import ControllerSnapshot, ServiceState, TunnelHealth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """One edge taken by the state machine"""
    from_state: ServiceState
    to_state: ServiceState
    at: int     # ns


class ServiceController:
    """
    Owns the daemon's run state.

    Two locks:
    - _command_lock serializes start/stop/restart/sync and is held across
      launcher calls
    - _state_lock guards the fields and is only held briefly, so reads and
      health reports never wait on a launcher
    """

    HISTORY_SIZE = 100

    def __init__(self, launcher: TunnelLauncher):
        self.launcher = launcher
        self._command_lock = Lock()
        self._state_lock = Lock()
        self._state = ServiceState.STOPPED
        self._reported_health = TunnelHealth.DISCONNECTED
        self._changed_at = time.time_ns()
        self._transitions = deque(maxlen=self.HISTORY_SIZE)

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def state(self) -> ServiceState:
        with self._state_lock:
            return self._state

    @property
    def health(self) -> TunnelHealth:
        return self.snapshot().health

    @property
    def transitions(self) -> List[Transition]:
        with self._state_lock:
            return list(self._transitions)

    def snapshot(self) -> ControllerSnapshot:
        with self._state_lock:
            return ControllerSnapshot(
                state=self._state,
                health=self._health_view(self._state, self._reported_health),
                reported_health=self._reported_health,
                changed_at=self._changed_at,
            )

    @staticmethod
    def _health_view(state: ServiceState, reported: TunnelHealth) -> TunnelHealth:
        if state == ServiceState.RESTARTING:
            return TunnelHealth.RESTARTING
        if state == ServiceState.RUNNING:
            return reported
        return TunnelHealth.DISCONNECTED

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _transition(self, to_state: ServiceState, reported: Optional[TunnelHealth] = None):
        now = time.time_ns()
        with self._state_lock:
            from_state = self._state
            self._state = to_state
            self._changed_at = now
            if reported is not None:
                self._reported_health = reported
            self._transitions.append(Transition(from_state, to_state, now))
        logger.info(f"Service {from_state.value} -> {to_state.value}")

    def _start_locked(self) -> ServiceState:
        if self._state != ServiceState.STOPPED:
            logger.debug(f"start() ignored in state {self._state.value}")
            return self._state

        self._transition(ServiceState.STARTING)
        try:
            self.launcher.up()
        except Exception as e:
            self._transition(ServiceState.STOPPED, TunnelHealth.DISCONNECTED)
            logger.error(f"Service start failed: {e}")
            raise ServiceStartFailed(f"Failed to start tunnel: {e}") from e

        # Daemon is up; link not confirmed until it reports
        self._transition(ServiceState.RUNNING, TunnelHealth.CONNECTING)
        return ServiceState.RUNNING

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def start(self) -> ServiceState:
        """Start the daemon. Raises ServiceStartFailed, leaving stopped."""
        with self._command_lock:
            return self._start_locked()

    def stop(self) -> ServiceState:
        """Stop the daemon. Raises ServiceStopFailed, leaving running."""
        with self._command_lock:
            if self._state != ServiceState.RUNNING:
                logger.debug(f"stop() ignored in state {self._state.value}")
                return self._state

            self._transition(ServiceState.STOPPING)
            try:
                self.launcher.down()
            except Exception as e:
                self._transition(ServiceState.RUNNING)
                logger.error(f"Service stop failed: {e}")
                raise ServiceStopFailed(f"Failed to stop tunnel: {e}") from e

            self._transition(ServiceState.STOPPED, TunnelHealth.DISCONNECTED)
            return ServiceState.STOPPED

    def restart(self) -> ServiceState:
        """
        Restart a running daemon; start a stopped one.

        Reported health survives a successful restart. Raises
        ServiceStartFailed, leaving stopped.
        """
        with self._command_lock:
            if self._state != ServiceState.RUNNING:
                return self._start_locked()

            self._transition(ServiceState.RESTARTING)
            try:
                self.launcher.restart()
            except Exception as e:
                self._transition(ServiceState.STOPPED, TunnelHealth.DISCONNECTED)
                logger.error(f"Service restart failed: {e}")
                raise ServiceStartFailed(f"Failed to restart tunnel: {e}") from e

            self._transition(ServiceState.RUNNING)
            return ServiceState.RUNNING

    def sync(self) -> ServiceState:
        """Adopt the interface's real state (e.g. after a process restart)"""
        with self._command_lock:
            if self._state not in (ServiceState.STOPPED, ServiceState.RUNNING):
                return self._state

            up = self.launcher.is_up()
            if up and self._state == ServiceState.STOPPED:
                self._transition(ServiceState.RUNNING, TunnelHealth.CONNECTING)
            elif not up and self._state == ServiceState.RUNNING:
                self._transition(ServiceState.STOPPED, TunnelHealth.DISCONNECTED)
            return self._state

    def report_health(self, value) -> TunnelHealth:
        """
        Record the daemon's latest health report, used verbatim until the
        next one.

        Raises:
            ValueError: value is not a TunnelHealth or one of its values
        """
        health = TunnelHealth(value)
        with self._state_lock:
            self._reported_health = health
        logger.debug(f"Daemon reported health: {health.value}")
        return health
