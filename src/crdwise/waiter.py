"""
CRD readiness waiter.

A CRD is usable only once the API server reports it Established. Each wait
is a small state machine:

    PENDING -> POLLING -> ESTABLISHED
                       -> TIMED_OUT   (timeout elapsed first)
                       -> FAILED      (NamesAccepted=False)
    PENDING -> ESTABLISHED            (wait skipped)

Every transition is recorded so reports can show how a wait resolved.
A CRD that does not exist yet (not found) is polled again, not failed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from crdwise.cluster.base import ClusterClient
from crdwise.errors import NotReadyError
from crdwise.schema import CRD_KIND

logger = logging.getLogger(__name__)


class WaitState(str, Enum):
    """State of one CRD wait."""

    PENDING = "pending"
    POLLING = "polling"
    ESTABLISHED = "established"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (WaitState.ESTABLISHED, WaitState.TIMED_OUT, WaitState.FAILED)


_TRANSITIONS = {
    WaitState.PENDING: {WaitState.POLLING, WaitState.ESTABLISHED},
    WaitState.POLLING: {WaitState.ESTABLISHED, WaitState.TIMED_OUT, WaitState.FAILED},
}


@dataclass
class CrdWait:
    """
    One CRD wait and its transition history.

    Attributes:
        crd_name: CRD being waited on
        timeout_seconds: Time allowed to become Established
        skip: Resolve immediately without polling
        state: Current state
        history: Every state entered, in order (starts with PENDING)
        polls: Number of status reads
        reason: Why the wait failed or was skipped
        elapsed_seconds: Time spent polling
    """

    crd_name: str
    timeout_seconds: float
    skip: bool = False
    state: WaitState = WaitState.PENDING
    history: list[WaitState] = field(default_factory=lambda: [WaitState.PENDING])
    polls: int = 0
    reason: str | None = None
    elapsed_seconds: float = 0.0

    def transition(self, state: WaitState, reason: str | None = None) -> None:
        """
        Move to a new state.

        Raises:
            ValueError: If the transition is not allowed
        """
        if state not in _TRANSITIONS.get(self.state, set()):
            msg = f"Invalid wait transition for {self.crd_name}: {self.state.value} -> {state.value}"
            raise ValueError(msg)
        logger.debug("wait %s: %s -> %s", self.crd_name, self.state.value, state.value)
        self.state = state
        self.history.append(state)
        if reason:
            self.reason = reason

    @property
    def established(self) -> bool:
        return self.state == WaitState.ESTABLISHED

    def error(self) -> NotReadyError | None:
        """The error for a wait that did not reach Established."""
        if self.state == WaitState.TIMED_OUT:
            return NotReadyError(
                crd_name=self.crd_name,
                timeout_seconds=self.timeout_seconds,
                state="timed_out",
            )
        if self.state == WaitState.FAILED:
            return NotReadyError(
                crd_name=self.crd_name,
                timeout_seconds=self.timeout_seconds,
                state="failed",
                message=f"CRD {self.crd_name} failed to become established: {self.reason}",
                recoverable=False,
            )
        return None


def evaluate_status(status: dict[str, Any] | None) -> tuple[WaitState | None, str | None]:
    """
    Read a CRD status.

    Returns:
        (ESTABLISHED, None), (FAILED, reason), or (None, None) to keep polling
    """
    if not status:
        return None, None
    conditions = {c.get("type"): c for c in status.get("conditions") or [] if isinstance(c, dict)}
    names = conditions.get("NamesAccepted")
    if names is not None and names.get("status") == "False":
        return WaitState.FAILED, names.get("message") or names.get("reason") or "names not accepted"
    established = conditions.get("Established")
    if established is not None and established.get("status") == "True":
        return WaitState.ESTABLISHED, None
    return None, None


class ReadinessWaiter:
    """
    Polls CRD status until each CRD is Established.

    Usage:
        waiter = ReadinessWaiter(client, poll_interval_seconds=0.5)
        await waiter.wait("widgets.example.com", timeout_seconds=60)

    Attributes:
        client: Cluster client used for status reads
        poll_interval_seconds: Fixed interval between reads
        semaphore: Optional limit on concurrent status reads
    """

    def __init__(
        self,
        client: ClusterClient,
        poll_interval_seconds: float = 0.5,
        semaphore: asyncio.Semaphore | None = None,
    ) -> None:
        self.client = client
        self.poll_interval_seconds = poll_interval_seconds
        self.semaphore = semaphore

    async def _read_status(self, crd_name: str) -> dict[str, Any] | None:
        if self.semaphore is None:
            return await self.client.get_status(CRD_KIND, crd_name)
        async with self.semaphore:
            return await self.client.get_status(CRD_KIND, crd_name)

    async def poll(self, wait: CrdWait) -> CrdWait:
        """Drive a wait to a terminal state. Never raises NotReadyError."""
        if wait.skip:
            wait.transition(WaitState.ESTABLISHED, reason="wait skipped")
            return wait

        wait.transition(WaitState.POLLING)
        started = time.monotonic()
        try:
            async with asyncio.timeout(wait.timeout_seconds):
                while True:
                    status = await self._read_status(wait.crd_name)
                    wait.polls += 1
                    outcome, reason = evaluate_status(status)
                    if outcome is not None:
                        wait.transition(outcome, reason=reason)
                        break
                    await asyncio.sleep(self.poll_interval_seconds)
        except TimeoutError:
            wait.transition(WaitState.TIMED_OUT, reason=f"not established after {wait.timeout_seconds:g}s")
        finally:
            wait.elapsed_seconds = time.monotonic() - started
        return wait

    async def wait(self, crd_name: str, timeout_seconds: float, skip: bool = False) -> CrdWait:
        """
        Wait for one CRD.

        Raises:
            NotReadyError: If the CRD times out or fails
        """
        result = await self.poll(CrdWait(crd_name=crd_name, timeout_seconds=timeout_seconds, skip=skip))
        error = result.error()
        if error is not None:
            raise error
        return result

    async def wait_all(self, waits: list[CrdWait]) -> list[CrdWait]:
        """
        Poll every wait concurrently and return once all are terminal.

        Outcomes are reported on each CrdWait; nothing is raised for a wait
        that times out or fails. Cancelling the caller cancels every poll.
        """
        async with asyncio.TaskGroup() as group:
            for wait in waits:
                group.create_task(self.poll(wait))
        return waits
