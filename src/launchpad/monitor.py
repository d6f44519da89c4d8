"""
Transaction monitor.

Tracks submitted transactions until the ledger reports a final outcome,
polling an injected StatusChecker on event-loop timers (``call_later``).
Each tracked hash gets one MonitoringSession which owns its own subscriber
lists, timer handle and waiters.

Per tick:
  1. wall-clock timeout exceeded    -> TIMEOUT ("Transaction monitoring timeout")
  2. attempts >= max_retries        -> TIMEOUT ("Max retries exceeded")
  3. attempts += 1, ask the checker:
       success / failed             -> terminal, stop
       pending                      -> schedule the next tick
       raises                       -> notify error subscribers, then treat as pending

A "still pending" answer and a transient checker error share the same
retry/timeout budget. Results of checks still in flight after
stop_monitoring()/destroy() are discarded.
"""
import asyncio
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace

import launchpad.constants as C
from launchpad.checker import StatusChecker, as_checker, normalize_check_result
from launchpad.constants import TxStatus
from launchpad.models import StatusUpdate

log = logging.getLogger("launchpad.monitor")

StatusCallback = Callable[[StatusUpdate], None]
ErrorCallback = Callable[[BaseException], None]


class MonitoringCancelled(Exception):
    """Raised to wait_for() callers when a session is stopped before it finishes."""


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    polling_interval_ms: float = C.POLLING_INTERVAL_MS
    max_retries: int = C.MAX_RETRIES
    timeout_ms: float = C.MONITOR_TIMEOUT_MS
    backoff_multiplier: float = C.BACKOFF_MULTIPLIER
    max_delay_ms: float = C.MAX_DELAY_MS
    jitter_ms: float = C.JITTER_MS
    emit_pending: bool = True

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.polling_interval_ms < 0 or self.timeout_ms <= 0:
            raise ValueError("polling_interval_ms must be >= 0 and timeout_ms > 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    @classmethod
    def from_dict(cls, d: dict | None) -> "MonitoringConfig":
        d = d or {}
        return cls(
            polling_interval_ms=float(d.get("polling_interval_ms", C.POLLING_INTERVAL_MS)),
            max_retries=int(d.get("max_retries", C.MAX_RETRIES)),
            timeout_ms=float(d.get("timeout_ms", C.MONITOR_TIMEOUT_MS)),
            backoff_multiplier=float(d.get("backoff_multiplier", C.BACKOFF_MULTIPLIER)),
            max_delay_ms=float(d.get("max_delay_ms", C.MAX_DELAY_MS)),
            jitter_ms=float(d.get("jitter_ms", C.JITTER_MS)),
            emit_pending=bool(d.get("emit_pending", True)),
        )

    def delay_ms(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        base = self.polling_interval_ms * self.backoff_multiplier ** attempt
        return min(base + rand() * self.jitter_ms, self.max_delay_ms)


@dataclass(slots=True)
class MonitoringSession:
    id: str
    start_time: float
    status: TxStatus = TxStatus.PENDING
    attempts: int = 0
    last_checked_time: float | None = None
    end_time: float | None = None
    ledger_info: int | None = None
    error_message: str | None = None
    last_error: str | None = None
    final_update: StatusUpdate | None = None
    status_callbacks: list[StatusCallback] = field(default_factory=list, repr=False)
    error_callbacks: list[ErrorCallback] = field(default_factory=list, repr=False)
    timer: asyncio.Handle | None = field(default=None, repr=False)
    waiters: list[asyncio.Future] = field(default_factory=list, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in C.TERMINAL_TX_STATUS

    def snapshot(self) -> "MonitoringSession":
        return replace(self, status_callbacks=[], error_callbacks=[], timer=None, waiters=[])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "attempts": self.attempts,
            "start_time": self.start_time,
            "last_checked_time": self.last_checked_time,
            "end_time": self.end_time,
            "ledger_info": self.ledger_info,
            "error": self.error_message,
            "last_error": self.last_error,
        }


class TransactionMonitor:
    def __init__(
        self,
        checker: StatusChecker | Callable,
        config: MonitoringConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        rand: Callable[[], float] = random.random,
    ):
        self._checker = as_checker(checker)
        self.config = config or MonitoringConfig()
        self._clock = clock
        self._rand = rand
        self._sessions: dict[str, MonitoringSession] = {}
        self._inflight: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def start_monitoring(
        self,
        tx_hash: str,
        on_status: StatusCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        if not tx_hash:
            raise ValueError("transaction hash is required")
        if tx_hash in self._sessions:
            raise ValueError(f"Already monitoring transaction {tx_hash}")

        loop = asyncio.get_running_loop()
        s = MonitoringSession(id=tx_hash, start_time=self._clock())
        if on_status is not None:
            s.status_callbacks.append(on_status)
        if on_error is not None:
            s.error_callbacks.append(on_error)
        self._sessions[tx_hash] = s
        log.debug("Monitoring %s", tx_hash)
        # first poll runs on the next loop iteration, no delay
        s.timer = loop.call_soon(self._tick, tx_hash)

    def stop_monitoring(self, tx_hash: str) -> None:
        s = self._sessions.pop(tx_hash, None)
        if s is None:
            return
        self._release(s)
        log.debug("Stopped monitoring %s (status=%s attempts=%s)", tx_hash, s.status, s.attempts)

    def on_status(self, tx_hash: str, callback: StatusCallback) -> None:
        self._require(tx_hash).status_callbacks.append(callback)

    def on_error(self, tx_hash: str, callback: ErrorCallback) -> None:
        self._require(tx_hash).error_callbacks.append(callback)

    def get_session(self, tx_hash: str) -> MonitoringSession | None:
        s = self._sessions.get(tx_hash)
        return s.snapshot() if s is not None else None

    def active_sessions(self) -> list[MonitoringSession]:
        return [s.snapshot() for s in self._sessions.values() if not s.is_terminal]

    async def wait_for(self, tx_hash: str) -> StatusUpdate:
        """Wait for the terminal StatusUpdate of a monitored transaction."""
        s = self._require(tx_hash)
        if s.final_update is not None:
            return s.final_update
        fut = asyncio.get_running_loop().create_future()
        s.waiters.append(fut)
        return await fut

    def destroy(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for s in sessions:
            self._release(s)
        if sessions:
            log.debug("Monitor destroyed, dropped %s session(s)", len(sessions))

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    def _require(self, tx_hash: str) -> MonitoringSession:
        s = self._sessions.get(tx_hash)
        if s is None:
            raise KeyError(f"Not monitoring transaction {tx_hash}")
        return s

    def _is_live(self, s: MonitoringSession) -> bool:
        return self._sessions.get(s.id) is s and not s.is_terminal

    def _release(self, s: MonitoringSession) -> None:
        if s.timer is not None:
            s.timer.cancel()
            s.timer = None
        s.status_callbacks.clear()
        s.error_callbacks.clear()
        for fut in s.waiters:
            if not fut.done():
                fut.set_exception(MonitoringCancelled(f"Monitoring of {s.id} stopped"))
        s.waiters.clear()

    def _schedule(self, s: MonitoringSession) -> None:
        delay = self.config.delay_ms(s.attempts, self._rand)
        log.debug("%s pending after %s attempt(s), next check in %.0fms", s.id, s.attempts, delay)
        s.timer = asyncio.get_running_loop().call_later(delay / 1000, self._tick, s.id)

    def _tick(self, tx_hash: str) -> None:
        s = self._sessions.get(tx_hash)
        if s is None or s.is_terminal:
            return
        s.timer = None
        task = asyncio.get_running_loop().create_task(self._poll(s), name=f"poll-{tx_hash[:12]}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _poll(self, s: MonitoringSession) -> None:
        cfg = self.config
        now = self._clock()

        if (now - s.start_time) * 1000 > cfg.timeout_ms:
            self._finish(s, TxStatus.TIMEOUT, error=C.MONITORING_TIMEOUT)
            return

        if s.attempts >= cfg.max_retries:
            self._finish(s, TxStatus.TIMEOUT, error=C.MAX_RETRIES_EXCEEDED)
            return

        s.attempts += 1
        s.last_checked_time = now

        try:
            status, ledger_index = normalize_check_result(await self._checker.check(s.id))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._is_live(s):
                log.debug("Discarding late checker error for %s", s.id)
                return
            s.last_error = str(e) or e.__class__.__name__
            log.warning("Status check %s/%s failed for %s: %s", s.attempts, cfg.max_retries, s.id, s.last_error)
            self._emit_error(s, e)
            if not self._is_live(s):
                return
            if s.attempts < cfg.max_retries:
                self._schedule(s)
            else:
                self._finish(s, TxStatus.TIMEOUT, error=C.MAX_RETRIES_EXCEEDED)
            return

        if not self._is_live(s):
            log.debug("Discarding late status for %s", s.id)
            return

        if ledger_index is not None:
            s.ledger_info = ledger_index

        if status in (TxStatus.SUCCESS, TxStatus.FAILED):
            self._finish(s, status)
            return

        if cfg.emit_pending:
            self._emit_status(s, self._update(s, TxStatus.PENDING))
            if not self._is_live(s):
                return
        self._schedule(s)

    def _update(self, s: MonitoringSession, status: TxStatus, error: str | None = None) -> StatusUpdate:
        return StatusUpdate(
            id=s.id,
            status=status,
            timestamp=self._clock(),
            ledger_info=s.ledger_info,
            error=error,
        )

    def _finish(self, s: MonitoringSession, status: TxStatus, error: str | None = None) -> None:
        s.status = status
        s.end_time = self._clock()
        if error:
            s.error_message = error
        if s.timer is not None:
            s.timer.cancel()
            s.timer = None

        update = self._update(s, status, error)
        s.final_update = update
        if status == TxStatus.SUCCESS:
            log.info("%s succeeded after %s attempt(s) (ledger %s)", s.id, s.attempts, s.ledger_info)
        else:
            log.warning("%s finished %s after %s attempt(s): %s", s.id, status, s.attempts, error or "-")

        waiters, s.waiters = s.waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(update)
        self._emit_status(s, update)

    def _emit_status(self, s: MonitoringSession, update: StatusUpdate) -> None:
        for cb in list(s.status_callbacks):
            try:
                cb(update)
            except Exception:
                log.exception("Error in status callback for %s", s.id)

    def _emit_error(self, s: MonitoringSession, error: BaseException) -> None:
        for cb in list(s.error_callbacks):
            try:
                cb(error)
            except Exception:
                log.exception("Error in error callback for %s", s.id)


async def monitor_many(
    monitor: TransactionMonitor, tx_hashes: list[str]
) -> dict[str, TxStatus]:
    """Monitor several transactions on one monitor and collect their terminal statuses."""
    for h in tx_hashes:
        monitor.start_monitoring(h)
    try:
        updates = await asyncio.gather(*(monitor.wait_for(h) for h in tx_hashes))
    finally:
        for h in tx_hashes:
            monitor.stop_monitoring(h)
    return {u.id: u.status for u in updates}
