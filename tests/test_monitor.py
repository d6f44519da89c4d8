import asyncio

import pytest

from fakes import TX_HASH, ScriptedChecker
from launchpad.checker import CheckResult
from launchpad.constants import TxStatus
from launchpad.errors import NetworkError
from launchpad.monitor import MonitoringCancelled, MonitoringConfig, TransactionMonitor, monitor_many


def collect(monitor, tx_hash=TX_HASH):
    updates, errors = [], []
    monitor.start_monitoring(tx_hash, updates.append, errors.append)
    return updates, errors


async def settle(seconds: float = 0.03):
    await asyncio.sleep(seconds)


async def test_pending_pending_success_polls_three_times():
    checker = ScriptedChecker([TxStatus.PENDING, TxStatus.PENDING, TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, MonitoringConfig(polling_interval_ms=10, max_retries=10, jitter_ms=0))
    updates, errors = collect(monitor)

    final = await monitor.wait_for(TX_HASH)
    await settle()

    assert len(checker.calls) == 3
    assert final.status == TxStatus.SUCCESS
    assert updates[-1] == final
    assert [u.status for u in updates] == [TxStatus.PENDING, TxStatus.PENDING, TxStatus.SUCCESS]
    assert errors == []


@pytest.mark.parametrize("terminal", [TxStatus.SUCCESS, TxStatus.FAILED])
async def test_exactly_one_terminal_update(fast_config, terminal):
    checker = ScriptedChecker([TxStatus.PENDING, terminal, TxStatus.PENDING])
    monitor = TransactionMonitor(checker, fast_config)
    updates, _ = collect(monitor)

    await monitor.wait_for(TX_HASH)
    await settle()

    terminal_updates = [u for u in updates if u.status != TxStatus.PENDING]
    assert [u.status for u in terminal_updates] == [terminal]
    assert updates[-1].status == terminal
    assert len(checker.calls) == 2


async def test_always_pending_times_out_after_max_retries():
    checker = ScriptedChecker([TxStatus.PENDING])
    config = MonitoringConfig(polling_interval_ms=1, max_retries=4, jitter_ms=0)
    monitor = TransactionMonitor(checker, config)
    updates, _ = collect(monitor)

    final = await monitor.wait_for(TX_HASH)
    await settle()

    assert final.status == TxStatus.TIMEOUT
    assert final.error == "Max retries exceeded"
    assert len(checker.calls) == 4
    assert updates[-1] == final
    assert monitor.get_session(TX_HASH).attempts == 4


async def test_checker_errors_exhaust_retries():
    checker = ScriptedChecker([NetworkError("Network timeout")])
    monitor = TransactionMonitor(checker, MonitoringConfig(polling_interval_ms=1, max_retries=2, jitter_ms=0))
    updates, errors = collect(monitor)

    final = await monitor.wait_for(TX_HASH)
    await settle()

    assert final.status == TxStatus.TIMEOUT
    assert final.error == "Max retries exceeded"
    assert len(errors) == 2
    assert all(str(e) == "Network timeout" for e in errors)
    assert len(checker.calls) == 2
    assert updates == [final]
    assert monitor.get_session(TX_HASH).last_error == "Network timeout"


async def test_transient_error_then_success(fast_config):
    checker = ScriptedChecker([NetworkError("connection reset"), TxStatus.PENDING, TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, fast_config)
    _, errors = collect(monitor)

    final = await monitor.wait_for(TX_HASH)

    assert final.status == TxStatus.SUCCESS
    assert len(errors) == 1
    assert len(checker.calls) == 3


async def test_wall_clock_timeout_takes_precedence():
    now = [1_000.0]

    class SlowChecker:
        calls = 0

        async def check(self, tx_hash):
            SlowChecker.calls += 1
            now[0] += 200  # each check "takes" 200s
            return TxStatus.PENDING

    monitor = TransactionMonitor(
        SlowChecker(),
        MonitoringConfig(polling_interval_ms=1, max_retries=10, timeout_ms=120_000, jitter_ms=0),
        clock=lambda: now[0],
    )
    monitor.start_monitoring(TX_HASH)

    final = await monitor.wait_for(TX_HASH)

    assert final.status == TxStatus.TIMEOUT
    assert final.error == "Transaction monitoring timeout"
    assert SlowChecker.calls == 1


async def test_ledger_index_is_carried_on_updates(fast_config):
    checker = ScriptedChecker([CheckResult(TxStatus.SUCCESS, ledger_index=4242, engine_result="tesSUCCESS")])
    monitor = TransactionMonitor(checker, fast_config)
    monitor.start_monitoring(TX_HASH)

    final = await monitor.wait_for(TX_HASH)

    assert final.ledger_info == 4242
    assert monitor.get_session(TX_HASH).ledger_info == 4242


async def test_duplicate_session_is_rejected(fast_config):
    checker = ScriptedChecker([TxStatus.PENDING, TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, fast_config)
    first, second = [], []
    monitor.start_monitoring(TX_HASH, first.append)

    with pytest.raises(ValueError):
        monitor.start_monitoring(TX_HASH, second.append)

    await monitor.wait_for(TX_HASH)
    assert first[-1].status == TxStatus.SUCCESS
    assert second == []
    assert len(monitor) == 1


async def test_empty_hash_is_rejected(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.SUCCESS]), fast_config)
    with pytest.raises(ValueError):
        monitor.start_monitoring("")


async def test_restart_after_stop(fast_config):
    checker = ScriptedChecker([TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, fast_config)
    monitor.start_monitoring(TX_HASH)
    await monitor.wait_for(TX_HASH)
    monitor.stop_monitoring(TX_HASH)

    monitor.start_monitoring(TX_HASH)
    final = await monitor.wait_for(TX_HASH)
    assert final.status == TxStatus.SUCCESS


async def test_destroy_before_first_tick_fires_nothing(fast_config):
    checker = ScriptedChecker([TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, fast_config)
    updates, errors = collect(monitor)

    monitor.destroy()
    await settle()

    assert checker.calls == []
    assert updates == [] and errors == []
    assert monitor.get_session(TX_HASH) is None
    monitor.destroy()  # idempotent


async def test_destroy_between_polls_cancels_timer():
    checker = ScriptedChecker([TxStatus.PENDING, TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, MonitoringConfig(polling_interval_ms=20, jitter_ms=0, emit_pending=False))
    updates, _ = collect(monitor)

    while not checker.calls:
        await asyncio.sleep(0)
    monitor.destroy()
    await settle(0.06)

    assert len(checker.calls) == 1
    assert updates == []


async def test_late_result_after_stop_is_discarded(fast_config):
    release = asyncio.Event()
    entered = asyncio.Event()

    class BlockingChecker:
        async def check(self, tx_hash):
            entered.set()
            await release.wait()
            return TxStatus.SUCCESS

    monitor = TransactionMonitor(BlockingChecker(), fast_config)
    updates, errors = collect(monitor)
    await entered.wait()

    monitor.stop_monitoring(TX_HASH)
    release.set()
    await settle()

    assert updates == [] and errors == []
    assert monitor.get_session(TX_HASH) is None


async def test_late_result_after_destroy_is_discarded(fast_config):
    release = asyncio.Event()
    entered = asyncio.Event()

    class BlockingChecker:
        async def check(self, tx_hash):
            entered.set()
            await release.wait()
            raise NetworkError("too late")

    monitor = TransactionMonitor(BlockingChecker(), fast_config)
    updates, errors = collect(monitor)
    await entered.wait()

    monitor.destroy()
    release.set()
    await settle()

    assert updates == [] and errors == []


async def test_wait_for_is_cancelled_on_stop(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.PENDING]), fast_config)
    monitor.start_monitoring(TX_HASH)
    waiter = asyncio.ensure_future(monitor.wait_for(TX_HASH))
    await asyncio.sleep(0)

    monitor.stop_monitoring(TX_HASH)

    with pytest.raises(MonitoringCancelled):
        await waiter


async def test_wait_for_returns_final_update_when_already_finished(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.FAILED]), fast_config)
    monitor.start_monitoring(TX_HASH)
    first = await monitor.wait_for(TX_HASH)

    assert await monitor.wait_for(TX_HASH) is first
    assert first.status == TxStatus.FAILED


async def test_terminal_session_still_blocks_restart_until_stopped(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.SUCCESS]), fast_config)
    monitor.start_monitoring(TX_HASH)
    await monitor.wait_for(TX_HASH)

    with pytest.raises(ValueError):
        monitor.start_monitoring(TX_HASH)
    assert monitor.active_sessions() == []


async def test_callback_exception_does_not_break_delivery(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.SUCCESS]), fast_config)
    seen = []

    def boom(update):
        raise RuntimeError("subscriber bug")

    monitor.start_monitoring(TX_HASH, boom)
    monitor.on_status(TX_HASH, seen.append)

    final = await monitor.wait_for(TX_HASH)
    assert seen == [final]


async def test_subscribe_unknown_session_raises(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.SUCCESS]), fast_config)
    with pytest.raises(KeyError):
        monitor.on_status("b" * 64, lambda u: None)
    with pytest.raises(KeyError):
        monitor.on_error("b" * 64, lambda e: None)


async def test_get_session_returns_a_copy(fast_config):
    monitor = TransactionMonitor(ScriptedChecker([TxStatus.PENDING]), fast_config)
    monitor.start_monitoring(TX_HASH)

    snap = monitor.get_session(TX_HASH)
    snap.attempts = 99
    snap.status = TxStatus.SUCCESS

    live = monitor.get_session(TX_HASH)
    assert live.attempts != 99
    assert live.status == TxStatus.PENDING
    monitor.destroy()


async def test_emit_pending_disabled_only_reports_terminal(fast_config):
    checker = ScriptedChecker([TxStatus.PENDING, TxStatus.PENDING, TxStatus.SUCCESS])
    config = MonitoringConfig(polling_interval_ms=1, jitter_ms=0, emit_pending=False)
    monitor = TransactionMonitor(checker, config)
    updates, _ = collect(monitor)

    await monitor.wait_for(TX_HASH)
    assert [u.status for u in updates] == [TxStatus.SUCCESS]


async def test_invalid_checker_result_counts_as_error(fast_config):
    checker = ScriptedChecker(["bogus", TxStatus.SUCCESS])
    monitor = TransactionMonitor(checker, fast_config)
    _, errors = collect(monitor)

    final = await monitor.wait_for(TX_HASH)
    assert final.status == TxStatus.SUCCESS
    assert len(errors) == 1 and isinstance(errors[0], ValueError)


async def test_plain_function_checker():
    async def check(tx_hash):
        return "success"

    monitor = TransactionMonitor(check, MonitoringConfig(polling_interval_ms=1, jitter_ms=0))
    monitor.start_monitoring(TX_HASH)
    assert (await monitor.wait_for(TX_HASH)).status == TxStatus.SUCCESS


async def test_monitor_many_collects_terminal_statuses(fast_config):
    outcomes = {"a" * 64: TxStatus.SUCCESS, "b" * 64: TxStatus.FAILED}

    async def check(tx_hash):
        return outcomes[tx_hash]

    monitor = TransactionMonitor(check, fast_config)
    result = await monitor_many(monitor, list(outcomes))

    assert result == outcomes
    assert len(monitor) == 0


def test_backoff_delays_are_monotonic_and_capped():
    config = MonitoringConfig(polling_interval_ms=100, backoff_multiplier=2.0, max_delay_ms=1_000, jitter_ms=0)
    delays = [config.delay_ms(n, rand=lambda: 0.0) for n in range(12)]

    assert delays == sorted(delays)
    assert max(delays) == 1_000
    assert delays[0] == 100


def test_jitter_never_exceeds_cap():
    config = MonitoringConfig(polling_interval_ms=100, backoff_multiplier=3.0, max_delay_ms=500, jitter_ms=100)
    assert all(config.delay_ms(n, rand=lambda: 1.0) <= 500 for n in range(10))
    assert config.delay_ms(0, rand=lambda: 0.5) == 150


def test_default_backoff_is_linear():
    config = MonitoringConfig(jitter_ms=0)
    assert {config.delay_ms(n, rand=lambda: 0.0) for n in range(5)} == {3_000}


@pytest.mark.parametrize(
    "kwargs",
    [{"max_retries": 0}, {"timeout_ms": 0}, {"polling_interval_ms": -1}, {"backoff_multiplier": 0.5}],
)
def test_config_rejects_nonsense(kwargs):
    with pytest.raises(ValueError):
        MonitoringConfig(**kwargs)


def test_config_from_dict():
    config = MonitoringConfig.from_dict({"polling_interval_ms": 500, "max_retries": 3, "emit_pending": False})
    assert config.polling_interval_ms == 500
    assert config.max_retries == 3
    assert config.emit_pending is False
    assert config.timeout_ms == 120_000
