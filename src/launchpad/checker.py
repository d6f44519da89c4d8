"""
Transaction status checkers consumed by the TransactionMonitor.

A checker answers pending / success / failed for a transaction hash, or
raises on transient I/O failure. "Not found yet" is always pending.

RpcStatusChecker speaks rippled JSON-RPC (``tx`` method):
    - HTTP 404 or error "txnNotFound"         -> pending
    - any other non-2xx / server error         -> NetworkError (retried by the monitor)
    - validated, meta.TransactionResult == tesSUCCESS -> success
    - validated with any other result          -> failed
    - not validated yet                        -> pending
"""
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

import launchpad.constants as C
from launchpad.constants import TxStatus
from launchpad.errors import NetworkError

log = logging.getLogger("launchpad.checker")


@dataclass(frozen=True, slots=True)
class CheckResult:
    status: TxStatus
    ledger_index: int | None = None
    engine_result: str | None = None


@runtime_checkable
class StatusChecker(Protocol):
    async def check(self, tx_hash: str) -> TxStatus | CheckResult: ...


class FunctionStatusChecker:
    """Adapts a plain ``async def f(tx_hash)`` (or sync function) to StatusChecker."""

    def __init__(self, fn: Callable[[str], Any]):
        self._fn = fn

    async def check(self, tx_hash: str) -> TxStatus | CheckResult:
        res = self._fn(tx_hash)
        if inspect.isawaitable(res):
            res = await res
        return res


def as_checker(obj: StatusChecker | Callable[[str], Awaitable[Any]]) -> StatusChecker:
    if isinstance(obj, StatusChecker):
        return obj
    if callable(obj):
        return FunctionStatusChecker(obj)
    raise TypeError(f"not a status checker: {obj!r}")


def normalize_check_result(result: Any) -> tuple[TxStatus, int | None]:
    if isinstance(result, CheckResult):
        return result.status, result.ledger_index
    try:
        status = TxStatus(result)
    except ValueError:
        raise ValueError(f"checker returned unknown status {result!r}") from None
    if status == TxStatus.TIMEOUT:
        raise ValueError("checkers may not report timeout")
    return status, None


_request_id = 0


def _next_request_id() -> int:
    global _request_id
    _request_id += 1
    return _request_id


class RpcStatusChecker:
    def __init__(
        self,
        rpc_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = C.RPC_TIMEOUT,
    ):
        self.rpc_url = rpc_url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            return await self._client.post(self.rpc_url, json=payload)
        except httpx.TransportError as e:
            raise NetworkError(f"network error querying {self.rpc_url}: {e.__class__.__name__}: {e}") from e

    async def check(self, tx_hash: str) -> CheckResult:
        payload = {
            "method": "tx",
            "params": [{"transaction": tx_hash, "binary": False}],
            "id": _next_request_id(),
        }
        r = await self._post(payload)

        if r.status_code == 404:
            return CheckResult(TxStatus.PENDING)
        if not r.is_success:
            raise NetworkError(f"RPC error: {r.status_code} {r.reason_phrase}")

        try:
            result = r.json().get("result", {})
        except ValueError as e:
            raise NetworkError(f"RPC returned non-JSON body for {tx_hash}") from e

        if result.get("status") == "error" or "error" in result:
            err = result.get("error")
            if err == "txnNotFound":
                return CheckResult(TxStatus.PENDING)
            raise NetworkError(f"RPC error: {err} {result.get('error_message', '')}".strip())

        if not result.get("validated"):
            return CheckResult(TxStatus.PENDING)

        meta = result.get("meta") or {}
        engine_result = meta.get("TransactionResult") if isinstance(meta, dict) else None
        ledger_index = result.get("ledger_index")
        ledger_index = int(ledger_index) if ledger_index is not None else None
        status = TxStatus.SUCCESS if engine_result == C.ENGINE_SUCCESS else TxStatus.FAILED
        log.debug("tx %s validated in %s with %s", tx_hash, ledger_index, engine_result)
        return CheckResult(status, ledger_index, engine_result)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
