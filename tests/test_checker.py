import json

import httpx
import pytest

from fakes import TX_HASH
from launchpad.checker import CheckResult, FunctionStatusChecker, RpcStatusChecker, as_checker, normalize_check_result
from launchpad.constants import TxStatus
from launchpad.errors import NetworkError

RPC = "http://rippled:5005"


def checker_for(handler) -> RpcStatusChecker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RpcStatusChecker(RPC, client=client)


def rpc_result(result: dict, status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["method"] == "tx"
        assert body["params"][0]["transaction"] == TX_HASH
        return httpx.Response(status_code, json={"result": result})

    return handler


async def test_validated_success():
    checker = checker_for(rpc_result({"validated": True, "ledger_index": 77, "meta": {"TransactionResult": "tesSUCCESS"}}))
    result = await checker.check(TX_HASH)
    assert result == CheckResult(TxStatus.SUCCESS, 77, "tesSUCCESS")


async def test_validated_failure():
    checker = checker_for(rpc_result({"validated": True, "ledger_index": 78, "meta": {"TransactionResult": "tecNO_PERMISSION"}}))
    result = await checker.check(TX_HASH)
    assert result.status == TxStatus.FAILED
    assert result.engine_result == "tecNO_PERMISSION"


@pytest.mark.parametrize(
    "result",
    [
        {"validated": False},
        {"status": "error", "error": "txnNotFound"},
    ],
)
async def test_not_yet_final_is_pending(result):
    checker = checker_for(rpc_result(result))
    assert (await checker.check(TX_HASH)).status == TxStatus.PENDING


async def test_http_404_is_pending():
    checker = checker_for(lambda request: httpx.Response(404))
    assert (await checker.check(TX_HASH)).status == TxStatus.PENDING


async def test_http_500_raises_network_error():
    checker = checker_for(lambda request: httpx.Response(503))
    with pytest.raises(NetworkError, match="RPC error: 503"):
        await checker.check(TX_HASH)


async def test_rpc_error_other_than_not_found_raises():
    checker = checker_for(rpc_result({"status": "error", "error": "tooBusy", "error_message": "The server is too busy"}))
    with pytest.raises(NetworkError, match="tooBusy"):
        await checker.check(TX_HASH)


async def test_transport_failure_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    checker = checker_for(handler)
    with pytest.raises(NetworkError) as exc_info:
        await checker.check(TX_HASH)
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


async def test_aclose_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
    checker = RpcStatusChecker(RPC, client=client)
    await checker.aclose()
    assert not client.is_closed
    await client.aclose()


async def test_function_checker_accepts_sync_and_async():
    assert await FunctionStatusChecker(lambda h: "pending").check(TX_HASH) == "pending"

    async def check(h):
        return TxStatus.SUCCESS

    assert await as_checker(check).check(TX_HASH) == TxStatus.SUCCESS


def test_as_checker_rejects_non_callables():
    with pytest.raises(TypeError):
        as_checker(42)


def test_normalize_check_result():
    assert normalize_check_result("success") == (TxStatus.SUCCESS, None)
    assert normalize_check_result(CheckResult(TxStatus.FAILED, 9)) == (TxStatus.FAILED, 9)
    with pytest.raises(ValueError):
        normalize_check_result("timeout")
    with pytest.raises(ValueError):
        normalize_check_result("nope")
