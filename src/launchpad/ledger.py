"""
Ledger access for token deployment: build, simulate, submit and resolve an
MPTokenIssuanceCreate.

Lookups that only read ledger state (account sequence, fee, validated ledger,
the issuance id of a validated transaction) are retried with the
RetryScheduler. simulate() and submit() are issued exactly once.
"""
import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.core.binarycodec import encode
from xrpl.models.requests import AccountInfo, Fee, ServerState, Simulate, SubmitOnly, Tx
from xrpl.models.transactions import MPTokenIssuanceCreate

import launchpad.constants as C
from launchpad.constants import ErrorCode
from launchpad.errors import LaunchpadError, NetworkError, classify_engine_result
from launchpad.models import TokenDeployParams
from launchpad.retry import RetryConfig, RetryError, RetryScheduler
from launchpad.validation import token_metadata_document

log = logging.getLogger("launchpad.ledger")

T = TypeVar("T")


@dataclass(slots=True)
class FeeInfo:
    """Fee levels (drops) from the ``fee`` command."""

    base_fee: int
    minimum_fee: int  # fee to get into the queue
    open_ledger_fee: int  # fee to skip the queue
    current_queue_size: int
    max_queue_size: int

    @classmethod
    def from_fee_result(cls, result: dict) -> "FeeInfo":
        drops = result["drops"]
        return cls(
            base_fee=int(drops["base_fee"]),
            minimum_fee=int(drops["minimum_fee"]),
            open_ledger_fee=int(drops["open_ledger_fee"]),
            current_queue_size=int(result.get("current_queue_size", 0)),
            max_queue_size=int(result.get("max_queue_size", 0)),
        )


def _sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def txid_from_signed_blob(signed_blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || signed_bytes)
    return _sha512half(bytes.fromhex("54584E00") + bytes.fromhex(signed_blob_hex)).hex().upper()


def encode_token_metadata(params: TokenDeployParams, metadata_uri: str | None) -> str:
    """Hex-encoded MPTokenMetadata for the issuance."""
    raw = token_metadata_document(params, metadata_uri)
    if len(raw) > C.MAX_METADATA_BYTES:
        raise LaunchpadError(
            ErrorCode.INVALID_INPUT, f"Token metadata is {len(raw)} bytes, limit is {C.MAX_METADATA_BYTES}"
        )
    return raw.hex().upper()


def _rpc_error(result: dict) -> str:
    err = result.get("error", "unknown")
    msg = result.get("error_message") or result.get("error_exception")
    return f"{err}: {msg}" if msg else str(err)


class LedgerGateway:
    def __init__(
        self,
        client: AsyncJsonRpcClient,
        *,
        retry_config: RetryConfig | None = None,
        scheduler: RetryScheduler | None = None,
        horizon: int = C.HORIZON,
        rpc_timeout: float = C.RPC_TIMEOUT,
        submit_timeout: float = C.SUBMIT_TIMEOUT,
        max_fee_drops: int = C.MAX_FEE_DROPS,
    ):
        self.client = client
        self.retry_config = retry_config
        self.scheduler = scheduler or RetryScheduler()
        self.horizon = horizon
        self.rpc_timeout = rpc_timeout
        self.submit_timeout = submit_timeout
        self.max_fee_drops = max_fee_drops

    async def _rpc(self, req, *, t: float | None = None):
        t = self.rpc_timeout if t is None else t
        try:
            return await asyncio.wait_for(self.client.request(req), timeout=t)
        except TimeoutError as e:
            raise NetworkError(f"{req.method} timed out after {t}s") from e

    async def _retrying(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await self.scheduler.execute(operation, self.retry_config)
        except RetryError as e:
            raise LaunchpadError(ErrorCode.NETWORK_ERROR, str(e.last_error)) from e

    # ---- lookups --------------------------------------------------------

    async def account_sequence(self, account: str) -> int:
        async def _lookup() -> int:
            r = await self._rpc(AccountInfo(account=account, ledger_index="current"))
            if not r.is_successful():
                if r.result.get("error") == "actNotFound":
                    raise LaunchpadError(ErrorCode.ACCOUNT_NOT_FOUND, account)
                raise NetworkError(f"account_info failed: {_rpc_error(r.result)}")
            return int(r.result["account_data"]["Sequence"])

        return await self._retrying(_lookup)

    async def get_fee_info(self) -> FeeInfo:
        async def _lookup() -> FeeInfo:
            r = await self._rpc(Fee())
            if not r.is_successful():
                raise NetworkError(f"fee failed: {_rpc_error(r.result)}")
            return FeeInfo.from_fee_result(r.result)

        return await self._retrying(_lookup)

    async def open_ledger_fee(self) -> int:
        fee_info = await self.get_fee_info()
        fee = max(fee_info.minimum_fee, fee_info.base_fee)
        if fee > fee_info.base_fee:
            log.warning(
                "Queue fees escalated: minimum=%s open_ledger=%s base=%s (queue %s/%s)",
                fee_info.minimum_fee, fee_info.open_ledger_fee, fee_info.base_fee,
                fee_info.current_queue_size, fee_info.max_queue_size,
            )
        if fee > self.max_fee_drops:
            raise LaunchpadError(
                ErrorCode.TRANSACTION_FAILED,
                f"Fee too high ({fee} drops > {self.max_fee_drops} max), wait for the queue to clear",
            )
        return fee

    async def validated_ledger_index(self) -> int:
        async def _lookup() -> int:
            r = await self._rpc(ServerState(), t=2.0)
            if not r.is_successful():
                raise NetworkError(f"server_state failed: {_rpc_error(r.result)}")
            return int(r.result["state"]["validated_ledger"]["seq"])

        return await self._retrying(_lookup)

    # ---- deployment steps ----------------------------------------------

    async def build_token_issuance(self, params: TokenDeployParams, metadata_uri: str | None) -> dict:
        """Unsigned MPTokenIssuanceCreate tx_json with Sequence, Fee and LastLedgerSequence filled."""
        metadata_hex = encode_token_metadata(params, metadata_uri)
        seq = await self.account_sequence(params.admin_wallet)
        fee = await self.open_ledger_fee()
        lls = await self.validated_ledger_index() + self.horizon

        txn = MPTokenIssuanceCreate(
            account=params.admin_wallet,
            asset_scale=params.decimals,
            maximum_amount=str(params.initial_supply),
            mptoken_metadata=metadata_hex,
            flags=C.TF_MPT_CAN_TRANSFER,
        )
        tx = txn.to_xrpl()
        tx["Sequence"] = seq
        tx["Fee"] = str(fee)
        tx["LastLedgerSequence"] = lls
        log.debug("Built %s for %s seq=%s fee=%s lls=%s", tx["TransactionType"], params.admin_wallet, seq, fee, lls)
        return tx

    async def simulate(self, tx: dict) -> dict:
        r = await self._rpc(Simulate(tx_blob=encode(tx)))
        if not r.is_successful():
            raise LaunchpadError(ErrorCode.SIMULATION_FAILED, _rpc_error(r.result))
        er = r.result.get("engine_result")
        if er != C.ENGINE_SUCCESS:
            raise LaunchpadError(
                ErrorCode.SIMULATION_FAILED, f"{er}: {r.result.get('engine_result_message', '')}".rstrip(": ")
            )
        log.debug("Simulation of %s passed", tx.get("TransactionType"))
        return r.result

    async def submit(self, signed_blob: str) -> str:
        """Submit a signed blob and return its transaction hash."""
        local_hash = txid_from_signed_blob(signed_blob)
        r = await self._rpc(SubmitOnly(tx_blob=signed_blob), t=self.submit_timeout)
        if not r.is_successful():
            raise LaunchpadError(ErrorCode.TRANSACTION_FAILED, _rpc_error(r.result))

        er = r.result.get("engine_result")
        code = classify_engine_result(er)
        if code is not None:
            log.warning("Submit of %s rejected: %s", local_hash, er)
            raise LaunchpadError(code, f"{er}: {r.result.get('engine_result_message', '')}".rstrip(": "))

        srv_hash = r.result.get("tx_json", {}).get("hash")
        if isinstance(srv_hash, str) and srv_hash and srv_hash != local_hash:
            log.warning("Server hash %s differs from local %s", srv_hash, local_hash)
            return srv_hash
        log.info("Submitted %s (%s)", local_hash, er)
        return local_hash

    async def fetch_token_address(self, tx_hash: str) -> str:
        """MPTokenIssuanceID created by a validated issuance transaction."""

        async def _lookup() -> dict:
            r = await self._rpc(Tx(transaction=tx_hash))
            if not r.is_successful():
                raise NetworkError(f"tx lookup failed: {_rpc_error(r.result)}")
            return r.result

        result = await self._retrying(_lookup)
        meta = result.get("meta") or {}
        mpt_id = result.get("mpt_issuance_id") or (meta.get("mpt_issuance_id") if isinstance(meta, dict) else None)
        if not mpt_id:
            raise LaunchpadError(ErrorCode.CONTRACT_ERROR, f"no mpt_issuance_id on {tx_hash}")
        return mpt_id
