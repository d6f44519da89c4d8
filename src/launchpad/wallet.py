"""
Signing capability consumed by the deployment orchestrator.

A signer receives the unsigned transaction as a JSON string and returns the
signed blob (hex), or ``None`` when the request is declined.
"""
import json
import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from xrpl.core.binarycodec import encode, encode_for_signing
from xrpl.core.keypairs import sign
from xrpl.wallet import Wallet

from launchpad.constants import ErrorCode
from launchpad.errors import LaunchpadError, NetworkError
from launchpad.retry import RetryConfig, RetryError, RetryScheduler

log = logging.getLogger("launchpad.wallet")

ApprovalPolicy = Callable[[dict], bool]


@runtime_checkable
class WalletSigner(Protocol):
    async def connected_address(self) -> str | None: ...
    async def sign(self, payload: str, network_id: str) -> str | None: ...


def approve_all(tx: dict) -> bool:
    return True


class SeedWalletSigner:
    """Signs locally with a seed-derived xrpl Wallet.

    ``approve`` stands in for the user prompt: it sees the decoded transaction
    and returns False to decline.
    """

    def __init__(self, seed: str, network_id: str, approve: ApprovalPolicy = approve_all):
        self.wallet = Wallet.from_seed(seed)
        self.network_id = network_id
        self._approve = approve

    @property
    def address(self) -> str:
        return self.wallet.address

    async def connected_address(self) -> str | None:
        return self.wallet.address

    async def sign(self, payload: str, network_id: str) -> str | None:
        if network_id != self.network_id:
            log.warning("Sign request for network %s but signer is on %s", network_id, self.network_id)
            return None

        tx = json.loads(payload)
        if not self._approve(tx):
            log.info("Signing declined for %s", tx.get("TransactionType"))
            return None

        tx["SigningPubKey"] = self.wallet.public_key
        signing_blob = encode_for_signing(tx)
        to_sign = signing_blob if isinstance(signing_blob, str) else signing_blob.hex()
        tx["TxnSignature"] = sign(to_sign, self.wallet.private_key)
        signed = encode(tx)
        log.debug("Signed %s seq=%s", tx.get("TransactionType"), tx.get("Sequence"))
        return signed


async def probe_signer(
    signer: WalletSigner,
    *,
    scheduler: RetryScheduler | None = None,
    config: RetryConfig | None = None,
) -> str:
    """Return the signer's address, retrying transient failures.

    Raises LaunchpadError(WALLET_NOT_CONNECTED) when no signer answers.
    """
    scheduler = scheduler or RetryScheduler()

    async def _ask() -> str:
        address = await signer.connected_address()
        if not address:
            raise NetworkError("wallet signer did not report an address")
        return address

    try:
        return await scheduler.execute(_ask, config)
    except RetryError as e:
        raise LaunchpadError(ErrorCode.WALLET_NOT_CONNECTED, str(e.last_error)) from e


class DisconnectedSigner:
    """Placeholder used when no signing key is configured."""

    async def connected_address(self) -> str | None:
        return None

    async def sign(self, payload: str, network_id: str) -> str | None:
        return None
