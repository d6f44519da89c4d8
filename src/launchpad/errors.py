"""
Error taxonomy for the deployment pipeline.

Errors are tagged where they are raised (``LaunchpadError`` with an
``ErrorCode``). ``classify_error`` only exists for exceptions crossing an
opaque boundary, e.g. a signer or uploader that fails with free text.

XRPL engine result prefixes:
    - tes: success
    - tec: claimed cost, included in a ledger but failed
    - tef: local failure, not forwarded
    - tem: malformed, will never succeed
    - tel: local node rejection, may still be retried by the server
    - ter: retry, may succeed later
"""

from typing import Any

import httpx

from launchpad.constants import ErrorCode

ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.WALLET_NOT_CONNECTED: "Please connect your wallet to continue",
    ErrorCode.INSUFFICIENT_BALANCE: "Insufficient XRP balance for transaction fees",
    ErrorCode.INVALID_INPUT:        "Please check your input and try again",
    ErrorCode.IPFS_UPLOAD_FAILED:   "Failed to upload metadata to IPFS. Please try again",
    ErrorCode.TRANSACTION_FAILED:   "Transaction failed. Please try again",
    ErrorCode.WALLET_REJECTED:      "Transaction was cancelled",
    ErrorCode.NETWORK_ERROR:        "Network error. Please check your connection",
    ErrorCode.SIMULATION_FAILED:    "Transaction simulation failed",
    ErrorCode.CONTRACT_ERROR:       "Token issuance error occurred",
    ErrorCode.TIMEOUT_ERROR:        "Transaction confirmation timeout",
    ErrorCode.ACCOUNT_NOT_FOUND:    "Account not found on network",
    ErrorCode.INVALID_SIGNATURE:    "Invalid transaction signature",
}

RETRY_SUGGESTIONS: dict[ErrorCode, str] = {
    ErrorCode.WALLET_NOT_CONNECTED: "Reconnect your wallet and try again.",
    ErrorCode.INSUFFICIENT_BALANCE: "Fund your account with enough XRP, then retry.",
    ErrorCode.INVALID_INPUT:        "Review all fields and fix validation errors.",
    ErrorCode.IPFS_UPLOAD_FAILED:   "Retry the upload or use a smaller image file.",
    ErrorCode.TRANSACTION_FAILED:   "Retry in a moment and confirm transaction details.",
    ErrorCode.WALLET_REJECTED:      "Approve the transaction in your wallet prompt.",
    ErrorCode.NETWORK_ERROR:        "Check connectivity and try again.",
    ErrorCode.SIMULATION_FAILED:    "Update token parameters and retry the simulation.",
    ErrorCode.CONTRACT_ERROR:       "Verify the network configuration and retry.",
    ErrorCode.TIMEOUT_ERROR:        "Wait briefly and check the transaction status again.",
    ErrorCode.ACCOUNT_NOT_FOUND:    "Fund/activate your account on the selected network.",
    ErrorCode.INVALID_SIGNATURE:    "Re-sign with the connected wallet and retry.",
}

# Whether the UI should offer a retry action.
RETRYABLE: dict[ErrorCode, bool] = {
    ErrorCode.INVALID_INPUT:        False,
    ErrorCode.IPFS_UPLOAD_FAILED:   True,
    ErrorCode.WALLET_NOT_CONNECTED: True,
    ErrorCode.WALLET_REJECTED:      True,
    ErrorCode.SIMULATION_FAILED:    True,
    ErrorCode.ACCOUNT_NOT_FOUND:    False,
    ErrorCode.INSUFFICIENT_BALANCE: True,
    ErrorCode.NETWORK_ERROR:        True,
    ErrorCode.TIMEOUT_ERROR:        True,
    ErrorCode.CONTRACT_ERROR:       True,
    ErrorCode.TRANSACTION_FAILED:   True,
    ErrorCode.INVALID_SIGNATURE:    False,
}

# Codes the RetryScheduler treats as transient.
RECOVERABLE_CODES = frozenset({ErrorCode.NETWORK_ERROR, ErrorCode.TIMEOUT_ERROR})


class NetworkError(ConnectionError):
    """Transient I/O failure talking to the ledger, IPFS or the signer."""


class LaunchpadError(Exception):
    def __init__(self, code: ErrorCode, details: str | None = None, *, message: str | None = None):
        self.code = ErrorCode(code)
        self.message = message or ERROR_MESSAGES[self.code]
        self.details = details
        self.retryable = RETRYABLE[self.code]
        self.retry_suggestion = RETRY_SUGGESTIONS[self.code]
        super().__init__(f"{self.message}: {details}" if details else self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "retry_suggestion": self.retry_suggestion,
        }


def create_error(code: ErrorCode, details: str | None = None) -> LaunchpadError:
    return LaunchpadError(code, details)


def _message_of(exc: BaseException) -> str:
    if isinstance(exc, LaunchpadError):
        return f"{exc.message} {exc.details or ''}".strip()
    return str(exc) or exc.__class__.__name__


def classify_error(exc: BaseException) -> LaunchpadError:
    """Map an arbitrary exception onto the taxonomy.

    Tagged errors pass through. Everything else is matched in a fixed order:
    wallet/sign, then network, then simulation/transaction, then the
    TRANSACTION_FAILED catch-all.
    """
    if isinstance(exc, LaunchpadError):
        return exc
    message = _message_of(exc)
    if isinstance(exc, (NetworkError, httpx.TransportError)):
        return LaunchpadError(ErrorCode.NETWORK_ERROR, message)

    lowered = message.lower()
    if "wallet" in lowered or "sign" in lowered:
        return LaunchpadError(ErrorCode.WALLET_REJECTED, message)
    if "network" in lowered:
        return LaunchpadError(ErrorCode.NETWORK_ERROR, message)
    if "simulat" in lowered or "transaction" in lowered:
        return LaunchpadError(ErrorCode.TRANSACTION_FAILED, message)
    return LaunchpadError(ErrorCode.TRANSACTION_FAILED, message)


_INSUFFICIENT = {"tecUNFUNDED", "tecINSUFFICIENT_RESERVE", "terINSUF_FEE_B", "telINSUF_FEE_P"}
_BAD_SIGNATURE = {"temBAD_SIGNATURE", "temINVALID", "tefBAD_AUTH", "tefBAD_SIGNATURE"}


def classify_engine_result(engine_result: str | None) -> ErrorCode | None:
    """Map an XRPL engine result to an ErrorCode. None means success or still in flight."""
    if engine_result is None:
        return ErrorCode.NETWORK_ERROR
    if engine_result == "tesSUCCESS":
        return None
    if engine_result in _INSUFFICIENT:
        return ErrorCode.INSUFFICIENT_BALANCE
    if engine_result == "terNO_ACCOUNT":
        return ErrorCode.ACCOUNT_NOT_FOUND
    if engine_result in _BAD_SIGNATURE:
        return ErrorCode.INVALID_SIGNATURE
    if engine_result.startswith(("tel", "ter", "tec")):
        # provisional; the monitor decides the final outcome
        return None
    return ErrorCode.TRANSACTION_FAILED
