from typing import Final
from enum import StrEnum


class TxStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED  = "failed"
    TIMEOUT = "timeout"


class DeploymentStatus(StrEnum):
    IDLE       = "idle"
    VALIDATING = "validating"
    UPLOADING  = "uploading"
    DEPLOYING  = "deploying"
    SUCCESS    = "success"
    ERROR      = "error"


class ErrorCode(StrEnum):
    INVALID_INPUT        = "INVALID_INPUT"
    IPFS_UPLOAD_FAILED   = "IPFS_UPLOAD_FAILED"
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    WALLET_REJECTED      = "WALLET_REJECTED"
    SIMULATION_FAILED    = "SIMULATION_FAILED"
    ACCOUNT_NOT_FOUND    = "ACCOUNT_NOT_FOUND"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    NETWORK_ERROR        = "NETWORK_ERROR"
    TIMEOUT_ERROR        = "TIMEOUT_ERROR"
    CONTRACT_ERROR       = "CONTRACT_ERROR"
    TRANSACTION_FAILED   = "TRANSACTION_FAILED"
    INVALID_SIGNATURE    = "INVALID_SIGNATURE"


TERMINAL_TX_STATUS: Final = {TxStatus.SUCCESS, TxStatus.FAILED, TxStatus.TIMEOUT}
TERMINAL_DEPLOYMENT_STATUS: Final = {DeploymentStatus.SUCCESS, DeploymentStatus.ERROR}

STATUS_MESSAGES: Final = {
    DeploymentStatus.IDLE:       "",
    DeploymentStatus.VALIDATING: "Validating token parameters...",
    DeploymentStatus.UPLOADING:  "Uploading metadata to IPFS...",
    DeploymentStatus.DEPLOYING:  "Building transaction, requesting signature, and submitting to the ledger...",
    DeploymentStatus.SUCCESS:    "Deployment complete.",
    DeploymentStatus.ERROR:      "Deployment failed.",
}

# Monitor defaults (milliseconds). 1.0 multiplier == constant-interval polling.
POLLING_INTERVAL_MS = 3_000
MAX_RETRIES = 40
MONITOR_TIMEOUT_MS = 120_000
BACKOFF_MULTIPLIER = 1.0
MAX_DELAY_MS = 30_000
JITTER_MS = 100

MAX_RETRIES_EXCEEDED = "Max retries exceeded"
MONITORING_TIMEOUT = "Transaction monitoring timeout"

# RetryScheduler defaults (seconds)
RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 1.0
RETRY_MAX_DELAY = 10.0
RETRY_BACKOFF_MULTIPLIER = 2.0

HORIZON = 20  # LastLedgerSequence offset for built transactions
RPC_TIMEOUT = 5.0
SUBMIT_TIMEOUT = 20.0
MAX_FEE_DROPS = 1000  # refuse to sign above this during fee escalation
TF_MPT_CAN_TRANSFER = 0x00000020
ENGINE_SUCCESS = "tesSUCCESS"

STORAGE_KEY_PREFIX = "tokens_"

# Metadata / image limits
MAX_DESCRIPTION_LENGTH = 500
MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES: Final = ("image/png", "image/jpeg", "image/jpg", "image/svg+xml")
MAX_METADATA_BYTES = 1024  # MPTokenMetadata field limit

__all__ = [
    "ALLOWED_IMAGE_TYPES",
    "BACKOFF_MULTIPLIER",
    "ENGINE_SUCCESS",
    "HORIZON",
    "JITTER_MS",
    "MAX_DELAY_MS",
    "MAX_DESCRIPTION_LENGTH",
    "MAX_IMAGE_BYTES",
    "MAX_METADATA_BYTES",
    "MAX_RETRIES",
    "MAX_RETRIES_EXCEEDED",
    "MONITORING_TIMEOUT",
    "MONITOR_TIMEOUT_MS",
    "POLLING_INTERVAL_MS",
    "RETRY_BACKOFF_MULTIPLIER",
    "RETRY_INITIAL_DELAY",
    "RETRY_MAX_ATTEMPTS",
    "RETRY_MAX_DELAY",
    "MAX_FEE_DROPS",
    "RPC_TIMEOUT",
    "SUBMIT_TIMEOUT",
    "TF_MPT_CAN_TRANSFER",
    "STATUS_MESSAGES",
    "STORAGE_KEY_PREFIX",
    "TERMINAL_DEPLOYMENT_STATUS",
    "TERMINAL_TX_STATUS",

    ######
    "DeploymentStatus",
    "ErrorCode",
    "TxStatus",
]
