"""Domain data structures shared by the monitor, the orchestrator and the store."""

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from launchpad.constants import TERMINAL_DEPLOYMENT_STATUS, DeploymentStatus, TxStatus
from launchpad.errors import LaunchpadError


@dataclass(frozen=True, slots=True)
class ImageFile:
    filename: str
    content: bytes
    content_type: str
    width: int | None = None
    height: int | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class TokenMetadataInput:
    """Off-chain content attached to a deployment request."""

    image: ImageFile
    description: str


@dataclass(frozen=True, slots=True)
class TokenDeployParams:
    name: str
    symbol: str
    decimals: int
    initial_supply: str
    admin_wallet: str  # issuer / creator classic address
    metadata: TokenMetadataInput | None = None
    metadata_uri: str | None = None

    @property
    def has_offchain_content(self) -> bool:
        return self.metadata is not None


@dataclass(frozen=True, slots=True)
class DeploymentResult:
    token_address: str | None  # MPTokenIssuanceID, None when the lookup failed
    transaction_hash: str
    total_fee: str  # drops
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class StatusUpdate:
    id: str
    status: TxStatus
    timestamp: float
    ledger_info: int | None = None
    error: str | None = None


@dataclass(slots=True)
class DeploymentRecord:
    address: str | None
    name: str
    symbol: str
    decimals: int
    total_supply: str
    creator: str
    deployed_at: float
    transaction_hash: str
    metadata_uri: str | None = None

    @classmethod
    def from_result(
        cls, params: TokenDeployParams, result: DeploymentResult, metadata_uri: str | None
    ) -> "DeploymentRecord":
        return cls(
            address=result.token_address,
            name=params.name,
            symbol=params.symbol,
            decimals=params.decimals,
            total_supply=params.initial_supply,
            creator=params.admin_wallet,
            metadata_uri=metadata_uri,
            deployed_at=result.timestamp,
            transaction_hash=result.transaction_hash,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "DeploymentRecord":
        return cls(
            address=d["address"],
            name=d["name"],
            symbol=d["symbol"],
            decimals=int(d["decimals"]),
            total_supply=str(d["total_supply"]),
            creator=d["creator"],
            deployed_at=float(d["deployed_at"]),
            transaction_hash=d["transaction_hash"],
            metadata_uri=d.get("metadata_uri"),
        )


@dataclass(slots=True)
class DeploymentSession:
    """One user-initiated deployment. Immutable once it reaches success or error."""

    params: TokenDeployParams
    status: DeploymentStatus = DeploymentStatus.IDLE
    metadata_uri: str | None = None
    transaction_hash: str | None = None
    result: DeploymentResult | None = None
    error: LaunchpadError | None = None
    visited: list[DeploymentStatus] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DEPLOYMENT_STATUS

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Deployment session already finished ({self.status})")

    def transition(self, status: DeploymentStatus) -> None:
        self._ensure_open()
        if status == DeploymentStatus.UPLOADING and not self.params.has_offchain_content:
            raise RuntimeError("uploading requires attached off-chain content")
        if status == DeploymentStatus.DEPLOYING and DeploymentStatus.DEPLOYING in self.visited:
            raise RuntimeError("deploying can only be entered once per session")
        self.status = status
        self.visited.append(status)
        if self.is_terminal:
            self.finished_at = time.time()

    def succeed(self, result: DeploymentResult) -> None:
        self._ensure_open()
        self.result = result
        self.transition(DeploymentStatus.SUCCESS)

    def fail(self, error: LaunchpadError) -> None:
        self._ensure_open()
        self.error = error
        self.transition(DeploymentStatus.ERROR)

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "symbol": self.params.symbol,
            "creator": self.params.admin_wallet,
            "metadata_uri": self.metadata_uri,
            "transaction_hash": self.transaction_hash,
            "result": asdict(self.result) if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "visited": [s.value for s in self.visited],
        }
