"""
DeploymentOrchestrator drives one token deployment end to end:

    idle -> validating -> (uploading)? -> deploying -> success | error

``deploying`` covers build, simulate, sign, submit and waiting on the
TransactionMonitor for the terminal status of the submitted hash. Every
terminal failure surfaces as a LaunchpadError, both raised from deploy() and
kept on the session.
"""
import asyncio
import json
import logging

import launchpad.constants as C
from launchpad.constants import DeploymentStatus, ErrorCode, TxStatus
from launchpad.errors import LaunchpadError, classify_error
from launchpad.ipfs import MetadataUploader, UploadHandle
from launchpad.ledger import LedgerGateway
from launchpad.models import DeploymentRecord, DeploymentResult, DeploymentSession, TokenDeployParams
from launchpad.monitor import MonitoringCancelled, TransactionMonitor
from launchpad.retry import RetryConfig, RetryScheduler
from launchpad.store import DeploymentStore
from launchpad.validation import validate_token_params
from launchpad.wallet import WalletSigner, probe_signer

log = logging.getLogger("launchpad.deploy")


class DeploymentOrchestrator:
    def __init__(
        self,
        ledger: LedgerGateway,
        signer: WalletSigner,
        monitor: TransactionMonitor,
        store: DeploymentStore,
        uploader: MetadataUploader | None = None,
        network_id: str = "testnet",
        retry_config: RetryConfig | None = None,
        scheduler: RetryScheduler | None = None,
    ):
        self.ledger = ledger
        self.signer = signer
        self.monitor = monitor
        self.store = store
        self.uploader = uploader
        self.network_id = network_id
        self.retry_config = retry_config
        self.scheduler = scheduler or RetryScheduler()
        self.upload_progress: int | None = None
        self._session: DeploymentSession | None = None
        self._last_params: TokenDeployParams | None = None
        self._upload: UploadHandle | None = None
        self._in_flight = False

    # ---- observable state ------------------------------------------------

    @property
    def session(self) -> DeploymentSession | None:
        return self._session

    @property
    def status(self) -> DeploymentStatus:
        return self._session.status if self._session else DeploymentStatus.IDLE

    @property
    def status_message(self) -> str:
        return C.STATUS_MESSAGES[self.status]

    @property
    def is_deploying(self) -> bool:
        return self.status in (DeploymentStatus.UPLOADING, DeploymentStatus.DEPLOYING)

    @property
    def busy(self) -> bool:
        return self._in_flight

    @property
    def error(self) -> LaunchpadError | None:
        return self._session.error if self._session else None

    # ---- commands ---------------------------------------------------------

    async def deploy(self, params: TokenDeployParams) -> DeploymentResult:
        if self._in_flight:
            raise RuntimeError("A deployment is already in progress")
        self._in_flight = True
        self._last_params = params
        session = DeploymentSession(params)
        self._session = session
        self.upload_progress = None
        try:
            result = await self._run(session)
        except asyncio.CancelledError:
            if not session.is_terminal:
                log.warning("Deployment of %s cancelled while %s", params.symbol, session.status)
                session.fail(LaunchpadError(ErrorCode.TIMEOUT_ERROR, "Deployment cancelled"))
            raise
        except Exception as e:
            err = classify_error(e)
            session.fail(err)
            log.warning("Deployment of %s failed: [%s] %s", params.symbol, err.code, err)
            if err is e:
                raise
            raise err from e
        finally:
            self._in_flight = False
        return result

    async def retry(self) -> DeploymentResult:
        """Start a fresh session with the parameters of the last deploy()."""
        if self._last_params is None:
            raise RuntimeError("Nothing to retry")
        return await self.deploy(self._last_params)

    def reset(self) -> None:
        if self._in_flight:
            raise RuntimeError("Cannot reset while a deployment is in progress")
        self._session = None
        self.upload_progress = None

    # ---- stages -------------------------------------------------------------

    async def _run(self, session: DeploymentSession) -> DeploymentResult:
        params = session.params

        session.transition(DeploymentStatus.VALIDATING)
        validation = validate_token_params(params)
        if not validation.valid:
            raise LaunchpadError(ErrorCode.INVALID_INPUT, validation.details())

        metadata_uri = params.metadata_uri
        if params.has_offchain_content:
            session.transition(DeploymentStatus.UPLOADING)
            metadata_uri = await self._upload_metadata(params)
        session.metadata_uri = metadata_uri

        session.transition(DeploymentStatus.DEPLOYING)
        tx, tx_hash = await self._submit(params, metadata_uri)
        session.transaction_hash = tx_hash

        await self._confirm(tx_hash)
        token_address = await self._token_address(tx_hash)
        result = DeploymentResult(token_address=token_address, transaction_hash=tx_hash, total_fee=tx["Fee"])
        await self._save(DeploymentRecord.from_result(params, result, metadata_uri))
        session.succeed(result)
        log.info("Deployed %s as %s (tx %s)", params.symbol, token_address, tx_hash)
        return result

    async def _upload_metadata(self, params: TokenDeployParams) -> str:
        if self.uploader is None:
            raise LaunchpadError(ErrorCode.IPFS_UPLOAD_FAILED, "No metadata uploader configured")

        def progress(pct: int) -> None:
            self.upload_progress = pct

        meta = {"name": params.name, "description": params.metadata.description}
        try:
            self._upload = self.uploader.upload(params.metadata.image, meta, progress)
            outcome = await self._upload.result
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise LaunchpadError(ErrorCode.IPFS_UPLOAD_FAILED, "Upload cancelled") from None
        except Exception as e:
            raise LaunchpadError(ErrorCode.IPFS_UPLOAD_FAILED, str(e) or e.__class__.__name__) from e
        finally:
            handle, self._upload = self._upload, None
            if handle is not None and not handle.result.done():
                handle.cancel()
        if not outcome.success or not outcome.uri:
            raise LaunchpadError(ErrorCode.IPFS_UPLOAD_FAILED, outcome.error)
        return outcome.uri

    async def _submit(self, params: TokenDeployParams, metadata_uri: str | None) -> tuple[dict, str]:
        address = await probe_signer(self.signer, scheduler=self.scheduler, config=self.retry_config)
        if address != params.admin_wallet:
            raise LaunchpadError(
                ErrorCode.WALLET_NOT_CONNECTED,
                f"Connected wallet {address} does not match admin wallet {params.admin_wallet}",
            )

        tx = await self.ledger.build_token_issuance(params, metadata_uri)
        await self.ledger.simulate(tx)

        signed = await self.signer.sign(json.dumps(tx), self.network_id)
        if signed is None:
            raise LaunchpadError(ErrorCode.WALLET_REJECTED)

        tx_hash = await self.ledger.submit(signed)
        return tx, tx_hash

    async def _confirm(self, tx_hash: str) -> None:
        self.monitor.start_monitoring(tx_hash)
        try:
            update = await self.monitor.wait_for(tx_hash)
        except MonitoringCancelled as e:
            raise LaunchpadError(ErrorCode.TIMEOUT_ERROR, str(e)) from e
        finally:
            self.monitor.stop_monitoring(tx_hash)

        if update.status == TxStatus.SUCCESS:
            return
        if update.status == TxStatus.FAILED:
            raise LaunchpadError(ErrorCode.TRANSACTION_FAILED, f"Transaction {tx_hash} failed on ledger")
        raise LaunchpadError(ErrorCode.TIMEOUT_ERROR, update.error)

    async def _token_address(self, tx_hash: str) -> str | None:
        # issuance already validated
        try:
            return await self.ledger.fetch_token_address(tx_hash)
        except LaunchpadError as e:
            log.error("Issuance %s validated but its MPTokenIssuanceID lookup failed: [%s] %s", tx_hash, e.code, e)
            return None

    async def _save(self, record: DeploymentRecord) -> None:
        try:
            await self.store.add(record)
        except Exception:
            # the token exists on ledger regardless
            log.exception("Failed to persist deployment record for %s", record.address)
