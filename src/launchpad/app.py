import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from xrpl.asyncio.clients import AsyncJsonRpcClient

from launchpad.checker import RpcStatusChecker
from launchpad.config import cfg
from launchpad.constants import ErrorCode
from launchpad.deploy import DeploymentOrchestrator
from launchpad.errors import LaunchpadError, NetworkError
from launchpad.ipfs import DEFAULT_GATEWAYS, PINATA_API_URL, IPFSError, PinataUploader
from launchpad.ledger import LedgerGateway
from launchpad.logging_config import setup_logging
from launchpad.models import ImageFile, TokenDeployParams, TokenMetadataInput
from launchpad.monitor import MonitoringConfig, TransactionMonitor
from launchpad.retry import RetryConfig, RetryError, RetryScheduler
from launchpad.store import InMemoryDeploymentStore, SQLiteDeploymentStore
from launchpad.wallet import DisconnectedSigner, SeedWalletSigner

setup_logging()
log = logging.getLogger("launchpad.app")

RPC = cfg["network"]["rpc_url"]
NETWORK = cfg["network"]["name"]

to = cfg.get("timeout", {})
TIMEOUT = 3.0
OVERALL_STARTUP_TIMEOUT = to.get("startup", 60)

# 30 attempts, 2s apart
PROBE_RETRY = RetryConfig(max_attempts=30, initial_delay=2.0, max_delay=2.0, backoff_multiplier=1.0)


async def _probe_rpc(url: str, config: RetryConfig = PROBE_RETRY) -> dict:
    """Probe the ledger RPC endpoint with server_info until it responds."""
    payload = {"method": "server_info", "params": [{}]}

    async def _once() -> dict:
        async with httpx.AsyncClient(timeout=TIMEOUT) as http:
            r = await http.post(url, json=payload)
        if not r.is_success:
            raise NetworkError(f"RPC endpoint answered {r.status_code}")
        return r.json().get("result", {})

    def _note(attempt: int, delay: float, e: BaseException) -> None:
        log.info(f"RPC not ready yet (attempt {attempt}/{config.max_attempts}): {e.__class__.__name__} - retrying in {delay}s...")

    try:
        result = await RetryScheduler().execute(_once, config, on_retry=_note)
    except RetryError:
        log.error(f"RPC failed after {config.max_attempts} attempts")
        raise
    log.info("RPC endpoint responding")
    return result


def _build_store():
    s = cfg.get("store", {})
    if s.get("backend", "sqlite") == "memory":
        return InMemoryDeploymentStore(max_records=s.get("max_records"))
    return SQLiteDeploymentStore(db_path=s["db_path"], max_records=s.get("max_records"))


def _build_signer():
    seed = cfg.get("signer", {}).get("seed")
    if not seed:
        log.warning("No signer seed configured - deployments will fail with WALLET_NOT_CONNECTED")
        return DisconnectedSigner()
    signer = SeedWalletSigner(seed, NETWORK)
    log.info("Signer ready for %s on %s", signer.address, NETWORK)
    return signer


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with asyncio.timeout(OVERALL_STARTUP_TIMEOUT):
        log.info("Probing RPC endpoint %s ...", RPC)
        await _probe_rpc(RPC)

    retry_config = RetryConfig.from_dict(cfg.get("retry"))
    ipfs = cfg.get("ipfs", {})

    checker = RpcStatusChecker(RPC, timeout=to.get("rpc", TIMEOUT))
    monitor = TransactionMonitor(checker, MonitoringConfig.from_dict(cfg.get("monitor")))
    ledger = LedgerGateway(
        AsyncJsonRpcClient(RPC),
        retry_config=retry_config,
        rpc_timeout=to.get("rpc", TIMEOUT),
        submit_timeout=to.get("submit", 20.0),
        max_fee_drops=cfg.get("signer", {}).get("max_fee_drops", 1000),
    )
    uploader = PinataUploader(
        ipfs.get("api_key", ""),
        ipfs.get("api_secret", ""),
        api_url=ipfs.get("api_url", PINATA_API_URL),
        gateways=tuple(ipfs.get("gateways") or DEFAULT_GATEWAYS),
    )
    store = _build_store()

    app.state.monitor = monitor
    app.state.store = store
    app.state.uploader = uploader
    app.state.orchestrator = DeploymentOrchestrator(
        ledger,
        _build_signer(),
        monitor,
        store,
        uploader=uploader,
        network_id=NETWORK,
        retry_config=retry_config,
    )
    app.state.tasks = set()
    log.info("Launchpad ready on %s", NETWORK)

    try:
        yield
    finally:
        log.info("Shutting down...")
        monitor.destroy()
        await checker.aclose()
        await uploader.aclose()
        log.info("Shutdown complete")


app = FastAPI(
    title="XRPL Token Launchpad",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Deploy", "description": "Deploy tokens and follow the deployment"},
        {"name": "Tokens", "description": "Deployment history"},
        {"name": "Monitor", "description": "Tracked transactions"},
    ],
)

r_deploy = APIRouter(prefix="/deploy", tags=["Deploy"])
r_tokens = APIRouter(prefix="/tokens", tags=["Tokens"])
r_monitor = APIRouter(prefix="/monitor", tags=["Monitor"])


@app.exception_handler(LaunchpadError)
async def launchpad_error_handler(request: Request, exc: LaunchpadError):
    status_code = 422 if exc.code == ErrorCode.INVALID_INPUT else 502
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


class MetadataReq(BaseModel):
    image_base64: str
    content_type: str
    description: str = ""
    filename: str = "image"
    width: int | None = None
    height: int | None = None


class DeployReq(BaseModel):
    name: str
    symbol: str
    decimals: int
    initial_supply: str
    admin_wallet: str
    metadata: MetadataReq | None = None
    metadata_uri: str | None = None
    wait: bool = True

    def to_params(self) -> TokenDeployParams:
        metadata = None
        if self.metadata is not None:
            try:
                content = base64.b64decode(self.metadata.image_base64, validate=True)
            except (binascii.Error, ValueError):
                raise LaunchpadError(ErrorCode.INVALID_INPUT, "Image is not valid base64") from None
            metadata = TokenMetadataInput(
                image=ImageFile(
                    filename=self.metadata.filename,
                    content=content,
                    content_type=self.metadata.content_type,
                    width=self.metadata.width,
                    height=self.metadata.height,
                ),
                description=self.metadata.description,
            )
        return TokenDeployParams(
            name=self.name,
            symbol=self.symbol,
            decimals=self.decimals,
            initial_supply=self.initial_supply,
            admin_wallet=self.admin_wallet,
            metadata=metadata,
            metadata_uri=self.metadata_uri,
        )


def _orchestrator() -> DeploymentOrchestrator:
    return app.state.orchestrator


def _status_payload(o: DeploymentOrchestrator) -> dict:
    payload = o.session.snapshot() if o.session else {"status": o.status.value}
    payload.update(
        status_message=o.status_message,
        is_deploying=o.is_deploying,
        upload_progress=o.upload_progress,
    )
    return payload


def _spawn(coro) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    app.state.tasks.add(task)
    task.add_done_callback(_background_done)


def _background_done(task: asyncio.Task) -> None:
    app.state.tasks.discard(task)
    if not task.cancelled() and (e := task.exception()) is not None:
        # already recorded on the session
        log.debug("Background deployment ended with %s", e)


@app.get("/health")
def health():
    return {"status": "ok", "network": NETWORK}


@app.get("/metadata/{cid}", tags=["Tokens"])
async def get_metadata(cid: str):
    try:
        return await app.state.uploader.fetch_metadata(f"ipfs://{cid}")
    except IPFSError as e:
        raise HTTPException(status_code=502, detail=str(e))


@r_deploy.post("")
async def deploy_token(req: DeployReq):
    o = _orchestrator()
    params = req.to_params()
    if o.busy:
        raise HTTPException(status_code=409, detail="A deployment is already in progress")
    if not req.wait:
        _spawn(o.deploy(params))
        await asyncio.sleep(0)
        return JSONResponse(status_code=202, content=_status_payload(o))
    try:
        result = await o.deploy(params)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"result": asdict(result), **_status_payload(o)}


@r_deploy.post("/retry")
async def retry_deploy():
    o = _orchestrator()
    try:
        result = await o.retry()
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"result": asdict(result), **_status_payload(o)}


@r_deploy.post("/reset")
async def reset_deploy():
    o = _orchestrator()
    try:
        o.reset()
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _status_payload(o)


@r_deploy.get("/status")
async def deploy_status():
    return _status_payload(_orchestrator())


@r_tokens.get("/{creator}")
async def list_tokens(creator: str):
    records = await app.state.store.list_for(creator)
    return {"creator": creator, "tokens": [r.to_dict() for r in records]}


@r_monitor.get("")
async def active_sessions():
    monitor: TransactionMonitor = app.state.monitor
    return [s.to_dict() for s in monitor.active_sessions()]


@r_monitor.get("/{tx_hash}")
async def monitor_session(tx_hash: str):
    s = app.state.monitor.get_session(tx_hash)
    if s is None:
        raise HTTPException(404, "tx not tracked")
    return s.to_dict()


app.include_router(r_deploy)
app.include_router(r_tokens)
app.include_router(r_monitor)
