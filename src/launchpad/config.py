import os
import tomllib
from pathlib import Path

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


def load_config(path: Path = config_file, env: dict[str, str] | None = None) -> dict:
    """Read config.toml and apply environment overrides."""
    env = os.environ if env is None else env
    cfg = tomllib.loads(Path(path).read_text())

    net = cfg.setdefault("network", {})
    net["rpc_url"] = env.get("LAUNCHPAD_RPC_URL", net.get("rpc_url"))
    net["name"] = env.get("LAUNCHPAD_NETWORK", net.get("name", "testnet"))

    ipfs = cfg.setdefault("ipfs", {})
    ipfs["api_key"] = env.get("PINATA_API_KEY", ipfs.get("api_key", ""))
    ipfs["api_secret"] = env.get("PINATA_API_SECRET", ipfs.get("api_secret", ""))

    store = cfg.setdefault("store", {})
    store["db_path"] = env.get("LAUNCHPAD_DB", store.get("db_path", "launchpad.db"))
    store["max_records"] = int(store.get("max_records") or 0) or None

    signer = cfg.setdefault("signer", {})
    signer["seed"] = env.get("LAUNCHPAD_SIGNER_SEED", signer.get("seed", ""))

    logging_ = cfg.setdefault("logging", {})
    logging_["level"] = env.get("LOG_LEVEL", logging_.get("level", "INFO")).upper()
    logging_["file"] = env.get("LAUNCHPAD_LOG_FILE", logging_.get("file", ""))
    return cfg


cfg = load_config()
