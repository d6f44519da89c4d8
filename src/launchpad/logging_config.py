import logging
import logging.config
import os
import sys

from launchpad.config import cfg

FORMAT = "%(asctime)s %(levelname)-6s %(name)8s:%(lineno)d %(message)s"

# library -> level
QUIET_LOGGERS = {
    "fastapi": "INFO",
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "xrpl": "WARNING",
}


def build_logging_config(log_cfg: dict) -> dict:
    """dictConfig for the ``[logging]`` section: stdout always, a file when ``file`` is set."""
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
    }
    if log_cfg.get("file"):
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_cfg["file"],
            "mode": "a",
        }
    names = list(handlers)

    loggers = {"launchpad": {"level": log_cfg.get("level", "INFO"), "handlers": names, "propagate": False}}
    for name, level in QUIET_LOGGERS.items():
        loggers[name] = {"level": level, "handlers": names, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}},
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": names},
    }


def setup_logging(log_cfg: dict | None = None):
    logging.config.dictConfig(build_logging_config(cfg["logging"] if log_cfg is None else log_cfg))
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
