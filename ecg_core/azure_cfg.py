# ecg_core/azure_cfg.py
from __future__ import annotations
import json
import logging
import os
import pathlib
from dataclasses import dataclass

from openai import AzureOpenAI

log = logging.getLogger(__name__)

_KEYS = ("endpoint", "api_key", "api_version", "deployment")


@dataclass(frozen=True)
class AzureSettings:
    endpoint: str
    api_key: str
    deployment: str
    api_version: str


def _from_env() -> dict[str, str]:
    return {
        "endpoint": os.getenv("AZURE_OPENAI_ENDPOINT", ""),
        "api_key": os.getenv("AZURE_OPENAI_API_KEY", ""),
        "api_version": os.getenv("AZURE_OPENAI_API_VERSION", ""),
        "deployment": os.getenv("AZURE_OPENAI_DEPLOYMENT", ""),
    }


def _from_json(path: str | None = None) -> dict[str, str]:
    p = pathlib.Path(path or os.getenv("AZURE_CONFIG_FILE", ".azure_config.json"))
    if not p.exists():
        return {}
    try:
        j = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("could not read %s: %s", p, e)
        return {}
    return {k: str(j.get(k, "")) for k in _KEYS}


def is_configured() -> bool:
    try:
        settings()
    except RuntimeError:
        return False
    return True


def settings() -> AzureSettings:
    cfg = _from_env()
    if not all(cfg.values()):
        for k, v in _from_json().items():
            if not cfg.get(k):
                cfg[k] = v
    missing = [k for k in _KEYS if not cfg.get(k)]
    if missing:
        raise RuntimeError(f"Azure OpenAI not configured. Missing: {', '.join(missing)}")
    return AzureSettings(
        endpoint=cfg["endpoint"],
        api_key=cfg["api_key"],
        deployment=cfg["deployment"],
        api_version=cfg["api_version"],
    )


def client() -> AzureOpenAI:
    s = settings()
    return AzureOpenAI(
        azure_endpoint=s.endpoint,
        api_key=s.api_key,
        api_version=s.api_version,
    )
