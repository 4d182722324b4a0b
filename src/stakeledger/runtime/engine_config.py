# src/stakeledger/runtime/engine_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from stakeledger.ledger.constants import TREASURY_ACCOUNT_ID

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _as_str_tuple(v: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if v is None:
        return tuple(default)
    if isinstance(v, str):
        items = v.split(",")
    elif isinstance(v, (list, tuple)):
        items = list(v)
    else:
        return tuple(default)
    return tuple(s for s in (str(x).strip() for x in items) if s)


@dataclass(frozen=True)
class EngineConfig:
    mode: str  # "dev" | "testnet" | "prod"

    owner: str
    operators: Tuple[str, ...]
    treasury: str
    engine_account: str

    # Asset ids the engine can pair in pools.
    assets: Tuple[str, ...]

    emergency_withdraw_enabled: bool

    api_host: str
    api_port: int

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_engine_config(cfg: EngineConfig) -> None:
    """Fail-fast validation for operator config."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    for name, v in (("owner", cfg.owner), ("treasury", cfg.treasury), ("engine_account", cfg.engine_account)):
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    if cfg.treasury == cfg.engine_account:
        # Penalties paid to the engine's own account would silently turn into reward reserve.
        raise ValueError("treasury must differ from engine_account")

    if not cfg.assets:
        raise ValueError("assets must list at least one asset id")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")


def default_engine_config() -> EngineConfig:
    return EngineConfig(
        # Production-safe defaults: no emergency exits, no docs.
        mode="prod",
        owner="owner",
        operators=(),
        treasury=TREASURY_ACCOUNT_ID,
        engine_account="STAKING_ENGINE",
        assets=("STAKE", "REWARD"),
        emergency_withdraw_enabled=False,
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def read_engine_config_file(path: str) -> EngineConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("engine config must be a JSON object")

    d = default_engine_config()

    cfg = EngineConfig(
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        owner=_as_str(raw.get("owner"), d.owner),
        operators=_as_str_tuple(raw.get("operators"), d.operators),
        treasury=_as_str(raw.get("treasury"), d.treasury),
        engine_account=_as_str(raw.get("engine_account"), d.engine_account),
        assets=_as_str_tuple(raw.get("assets"), d.assets),
        emergency_withdraw_enabled=_as_bool(raw.get("emergency_withdraw_enabled"), d.emergency_withdraw_enabled),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )

    validate_engine_config(cfg)
    return cfg


def load_engine_config(*, config_path: Optional[str] = None) -> EngineConfig:
    p = config_path or os.environ.get("STAKELEDGER_CONFIG_PATH")
    if p:
        return read_engine_config_file(p)

    cfg = default_engine_config()
    validate_engine_config(cfg)
    return cfg


def apply_engine_config_to_env(cfg: EngineConfig) -> None:
    validate_engine_config(cfg)
    os.environ["STAKELEDGER_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["STAKELEDGER_LOG_LEVEL"] = cfg.log_level
    os.environ["STAKELEDGER_API_HOST"] = cfg.api_host
    os.environ["STAKELEDGER_API_PORT"] = str(int(cfg.api_port))
