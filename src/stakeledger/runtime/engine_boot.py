# src/stakeledger/runtime/engine_boot.py

from __future__ import annotations

from typing import Mapping, Optional

from stakeledger.runtime.auth import Authorizer
from stakeledger.runtime.engine import StakingEngine
from stakeledger.runtime.engine_config import EngineConfig, load_engine_config
from stakeledger.runtime.events import EventSink
from stakeledger.runtime.token_ledger import InMemoryToken, TokenLedger


def in_memory_assets(cfg: EngineConfig) -> Mapping[str, TokenLedger]:
    """One fresh InMemoryToken per configured asset, bound to the engine account."""
    return {a: InMemoryToken(a).client(cfg.engine_account) for a in cfg.assets}


def build_engine(
    cfg: Optional[EngineConfig] = None,
    *,
    assets: Optional[Mapping[str, TokenLedger]] = None,
    events: Optional[EventSink] = None,
) -> StakingEngine:
    """
    Build a StakingEngine from an explicit config or, if omitted, from
    STAKELEDGER_CONFIG_PATH / defaults.

    Real deployments pass their own token ledgers via `assets`; without them
    the engine is wired to in-memory tokens (local runs and tests).
    """
    c = cfg or load_engine_config()
    return StakingEngine(
        assets=assets if assets is not None else in_memory_assets(c),
        engine_account=c.engine_account,
        authorizer=Authorizer.build(c.owner, c.operators),
        treasury=c.treasury,
        events=events,
        emergency_withdraw_enabled=c.emergency_withdraw_enabled,
    )
