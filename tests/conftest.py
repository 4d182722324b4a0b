from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "stakeledger" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from stakeledger.ledger.types import PoolConfig  # noqa: E402
from stakeledger.runtime import metrics  # noqa: E402
from stakeledger.runtime.auth import Authorizer  # noqa: E402
from stakeledger.runtime.engine import StakingEngine  # noqa: E402
from stakeledger.runtime.events import RecordingEventSink  # noqa: E402
from stakeledger.runtime.token_ledger import InMemoryToken  # noqa: E402

ENGINE = "ENGINE"
OWNER = "owner"
OPERATOR = "ops"
TREASURY = "treasury"


class FakeClock:
    """Deterministic unix-seconds clock."""

    def __init__(self, t: int = 1_700_000_000) -> None:
        self.t = int(t)

    def __call__(self) -> int:
        return self.t

    def advance(self, dt: int) -> int:
        self.t += int(dt)
        return self.t


class Harness:
    """Engine wired to in-memory STAKE / REWARD tokens and a recording sink."""

    ENGINE = ENGINE
    OWNER = OWNER
    OPERATOR = OPERATOR
    TREASURY = TREASURY

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.stake_token = InMemoryToken("STAKE")
        self.reward_token = InMemoryToken("REWARD")
        self.sink = RecordingEventSink()
        self.engine = StakingEngine(
            assets={
                "STAKE": self.stake_token.client(ENGINE),
                "REWARD": self.reward_token.client(ENGINE),
            },
            engine_account=ENGINE,
            authorizer=Authorizer.build(OWNER, [OPERATOR]),
            treasury=TREASURY,
            clock=clock,
            events=self.sink,
        )

    def fund_user(self, user: str, amount: int, token: InMemoryToken | None = None) -> None:
        tok = token or self.stake_token
        tok.mint(user, amount)
        tok.approve(user, ENGINE, tok.allowance(user, ENGINE) + amount)

    def fund_rewards(self, amount: int, token: InMemoryToken | None = None) -> None:
        (token or self.reward_token).mint(ENGINE, amount)

    def add_pool(self, **kw) -> int:
        cfg = PoolConfig(
            staking_asset=kw.pop("staking_asset", "STAKE"),
            reward_asset=kw.pop("reward_asset", "REWARD"),
            reward_rate=kw.pop("reward_rate", 10),
            **kw,
        )
        return self.engine.add_pool(OPERATOR, cfg)["pool_id"]


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def h(clock: FakeClock) -> Harness:
    return Harness(clock)
