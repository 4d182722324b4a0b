from __future__ import annotations

"""In-process engine metrics.

Series are keyed by name plus a small label set, e.g.

    operations_total{op="stake",outcome="ok"}
    pool_total_staked{pool_id="0"}

Only integers are recorded. Exposed as Prometheus text by the API when
STAKELEDGER_METRICS_ENABLED is on.
"""

import os
import threading
import time
from typing import Dict, Tuple

Labels = Tuple[Tuple[str, str], ...]
_Key = Tuple[str, Labels]

_lock = threading.Lock()
_counters: Dict[_Key, int] = {}
_gauges: Dict[_Key, int] = {}
_started_ms = int(time.time() * 1000)

_COUNTER_HELP = {
    "operations_total": "Engine operations by outcome (ok, failed, reentrant_rejected)",
    "rewards_paid_total": "Reward units paid out, by pool",
    "rewards_compounded_total": "Reward units re-staked by compound, by pool",
    "rewards_forfeited_total": "Reward units forfeited by shortfall or emergency exit, by pool",
    "penalties_total": "Early-withdrawal penalty units sent to the treasury, by pool",
    "event_sink_errors_total": "Committed events the sink failed to accept",
}


def metrics_enabled() -> bool:
    v = (os.environ.get("STAKELEDGER_METRICS_ENABLED") or "").strip().lower()
    if not v:
        return False
    return v in {"1", "true", "yes", "y", "on"}


def _key(name: str, labels: Dict[str, object]) -> _Key:
    return str(name).strip(), tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def inc_counter(name: str, value: int = 1, **labels: object) -> None:
    k = _key(name, labels)
    if not k[0]:
        return
    with _lock:
        _counters[k] = _counters.get(k, 0) + int(value)


def set_gauge(name: str, value: int, **labels: object) -> None:
    k = _key(name, labels)
    if not k[0]:
        return
    with _lock:
        _gauges[k] = int(value)


def counter_value(name: str, **labels: object) -> int:
    with _lock:
        return _counters.get(_key(name, labels), 0)


def gauge_value(name: str, **labels: object) -> int:
    with _lock:
        return _gauges.get(_key(name, labels), 0)


def record_operation(op: str, outcome: str) -> None:
    inc_counter("operations_total", op=op, outcome=outcome)


def record_pool(pool_id: int, *, total_staked: int, reward_rate: int, active: bool) -> None:
    set_gauge("pool_total_staked", total_staked, pool_id=pool_id)
    set_gauge("pool_reward_rate", reward_rate, pool_id=pool_id)
    set_gauge("pool_active", int(bool(active)), pool_id=pool_id)


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def _series(key: _Key) -> str:
    name, labels = key
    if not labels:
        return name
    body = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{body}}}"


def format_prometheus(prefix: str = "stakeledger_") -> str:
    """Prometheus exposition text with one TYPE line per metric family."""
    pre = str(prefix or "").strip() or "stakeledger_"
    with _lock:
        counters = sorted(_counters.items())
        gauges = sorted(_gauges.items())

    lines: list[str] = [
        f"# TYPE {pre}uptime_ms gauge",
        f"{pre}uptime_ms {int(time.time() * 1000) - int(_started_ms)}",
    ]
    for kind, series in (("counter", counters), ("gauge", gauges)):
        family = None
        for key, v in series:
            if key[0] != family:
                family = key[0]
                if family in _COUNTER_HELP:
                    lines.append(f"# HELP {pre}{family} {_COUNTER_HELP[family]}")
                lines.append(f"# TYPE {pre}{family} {kind}")
            lines.append(f"{pre}{_series(key)} {int(v)}")

    return "\n".join(lines) + "\n"
