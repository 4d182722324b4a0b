# src/stakeledger/runtime/transfers.py
from __future__ import annotations

"""Transfer requests built after an operation's effects are final.

An engine operation mutates pools/entries first, then describes the token
movements it needs as a TransferPlan and executes it last:

  1) preflight: the engine must hold enough of every outbound asset
     (counting inbound pulls of the same asset in this plan)
  2) pulls (user -> engine) in order
  3) pushes (engine -> recipient) in order

If any step fails, pulls that already went through are refunded and the
error is re-raised; the engine then restores its own state. A token call that
raises after moving funds counts as completed for that refund.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Mapping, Optional

from stakeledger.runtime.errors import TransferFailed
from stakeledger.runtime.runtime_logging import log_event
from stakeledger.runtime.token_ledger import TokenLedger, TransferResult

Direction = Literal["pull", "push"]

_logger = logging.getLogger("stakeledger.transfers")


@dataclass(frozen=True, slots=True)
class TransferRequest:
    direction: Direction
    asset: str
    counterparty: str
    amount: int
    purpose: str

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "asset": self.asset,
            "counterparty": self.counterparty,
            "amount": self.amount,
            "purpose": self.purpose,
        }


@dataclass
class TransferPlan:
    requests: List[TransferRequest] = field(default_factory=list)

    def pull(self, asset: str, owner: str, amount: int, purpose: str) -> None:
        if int(amount) > 0:
            self.requests.append(TransferRequest("pull", asset, owner, int(amount), purpose))

    def push(self, asset: str, to: str, amount: int, purpose: str) -> None:
        if int(amount) > 0:
            self.requests.append(TransferRequest("push", asset, to, int(amount), purpose))

    def planned_out(self, asset: str) -> int:
        return sum(r.amount for r in self.requests if r.direction == "push" and r.asset == asset)

    def _totals(self, direction: Direction) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for r in self.requests:
            if r.direction == direction:
                out[r.asset] = out.get(r.asset, 0) + r.amount
        return out

    def preflight(self, ledgers: Mapping[str, TokenLedger], engine_account: str) -> None:
        pulls = self._totals("pull")
        for asset, need in sorted(self._totals("push").items()):
            have = int(ledgers[asset].balance_of(engine_account)) + pulls.get(asset, 0)
            if have < need:
                raise TransferFailed(
                    "engine_balance_insufficient",
                    {"asset": asset, "need": need, "have": have},
                )

    def execute(self, ledgers: Mapping[str, TokenLedger], engine_account: str) -> List[TransferRequest]:
        """Run the plan. Returns the executed requests in order."""
        self.preflight(ledgers, engine_account)

        ordered = [r for r in self.requests if r.direction == "pull"] + [
            r for r in self.requests if r.direction == "push"
        ]
        done: List[TransferRequest] = []
        in_flight: Optional[TransferRequest] = None
        balance_before = 0
        try:
            for req in ordered:
                ledger = ledgers[req.asset]
                in_flight, balance_before = req, int(ledger.balance_of(engine_account))
                if req.direction == "pull":
                    res = ledger.transfer_from(req.counterparty, engine_account, req.amount)
                else:
                    res = ledger.transfer(req.counterparty, req.amount)
                in_flight = None
                if not isinstance(res, TransferResult) or not res.ok:
                    raise TransferFailed(
                        getattr(res, "reason", "") or "token_transfer_rejected",
                        {"request": req.to_dict(), "completed": [d.to_dict() for d in done]},
                    )
                done.append(req)
        except BaseException:
            if in_flight is not None and self._landed(ledgers, engine_account, in_flight, balance_before):
                # The token raised after moving funds; treat the request as completed.
                done.append(in_flight)
            pushed = [d.to_dict() for d in done if d.direction == "push"]
            if pushed:
                # Pushes cannot be recalled; operators must reconcile these by hand.
                log_event(_logger, "partial_interaction", level=logging.ERROR, pushed=pushed)
            self._refund_pulls(ledgers, done)
            raise
        return done

    @staticmethod
    def _landed(
        ledgers: Mapping[str, TokenLedger], engine_account: str, req: TransferRequest, balance_before: int
    ) -> bool:
        """Whether an interrupted request moved the engine balance by its amount."""
        delta = int(ledgers[req.asset].balance_of(engine_account)) - balance_before
        return delta == (req.amount if req.direction == "pull" else -req.amount)

    @staticmethod
    def _refund_pulls(ledgers: Mapping[str, TokenLedger], done: List[TransferRequest]) -> None:
        for req in reversed(done):
            if req.direction != "pull":
                continue
            res = ledgers[req.asset].transfer(req.counterparty, req.amount)
            if not res.ok:
                raise TransferFailed("refund_failed", {"request": req.to_dict(), "reason": res.reason})


__all__ = ["TransferRequest", "TransferPlan", "Direction"]
