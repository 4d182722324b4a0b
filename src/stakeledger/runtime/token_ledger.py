# src/stakeledger/runtime/token_ledger.py
from __future__ import annotations

"""Token ledger capability consumed by the staking engine.

The engine never moves balances itself. It talks to one TokenLedger per asset,
already bound to the engine's own account:

  - transfer(to, amount):            engine -> to
  - transfer_from(owner, to, amount): owner -> to, spending owner's allowance
  - balance_of(account)

Failures come back as TransferResult(ok=False); implementations may also call
back into the engine while a transfer is in flight (receiver hooks), so the
engine must not rely on them for reentrancy safety. A transfer whose hook
raises is reverted before the error propagates.

InMemoryToken / TokenClient are the reference implementation used by tests and
the local boot path.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Set, Tuple


@dataclass(frozen=True, slots=True)
class TransferResult:
    ok: bool
    reason: str = ""

    @staticmethod
    def success() -> "TransferResult":
        return TransferResult(True, "")

    @staticmethod
    def failure(reason: str) -> "TransferResult":
        return TransferResult(False, str(reason or "transfer_failed"))


class TokenLedger(Protocol):
    def transfer(self, to: str, amount: int) -> TransferResult: ...

    def transfer_from(self, owner: str, to: str, amount: int) -> TransferResult: ...

    def balance_of(self, account: str) -> int: ...


TransferHook = Callable[[str, str, int], None]


class InMemoryToken:
    """Simple fungible token: balances + allowances, no fees, no decimals."""

    def __init__(self, symbol: str) -> None:
        self.symbol = str(symbol)
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._frozen: Set[str] = set()
        # Called after a successful move as (sender, to, amount). Lets tests
        # model receiver callbacks that re-enter the engine.
        self.on_transfer: Optional[TransferHook] = None

    def mint(self, account: str, amount: int) -> None:
        if int(amount) < 0:
            raise ValueError("mint amount must be >= 0")
        self._balances[account] = self._balances.get(account, 0) + int(amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if int(amount) < 0:
            raise ValueError("allowance must be >= 0")
        self._allowances[(owner, spender)] = int(amount)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def freeze(self, account: str) -> None:
        """Reject every transfer to or from `account` (failure injection)."""
        self._frozen.add(account)

    def unfreeze(self, account: str) -> None:
        self._frozen.discard(account)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def move(self, sender: str, to: str, amount: int) -> TransferResult:
        amt = int(amount)
        if amt < 0:
            return TransferResult.failure("negative_amount")
        if not to:
            return TransferResult.failure("missing_recipient")
        if sender in self._frozen or to in self._frozen:
            return TransferResult.failure("account_frozen")
        have = self._balances.get(sender, 0)
        if have < amt:
            return TransferResult.failure("insufficient_balance")
        saved = (dict(self._balances), dict(self._allowances))
        self._balances[sender] = have - amt
        self._balances[to] = self._balances.get(to, 0) + amt
        if self.on_transfer is not None:
            try:
                self.on_transfer(sender, to, amt)
            except BaseException:
                # A failing receiver hook reverts the transfer and anything the hook did.
                self._balances, self._allowances = saved
                raise
        return TransferResult.success()

    def spend(self, spender: str, owner: str, to: str, amount: int) -> TransferResult:
        amt = int(amount)
        allowed = self.allowance(owner, spender)
        if allowed < amt:
            return TransferResult.failure("insufficient_allowance")
        res = self.move(owner, to, amt)
        if res.ok:
            self._allowances[(owner, spender)] = allowed - amt
        return res

    def client(self, holder: str) -> "TokenClient":
        return TokenClient(self, holder)


class TokenClient:
    """TokenLedger view of an InMemoryToken bound to one holder account."""

    def __init__(self, token: InMemoryToken, holder: str) -> None:
        self.token = token
        self.holder = str(holder)

    def transfer(self, to: str, amount: int) -> TransferResult:
        return self.token.move(self.holder, to, amount)

    def transfer_from(self, owner: str, to: str, amount: int) -> TransferResult:
        return self.token.spend(self.holder, owner, to, amount)

    def balance_of(self, account: str) -> int:
        return self.token.balance_of(account)


__all__ = ["TransferResult", "TokenLedger", "InMemoryToken", "TokenClient", "TransferHook"]
