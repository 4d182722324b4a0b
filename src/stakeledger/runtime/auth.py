# src/stakeledger/runtime/auth.py
from __future__ import annotations

"""Single capability-check component for admin/operator actions.

Roles:
  - owner:    treasury, emergency flag, pause/unpause, operator set
  - operator: add_pool, update_rate, set_active (the owner is always an operator)

Checks return a typed AuthResult; callers decide to raise via .require().
"""

from dataclasses import dataclass, field
from typing import Iterable, Literal, Set

from stakeledger.runtime.errors import InvalidConfig, Unauthorized

Role = Literal["owner", "operator"]


@dataclass(frozen=True, slots=True)
class AuthResult:
    allowed: bool
    caller: str
    role: str
    reason: str = ""

    def require(self) -> None:
        if not self.allowed:
            raise Unauthorized(self.reason or "caller_not_authorized", {"caller": self.caller, "role": self.role})


@dataclass
class Authorizer:
    owner: str
    operators: Set[str] = field(default_factory=set)

    @classmethod
    def build(cls, owner: str, operators: Iterable[str] = ()) -> "Authorizer":
        ops = {str(o).strip() for o in operators if str(o).strip()}
        return cls(owner=str(owner).strip(), operators=ops)

    def is_owner(self, caller: str) -> bool:
        c = str(caller or "").strip()
        return bool(c) and c == self.owner

    def is_operator(self, caller: str) -> bool:
        c = str(caller or "").strip()
        return self.is_owner(c) or c in self.operators

    def check(self, caller: str, role: Role) -> AuthResult:
        c = str(caller or "").strip()
        if role == "owner":
            ok = self.is_owner(c)
            return AuthResult(ok, c, role, "" if ok else "owner_required")
        if role == "operator":
            ok = self.is_operator(c)
            return AuthResult(ok, c, role, "" if ok else "operator_required")
        return AuthResult(False, c, str(role), "unknown_role")

    def set_operator(self, account: str, enabled: bool) -> None:
        a = str(account or "").strip()
        if not a:
            raise InvalidConfig("operator_account_required", {"account": account})
        if enabled:
            self.operators.add(a)
        else:
            self.operators.discard(a)


__all__ = ["AuthResult", "Authorizer", "Role"]
