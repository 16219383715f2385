# delegate/custodian.py
"""
Token custody collaborator.

The delegate never moves tokens. It only needs three answers from whoever
holds them: how much the trading party has, how much the swap contract may
spend on its behalf, and whether an approval was granted.
"""
from collections import defaultdict
from typing import Dict, Tuple
import threading
import logging

from delegate.rule import MAX_AMOUNT

logger = logging.getLogger(__name__)

MAX_UINT256 = MAX_AMOUNT


class Custodian:
    """Interface for balance/allowance lookups and approvals."""

    def balance_of(self, token: str, wallet: str) -> int:
        raise NotImplementedError

    def allowance(self, token: str, owner: str, spender: str) -> int:
        raise NotImplementedError

    def approve(self, token: str, owner: str, spender: str, amount: int) -> bool:
        raise NotImplementedError


class InMemoryCustodian(Custodian):
    """
    Thread-safe in-process ledger of balances and allowances.

    Used for local runs and tests. Tokens listed in `rejected_tokens` refuse
    every approval, which mimics a token contract returning false.
    """
    def __init__(self, rejected_tokens=()):
        self.balances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str, str], int] = defaultdict(int)
        self.rejected_tokens = set(rejected_tokens)
        self._lock = threading.RLock()

    def set_balance(self, token: str, wallet: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Balance must be non-negative")
        with self._lock:
            self.balances[(token, wallet)] = amount

    def balance_of(self, token: str, wallet: str) -> int:
        with self._lock:
            return self.balances.get((token, wallet), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        with self._lock:
            return self.allowances.get((token, owner, spender), 0)

    def approve(self, token: str, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("Allowance must be non-negative")
        with self._lock:
            if token in self.rejected_tokens:
                logger.warning(f"Approval of {token} for {spender} rejected")
                return False
            self.allowances[(token, owner, spender)] = amount
            return True


__all__ = ["MAX_UINT256", "Custodian", "InMemoryCustodian"]
