# delegate/errors.py
"""
Exception types shared by the rule store, the rule book, the quote engine
and the delegate facade.
"""
from typing import Iterable, Optional


class DelegateError(Exception):
    """Base exception for delegate errors."""
    pass


class InvalidAmount(DelegateError):
    """Raised when a rule or quote is given a zero, negative or non-integral amount.

    Attributes:
        fields: names of every offending amount field, in argument order
    """

    def __init__(self, fields: Iterable[str], detail: Optional[str] = None):
        self.fields = list(fields)
        message = f"Amounts must be positive integers: {', '.join(self.fields)}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class RuleNotActive(DelegateError):
    """Raised when a rule id was never issued or has already been deleted."""

    def __init__(self, rule_id):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} is not active")


class Unauthorized(DelegateError):
    """Raised when a mutating call does not come from the owner."""

    def __init__(self, caller, action: str = "mutate the rule book"):
        self.caller = caller
        super().__init__(f"Caller {caller!r} is not allowed to {action}")


class SetupFailed(DelegateError):
    """Raised when the delegate cannot obtain its staking approval at construction."""
    pass


__all__ = [
    "DelegateError",
    "InvalidAmount",
    "RuleNotActive",
    "Unauthorized",
    "SetupFailed",
]
