# delegate/rule.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from delegate.errors import InvalidAmount

# Sentinel rule id meaning "no rule" (list boundary / empty book)
NO_RULE = 0

Market = Tuple[str, str]


def normalize_token(token) -> str:
    """Validate and normalize a token identifier."""
    if not isinstance(token, str) or not token.strip():
        raise ValueError("Token must be a non-empty string")
    return token.strip()


def market_key(sender_token, signer_token) -> Market:
    """Ordered (sender_token, signer_token) pair naming a book."""
    return normalize_token(sender_token), normalize_token(signer_token)


# Amounts are uint256 values; anything wider is refused before conversion
MAX_AMOUNT = 2 ** 256 - 1
MAX_AMOUNT_EXPONENT = len(str(MAX_AMOUNT)) - 1


def _to_int(value) -> Optional[int]:
    """
    Convert an integral int/str/Decimal to int, or return None.

    Bools, floats and fractional values are refused so that no amount ever
    passes through binary floating point. Magnitudes above MAX_AMOUNT are
    refused too, checked on the exponent so that inputs like "1e1000000"
    never get expanded into a full integer.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if abs(value) <= MAX_AMOUNT else None
    try:
        if isinstance(value, str):
            value = Decimal(value.strip())
        if not isinstance(value, Decimal) or not value.is_finite():
            return None
        if value.adjusted() > MAX_AMOUNT_EXPONENT:
            return None
        if value != value.to_integral_value():
            return None
        amount = int(value)
    except ArithmeticError:
        return None
    return amount if abs(amount) <= MAX_AMOUNT else None


def coerce_amount(value) -> Optional[int]:
    """Return value as a positive int, or None if it is not one."""
    amount = _to_int(value)
    if amount is None or amount <= 0:
        return None
    return amount


def coerce_quote_amount(value, name: str) -> int:
    """Convert a quote input to a non-negative int, raising InvalidAmount otherwise."""
    amount = _to_int(value)
    if amount is None or amount < 0:
        raise InvalidAmount([name], "quotes accept an integer from zero up to 2**256 - 1")
    return amount


def validate_amounts(sender_amount, signer_amount) -> Tuple[int, int]:
    """
    Validate both rule amounts, reporting every violation together.

    Returns:
        Tuple[int, int]: (sender_amount, signer_amount) as ints
    """
    sender = coerce_amount(sender_amount)
    signer = coerce_amount(signer_amount)

    bad: List[str] = []
    if sender is None:
        bad.append("sender_amount")
    if signer is None:
        bad.append("signer_amount")
    if bad:
        raise InvalidAmount(bad)

    return sender, signer


@dataclass
class Rule:
    """
    A resting order: sender_amount of sender_token offered for
    signer_amount of signer_token.

    Fields:
        id: unique rule id, never reused
        sender_token: asset the delegate's trading party gives
        signer_token: asset the delegate's trading party receives
        sender_amount: int, > 0
        signer_amount: int, > 0
        prev_rule_id: neighbour towards the head, NO_RULE at the head
        next_rule_id: neighbour towards the tail, NO_RULE at the tail
    """
    id: int
    sender_token: str
    signer_token: str
    sender_amount: int
    signer_amount: int
    prev_rule_id: int = field(default=NO_RULE)
    next_rule_id: int = field(default=NO_RULE)

    def __post_init__(self):
        if not isinstance(self.id, int) or self.id <= NO_RULE:
            raise ValueError("Rule id must be a positive integer")
        self.sender_token, self.signer_token = market_key(self.sender_token, self.signer_token)
        self.sender_amount, self.signer_amount = validate_amounts(self.sender_amount, self.signer_amount)

    @property
    def market(self) -> Market:
        return self.sender_token, self.signer_token

    def rate_above(self, other: "Rule") -> bool:
        """
        True if this rule offers strictly more sender_token per signer_token.

        Compared by cross-multiplication; never through floats.
        """
        return self.sender_amount * other.signer_amount > other.sender_amount * self.signer_amount

    def rate_below(self, other: "Rule") -> bool:
        return self.sender_amount * other.signer_amount < other.sender_amount * self.signer_amount

    def to_dict(self) -> dict:
        """Convert rule to dictionary for serialization."""
        return {
            "rule_id": self.id,
            "sender_token": self.sender_token,
            "signer_token": self.signer_token,
            "sender_amount": str(self.sender_amount),
            "signer_amount": str(self.signer_amount),
            "prev_rule_id": self.prev_rule_id,
            "next_rule_id": self.next_rule_id,
        }

    def __repr__(self) -> str:
        return (f"<Rule {self.id} {self.sender_amount} {self.sender_token} "
                f"for {self.signer_amount} {self.signer_token} "
                f"prev={self.prev_rule_id} next={self.next_rule_id}>")


__all__ = [
    "NO_RULE",
    "MAX_AMOUNT",
    "Market",
    "Rule",
    "market_key",
    "normalize_token",
    "coerce_amount",
    "coerce_quote_amount",
    "validate_amounts",
]
