# delegate/events.py
from dataclasses import dataclass, field
from typing import Tuple
import time


@dataclass(frozen=True)
class RuleCreated:
    """Notification that a rule was inserted into a market's book."""
    owner: str
    rule_id: int
    sender_token: str
    signer_token: str
    sender_amount: int
    signer_amount: int
    timestamp: float = field(default_factory=time.time, compare=False)

    event_type = "create_rule"

    @property
    def market(self) -> Tuple[str, str]:
        return self.sender_token, self.signer_token

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "owner": self.owner,
            "rule_id": self.rule_id,
            "sender_token": self.sender_token,
            "signer_token": self.signer_token,
            "sender_amount": str(self.sender_amount),
            "signer_amount": str(self.signer_amount),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RuleDeleted:
    """Notification that a rule was unlinked and removed."""
    owner: str
    rule_id: int
    sender_token: str
    signer_token: str
    timestamp: float = field(default_factory=time.time, compare=False)

    event_type = "delete_rule"

    @property
    def market(self) -> Tuple[str, str]:
        return self.sender_token, self.signer_token

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "owner": self.owner,
            "rule_id": self.rule_id,
            "sender_token": self.sender_token,
            "signer_token": self.signer_token,
            "timestamp": self.timestamp,
        }


__all__ = ["RuleCreated", "RuleDeleted"]
