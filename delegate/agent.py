# delegate/agent.py
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import threading
import logging
import time

from delegate.book import RuleBook
from delegate.custodian import MAX_UINT256, Custodian, InMemoryCustodian
from delegate.errors import DelegateError, SetupFailed, Unauthorized
from delegate.events import RuleCreated, RuleDeleted
from delegate.quotes import QuoteEngine
from delegate.rule import Rule, market_key
from delegate.store import RuleStore

logger = logging.getLogger(__name__)

ADDRESS_ZERO = "0x0000000000000000000000000000000000000000"
DEFAULT_PROTOCOL = "0x0006"

RuleEvent = Union[RuleCreated, RuleDeleted]


def is_empty_address(address: Optional[str]) -> bool:
    return address is None or not str(address).strip() or address == ADDRESS_ZERO


class DelegateConfig:
    """Construction-time wiring for a delegate."""

    def __init__(self, swap_contract: str = "swap", registry: str = "registry",
                 staking_token: str = "AST", owner: Optional[str] = None,
                 trade_wallet: Optional[str] = None,
                 protocol: str = DEFAULT_PROTOCOL, address: str = "delegate"):
        self.swap_contract = swap_contract
        self.registry = registry
        self.staking_token = staking_token
        self.owner = owner
        self.trade_wallet = trade_wallet
        self.protocol = protocol
        self.address = address  # identity the registry pulls staking tokens from


class Delegate:
    """
    Owner-gated front of the rule book and quote engine.

    Mutations are accepted only from the owner. Queries are open to anyone.
    Balance and allowance for max quotes come from the custodian, looked up
    for the trade wallet against the swap contract.
    """

    def __init__(self, config: DelegateConfig, custodian: Custodian, deployer: str,
                 book: Optional[RuleBook] = None):
        if is_empty_address(deployer):
            raise ValueError("Deployer address is required")

        self.config = config
        self.custodian = custodian
        self.book = book if book is not None else RuleBook(RuleStore())
        self.quotes = QuoteEngine(self.book)

        self._owner = deployer if is_empty_address(config.owner) else config.owner
        self._trade_wallet = self._owner if is_empty_address(config.trade_wallet) else config.trade_wallet
        self._owner_lock = threading.Lock()

        # Event handlers - simple synchronous callbacks
        self.event_handlers: List[Callable[[RuleEvent], None]] = []

        self.metrics = {
            "rules_created": 0,
            "rules_deleted": 0,
            "quotes_served": 0,
            "start_time": time.time()
        }
        self.error_counts = defaultdict(int)
        self._metrics_lock = threading.Lock()

        self._approve_registry()
        logger.info(f"Delegate initialized: owner={self._owner} trade_wallet={self._trade_wallet} protocol={config.protocol}")

    def _approve_registry(self) -> None:
        """Let the registry pull the staking token; any refusal aborts construction."""
        try:
            approved = self.custodian.approve(
                self.config.staking_token, self.config.address, self.config.registry, MAX_UINT256
            )
        except Exception as e:
            raise SetupFailed(f"Staking approval failed: {e}") from e
        if not approved:
            raise SetupFailed("Staking approval failed")

    # ---- identity ----

    @property
    def owner(self) -> str:
        with self._owner_lock:
            return self._owner

    @property
    def trade_wallet(self) -> str:
        return self._trade_wallet

    @property
    def swap_contract(self) -> str:
        return self.config.swap_contract

    @property
    def registry(self) -> str:
        return self.config.registry

    @property
    def protocol(self) -> str:
        return self.config.protocol

    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self.owner:
            self._count_error(Unauthorized)
            logger.warning(f"Rejected {action} from {caller}")
            raise Unauthorized(caller, action)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """Hand the delegate to a new owner. Owner-only."""
        self._require_owner(caller, "transfer ownership")
        if is_empty_address(new_owner):
            raise ValueError("New owner must be a non-empty address")
        with self._owner_lock:
            previous, self._owner = self._owner, new_owner
        logger.info(f"Ownership transferred from {previous} to {new_owner}")

    # ---- events ----

    def add_event_handler(self, handler: Callable[[RuleEvent], None]) -> None:
        """Add a rule event handler."""
        self.event_handlers.append(handler)

    def _emit_event(self, event: RuleEvent) -> None:
        """Emit event to all handlers; handler failures never undo the mutation."""
        for handler in self.event_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Rule event handler error: {e}")

    def _count(self, key: str) -> None:
        with self._metrics_lock:
            self.metrics[key] += 1

    def _count_error(self, error_type) -> None:
        with self._metrics_lock:
            self.error_counts[error_type.__name__] += 1

    # ---- mutations ----

    def create_rule(self, caller: str, sender_token: str, signer_token: str,
                    sender_amount, signer_amount) -> int:
        """
        Create a standing rule. Owner-only.

        Returns:
            int: the new rule id
        """
        self._require_owner(caller, "create a rule")
        try:
            rule = self.book.create_rule(sender_token, signer_token, sender_amount, signer_amount)
        except DelegateError as e:
            self._count_error(type(e))
            logger.warning(f"Rule creation rejected: {e}")
            raise

        self._count("rules_created")
        logger.info(f"Rule {rule.id} created: {rule.sender_amount} {rule.sender_token} for {rule.signer_amount} {rule.signer_token}")
        self._emit_event(RuleCreated(
            owner=caller,
            rule_id=rule.id,
            sender_token=rule.sender_token,
            signer_token=rule.signer_token,
            sender_amount=rule.sender_amount,
            signer_amount=rule.signer_amount,
        ))
        return rule.id

    def delete_rule(self, caller: str, rule_id: int) -> None:
        """Delete an active rule. Owner-only."""
        self._require_owner(caller, "delete a rule")
        try:
            rule = self.book.delete_rule(rule_id)
        except DelegateError as e:
            self._count_error(type(e))
            logger.warning(f"Rule deletion rejected: {e}")
            raise

        self._count("rules_deleted")
        logger.info(f"Rule {rule_id} deleted from {rule.sender_token}/{rule.signer_token}")
        self._emit_event(RuleDeleted(
            owner=caller,
            rule_id=rule.id,
            sender_token=rule.sender_token,
            signer_token=rule.signer_token,
        ))

    # ---- reads ----

    def get_rule(self, rule_id: int) -> Rule:
        return self.book.get_rule(rule_id)

    def first_rule_id(self, sender_token: str, signer_token: str) -> int:
        return self.book.first_rule_id(sender_token, signer_token)

    def total_active_rules(self, sender_token: str, signer_token: str) -> int:
        return self.book.total_active_rules(sender_token, signer_token)

    @property
    def rule_id_counter(self) -> int:
        return self.book.rule_id_counter

    def get_signer_side_quote(self, sender_amount, sender_token: str, signer_token: str) -> int:
        quote = self.quotes.get_signer_side_quote(sender_amount, sender_token, signer_token)
        self._count("quotes_served")
        return quote

    def get_sender_side_quote(self, signer_amount, sender_token: str, signer_token: str) -> int:
        quote = self.quotes.get_sender_side_quote(signer_amount, sender_token, signer_token)
        self._count("quotes_served")
        return quote

    def get_max_quote(self, sender_token: str, signer_token: str) -> Tuple[int, int]:
        """
        Largest fill the trade wallet can currently honour.

        Bounded by the wallet's sender_token balance and by what the swap
        contract is allowed to spend from it.
        """
        balance = self.custodian.balance_of(sender_token, self.trade_wallet)
        allowance = self.custodian.allowance(sender_token, self.trade_wallet, self.swap_contract)
        quote = self.quotes.get_max_quote(sender_token, signer_token, balance, allowance)
        self._count("quotes_served")
        return quote

    def get_book_snapshot(self, sender_token: str, signer_token: str) -> Dict[str, Any]:
        """Header, capacity and ordered rules of one market, read under its lock."""
        market = market_key(sender_token, signer_token)
        with self.book.locked(market):
            meta = self.book.get_book_meta(*market)
            rules = self.book.snapshot(*market)

        return {
            "timestamp": time.time(),
            "sender_token": market[0],
            "signer_token": market[1],
            "first_rule_id": meta.first_rule_id,
            "total_active_rules": meta.total_active_rules,
            "capacity": {
                "sender_amount": str(sum(r.sender_amount for r in rules)),
                "signer_amount": str(sum(r.signer_amount for r in rules)),
            },
            "rules": [rule.to_dict() for rule in rules],
        }

    def get_statistics(self) -> Dict[str, Any]:
        """Get delegate-wide statistics."""
        with self._metrics_lock:
            stats = self.metrics.copy()
            errors = dict(self.error_counts)
        stats.update({
            "uptime_seconds": time.time() - stats["start_time"],
            "rule_id_counter": self.rule_id_counter,
            "markets": {
                f"{sender}/{signer}": self.book.total_active_rules(sender, signer)
                for sender, signer in self.book.markets()
            },
            "error_counts": errors,
        })
        return stats

    def reset_statistics(self) -> None:
        """Reset performance metrics."""
        with self._metrics_lock:
            self.metrics = {
                "rules_created": 0,
                "rules_deleted": 0,
                "quotes_served": 0,
                "start_time": time.time()
            }
            self.error_counts.clear()
        logger.info("Statistics reset")


def create_delegate(owner: str, trade_wallet: Optional[str] = None,
                    custodian: Optional[Custodian] = None, **config_kwargs) -> Delegate:
    """Create a delegate deployed by `owner`, backed by an in-memory custodian by default."""
    config = DelegateConfig(owner=owner, trade_wallet=trade_wallet, **config_kwargs)
    return Delegate(config, custodian if custodian is not None else InMemoryCustodian(), deployer=owner)


__all__ = [
    "ADDRESS_ZERO",
    "DEFAULT_PROTOCOL",
    "Delegate",
    "DelegateConfig",
    "create_delegate",
    "is_empty_address",
]
