# delegate/book.py
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Tuple
import threading
import logging

from delegate.errors import RuleNotActive
from delegate.rule import NO_RULE, Market, Rule, market_key, validate_amounts
from delegate.store import BookMeta, RuleStore

logger = logging.getLogger(__name__)


class RuleBook:
    """
    Rate-sorted rule lists, one per (sender_token, signer_token) market.

    Each market is a doubly linked list threaded through the RuleStore by
    rule id, best rate (most sender_token per signer_token) first. Equal
    rates keep arrival order. Every mutation and every read of a market
    happens under that market's lock, so no caller ever sees a half-spliced
    list; different markets never contend.
    """
    def __init__(self, store: Optional[RuleStore] = None):
        self.store: RuleStore = store if store is not None else RuleStore()

        # One lock per market, created on first use
        self._market_locks: Dict[Market, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def locked(self, market: Market) -> threading.RLock:
        """Return the market's lock, for use as `with book.locked(market):`."""
        with self._locks_guard:
            return self._market_locks[market]

    # ---- traversal (caller holds the market lock) ----

    def walk(self, market: Market) -> Iterator[Rule]:
        """Yield the market's rules from head to tail."""
        rule_id = self.store.get_book(market).first_rule_id
        while rule_id != NO_RULE:
            rule = self.store.get(rule_id)
            if rule is None:
                raise RuntimeError(f"Dangling link to rule {rule_id} in market {market}")
            yield rule
            rule_id = rule.next_rule_id

    def _insertion_point(self, market: Market, new_rule: Rule) -> Tuple[Optional[Rule], Optional[Rule]]:
        """
        Neighbours for a new rule: (previous, successor).

        The successor is the first rule whose rate is strictly below the new
        rule's; rules of equal rate stay ahead of it.
        """
        previous = None
        for existing in self.walk(market):
            if existing.rate_below(new_rule):
                return previous, existing
            previous = existing
        return previous, None

    def _lookup(self, rule_id) -> Optional[Rule]:
        if not isinstance(rule_id, int) or isinstance(rule_id, bool):
            return None
        return self.store.get(rule_id)

    # ---- mutations ----

    def create_rule(self, sender_token: str, signer_token: str,
                    sender_amount, signer_amount) -> Rule:
        """
        Insert a new rule in rate order.

        Both amounts are validated before an id is allocated, so a rejected
        rule leaves the counter and the book untouched.

        Returns:
            Rule: a copy of the stored rule with its final links
        """
        market = market_key(sender_token, signer_token)
        sender_amount, signer_amount = validate_amounts(sender_amount, signer_amount)

        with self.locked(market):
            rule = Rule(
                id=self.store.next_id(),
                sender_token=market[0],
                signer_token=market[1],
                sender_amount=sender_amount,
                signer_amount=signer_amount,
            )
            meta = self.store.get_book(market)
            previous, successor = self._insertion_point(market, rule)

            if previous is None:
                meta.first_rule_id = rule.id
            else:
                rule.prev_rule_id = previous.id
                previous.next_rule_id = rule.id

            if successor is not None:
                rule.next_rule_id = successor.id
                successor.prev_rule_id = rule.id

            meta.total_active_rules += 1
            self.store.put(rule.id, rule)
            self.store.put_book(market, meta)

            logger.debug(f"Inserted rule {rule.id} into {market}: prev={rule.prev_rule_id} next={rule.next_rule_id}")
            return replace(rule)

    def delete_rule(self, rule_id: int) -> Rule:
        """
        Unlink and remove an active rule in O(1).

        Raises:
            RuleNotActive: if the id was never issued or is already deleted
        """
        rule = self._lookup(rule_id)
        if rule is None:
            raise RuleNotActive(rule_id)

        market = rule.market
        with self.locked(market):
            # A concurrent delete may have won the race for this id
            rule = self.store.get(rule_id)
            if rule is None:
                raise RuleNotActive(rule_id)

            meta = self.store.get_book(market)

            if rule.prev_rule_id == NO_RULE:
                meta.first_rule_id = rule.next_rule_id
            else:
                self.store.get(rule.prev_rule_id).next_rule_id = rule.next_rule_id

            if rule.next_rule_id != NO_RULE:
                self.store.get(rule.next_rule_id).prev_rule_id = rule.prev_rule_id

            meta.total_active_rules -= 1
            self.store.put_book(market, meta)
            self.store.remove(rule_id)

            logger.debug(f"Removed rule {rule_id} from {market}")
            return replace(rule)

    # ---- introspection ----

    def get_rule(self, rule_id: int) -> Rule:
        """Return a copy of an active rule."""
        rule = self._lookup(rule_id)
        if rule is None:
            raise RuleNotActive(rule_id)
        with self.locked(rule.market):
            current = self.store.get(rule_id)
            if current is None:
                raise RuleNotActive(rule_id)
            return replace(current)

    def get_book_meta(self, sender_token: str, signer_token: str) -> BookMeta:
        market = market_key(sender_token, signer_token)
        with self.locked(market):
            return self.store.get_book(market)

    def first_rule_id(self, sender_token: str, signer_token: str) -> int:
        return self.get_book_meta(sender_token, signer_token).first_rule_id

    def total_active_rules(self, sender_token: str, signer_token: str) -> int:
        return self.get_book_meta(sender_token, signer_token).total_active_rules

    def snapshot(self, sender_token: str, signer_token: str) -> List[Rule]:
        """Copies of the market's rules, head to tail, taken under its lock."""
        market = market_key(sender_token, signer_token)
        with self.locked(market):
            return [replace(rule) for rule in self.walk(market)]

    def ids(self, sender_token: str, signer_token: str) -> List[int]:
        return [rule.id for rule in self.snapshot(sender_token, signer_token)]

    def markets(self) -> List[Market]:
        return self.store.markets()

    @property
    def rule_id_counter(self) -> int:
        return self.store.rule_id_counter


__all__ = ["RuleBook"]
