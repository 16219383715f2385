# delegate/store.py
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional
import threading

from sortedcontainers import SortedDict

from delegate.rule import NO_RULE, Market, Rule


@dataclass
class BookMeta:
    """Per-market book header: head pointer and active rule count."""
    first_rule_id: int = NO_RULE
    total_active_rules: int = 0

    def to_dict(self) -> dict:
        return {
            "first_rule_id": self.first_rule_id,
            "total_active_rules": self.total_active_rules,
        }


class RuleStore:
    """
    Keyed storage for rules and market book headers.

    Pure accessors: ordering of a market's list is the RuleBook's job.
    Book headers are returned as copies; callers write them back with
    put_book() once a splice is complete.

    The internal lock only protects the containers themselves. Rule link
    fields are guarded by the RuleBook's per-market locks.
    """
    def __init__(self):
        # Rules by id; SortedDict keeps listings in issue order
        self._rules: SortedDict[int, Rule] = SortedDict()
        # Book headers by (sender_token, signer_token)
        self._books: SortedDict[Market, BookMeta] = SortedDict()

        self._rule_id_counter: int = 0
        self._lock = threading.RLock()

    @property
    def rule_id_counter(self) -> int:
        """Number of rule ids issued so far."""
        with self._lock:
            return self._rule_id_counter

    def next_id(self) -> int:
        """Atomically increment the global counter and return the new id."""
        with self._lock:
            self._rule_id_counter += 1
            return self._rule_id_counter

    def get(self, rule_id: int) -> Optional[Rule]:
        with self._lock:
            return self._rules.get(rule_id)

    def put(self, rule_id: int, rule: Rule) -> None:
        if rule_id != rule.id:
            raise ValueError(f"Rule {rule.id} stored under mismatched id {rule_id}")
        with self._lock:
            self._rules[rule_id] = rule

    def remove(self, rule_id: int) -> Optional[Rule]:
        with self._lock:
            return self._rules.pop(rule_id, None)

    def get_book(self, market: Market) -> BookMeta:
        with self._lock:
            meta = self._books.get(market)
            return replace(meta) if meta is not None else BookMeta()

    def put_book(self, market: Market, meta: BookMeta) -> None:
        with self._lock:
            self._books[market] = replace(meta)

    def markets(self) -> List[Market]:
        """Markets that have ever held a rule, in sorted order."""
        with self._lock:
            return list(self._books.keys())

    def rules(self) -> Iterator[Rule]:
        """Active rules in id order."""
        with self._lock:
            return iter(list(self._rules.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id) -> bool:
        with self._lock:
            return rule_id in self._rules


__all__ = ["BookMeta", "RuleStore"]
