# delegate/quotes.py
from typing import List, Tuple
import logging

from delegate.book import RuleBook
from delegate.rule import Rule, coerce_quote_amount

logger = logging.getLogger(__name__)


class QuoteEngine:
    """
    Read-only pricing walks over a RuleBook market.

    Each query copies the market's rules under the market lock and prices
    against that snapshot, so a quote never straddles a concurrent insert
    or delete. All arithmetic is integer; partial rules round down.
    """
    def __init__(self, book: RuleBook):
        self.book = book

    def _rules(self, sender_token: str, signer_token: str) -> List[Rule]:
        return self.book.snapshot(sender_token, signer_token)

    def capacity(self, sender_token: str, signer_token: str) -> Tuple[int, int]:
        """Total (sender_amount, signer_amount) resting in the market."""
        rules = self._rules(sender_token, signer_token)
        return (sum(r.sender_amount for r in rules),
                sum(r.signer_amount for r in rules))

    def get_signer_side_quote(self, sender_amount, sender_token: str, signer_token: str) -> int:
        """
        Signer tokens required to receive `sender_amount` sender tokens.

        Returns 0 when the book is empty or cannot supply the full amount;
        requests above capacity are refused rather than clamped.
        """
        wanted = coerce_quote_amount(sender_amount, "sender_amount")
        rules = self._rules(sender_token, signer_token)

        if wanted == 0 or wanted > sum(r.sender_amount for r in rules):
            return 0

        remaining = wanted
        signer_total = 0
        for rule in rules:
            if remaining > rule.sender_amount:
                signer_total += rule.signer_amount
                remaining -= rule.sender_amount
            else:
                signer_total += remaining * rule.signer_amount // rule.sender_amount
                break

        logger.debug(f"Signer-side quote {wanted} {sender_token}/{signer_token} -> {signer_total}")
        return signer_total

    def get_sender_side_quote(self, signer_amount, sender_token: str, signer_token: str) -> int:
        """
        Sender tokens obtainable for `signer_amount` signer tokens.

        Requests above the book's signer capacity are clamped to the whole
        book's sender_amount.
        """
        offered = coerce_quote_amount(signer_amount, "signer_amount")
        rules = self._rules(sender_token, signer_token)

        if offered > sum(r.signer_amount for r in rules):
            return sum(r.sender_amount for r in rules)

        remaining = offered
        sender_total = 0
        for rule in rules:
            if remaining == 0:
                break
            if remaining > rule.signer_amount:
                sender_total += rule.sender_amount
                remaining -= rule.signer_amount
            else:
                sender_total += remaining * rule.sender_amount // rule.signer_amount
                break

        logger.debug(f"Sender-side quote {offered} {sender_token}/{signer_token} -> {sender_total}")
        return sender_total

    def get_max_quote(self, sender_token: str, signer_token: str,
                      available_balance, available_allowance) -> Tuple[int, int]:
        """
        Largest (sender_amount, signer_amount) the book can fill given the
        trading party's balance and allowance of sender_token.
        """
        balance = coerce_quote_amount(available_balance, "available_balance")
        allowance = coerce_quote_amount(available_allowance, "available_allowance")
        cap = min(balance, allowance)
        rules = self._rules(sender_token, signer_token)

        sender_total = 0
        signer_total = 0
        for rule in rules:
            if sender_total + rule.sender_amount > cap:
                partial = cap - sender_total
                signer_total += partial * rule.signer_amount // rule.sender_amount
                sender_total = cap
                break
            sender_total += rule.sender_amount
            signer_total += rule.signer_amount

        logger.debug(f"Max quote {sender_token}/{signer_token} cap={cap} -> ({sender_total}, {signer_total})")
        return sender_total, signer_total


__all__ = ["QuoteEngine"]
