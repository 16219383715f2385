# delegate/__init__.py
"""
Swap delegate core package.

A delegate holds standing rules (resting limit orders) for one trading
party and prices counter-party requests against them. It never settles a
trade itself:

- Rate-sorted, doubly linked rule books per (sender_token, signer_token) market
- O(1) rule removal by relinking neighbours
- Exact integer quotes in both directions plus a balance/allowance bounded
  maximum quote
- Per-market locking so quotes always see a consistent book
- Owner-gated mutations with synchronous event callbacks

Components:
    - Rule: one resting order and its list links
    - RuleStore: keyed storage for rules, book headers and the id counter
    - RuleBook: ordered insertion and removal per market
    - QuoteEngine: read-only pricing walks
    - Delegate: owner-gated facade wiring everything to a Custodian

Usage:
    from delegate import create_delegate

    delegate = create_delegate(owner="0xowner")
    rule_id = delegate.create_rule("0xowner", "WETH", "DAI", 1000, 200)
    signer_amount = delegate.get_signer_side_quote(500, "WETH", "DAI")
"""

from .errors import DelegateError, InvalidAmount, RuleNotActive, Unauthorized, SetupFailed
from .rule import NO_RULE, Rule, market_key
from .store import BookMeta, RuleStore
from .book import RuleBook
from .quotes import QuoteEngine
from .custodian import MAX_UINT256, Custodian, InMemoryCustodian
from .events import RuleCreated, RuleDeleted
from .agent import (
    ADDRESS_ZERO,
    Delegate,
    DelegateConfig,
    create_delegate,
)

__version__ = "2.0.0"
__all__ = [
    # Errors
    "DelegateError", "InvalidAmount", "RuleNotActive", "Unauthorized", "SetupFailed",

    # Book components
    "NO_RULE", "Rule", "market_key", "BookMeta", "RuleStore", "RuleBook",

    # Pricing
    "QuoteEngine",

    # Collaborators and events
    "MAX_UINT256", "Custodian", "InMemoryCustodian", "RuleCreated", "RuleDeleted",

    # Facade
    "ADDRESS_ZERO", "Delegate", "DelegateConfig", "create_delegate",
]
