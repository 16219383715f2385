import pytest

from delegate import InMemoryCustodian, QuoteEngine, RuleBook, create_delegate

OWNER = "0xowner"
TRADE_WALLET = "0xtradewallet"
NOT_OWNER = "0xnotowner"

TOKEN_ONE = "0xtokenone"
TOKEN_TWO = "0xtokentwo"

# Rates 6, 5, 7, 4.5, 5.2 -> book order [3, 1, 5, 2, 4]
FIVE_RULES = [(300, 50), (1000, 200), (2002, 286), (450, 100), (1664, 320)]
FIVE_RULE_ORDER = [3, 1, 5, 2, 4]


def check_linked_list(book: RuleBook, sender_token: str, signer_token: str, correct_ids):
    """Walk the market via links and compare ids, prev and next pointers."""
    padded = [0] + list(correct_ids) + [0]

    assert book.first_rule_id(sender_token, signer_token) == padded[1]
    assert book.total_active_rules(sender_token, signer_token) == len(correct_ids)

    rule_id = book.first_rule_id(sender_token, signer_token)
    for i in range(1, len(padded) - 1):
        assert rule_id == padded[i], f"expected rule {padded[i]} at position {i}, got {rule_id}"
        rule = book.get_rule(rule_id)
        assert rule.prev_rule_id == padded[i - 1], f"prev of rule {rule_id} incorrectly set"
        assert rule.next_rule_id == padded[i + 1], f"next of rule {rule_id} incorrectly set"
        rule_id = rule.next_rule_id


def assert_book_invariants(book: RuleBook, sender_token: str, signer_token: str):
    """Rate order non-increasing, links symmetric, count and boundaries consistent."""
    rules = book.snapshot(sender_token, signer_token)
    assert book.total_active_rules(sender_token, signer_token) == len(rules)
    if not rules:
        assert book.first_rule_id(sender_token, signer_token) == 0
        return

    assert rules[0].prev_rule_id == 0
    assert rules[-1].next_rule_id == 0
    for earlier, later in zip(rules, rules[1:]):
        assert not later.rate_above(earlier)
        assert earlier.next_rule_id == later.id
        assert later.prev_rule_id == earlier.id


@pytest.fixture()
def book() -> RuleBook:
    return RuleBook()


@pytest.fixture()
def five_rule_book(book) -> RuleBook:
    for sender_amount, signer_amount in FIVE_RULES:
        book.create_rule(TOKEN_ONE, TOKEN_TWO, sender_amount, signer_amount)
    return book


@pytest.fixture()
def quotes(five_rule_book) -> QuoteEngine:
    return QuoteEngine(five_rule_book)


@pytest.fixture()
def custodian() -> InMemoryCustodian:
    return InMemoryCustodian()


@pytest.fixture()
def delegate(custodian):
    return create_delegate(owner=OWNER, trade_wallet=TRADE_WALLET, custodian=custodian)
