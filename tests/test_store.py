import pytest

from delegate import BookMeta, Rule, RuleStore


@pytest.fixture()
def store():
    return RuleStore()


def test_counter_starts_at_zero_and_increments(store):
    assert store.rule_id_counter == 0
    assert store.next_id() == 1
    assert store.next_id() == 2
    assert store.rule_id_counter == 2


def test_put_get_remove(store):
    rule = Rule(store.next_id(), "A", "B", 10, 2)
    store.put(rule.id, rule)

    assert rule.id in store
    assert len(store) == 1
    assert store.get(rule.id) is rule
    assert store.remove(rule.id) is rule
    assert store.get(rule.id) is None
    assert store.remove(rule.id) is None


def test_put_rejects_mismatched_id(store):
    rule = Rule(3, "A", "B", 10, 2)
    with pytest.raises(ValueError):
        store.put(4, rule)


def test_unknown_book_is_empty(store):
    meta = store.get_book(("A", "B"))
    assert meta == BookMeta()
    assert meta.first_rule_id == 0
    assert meta.total_active_rules == 0


def test_book_headers_are_copied(store):
    store.put_book(("A", "B"), BookMeta(first_rule_id=5, total_active_rules=1))

    meta = store.get_book(("A", "B"))
    meta.total_active_rules = 99
    assert store.get_book(("A", "B")).total_active_rules == 1
    assert store.get_book(("A", "B")).to_dict() == {"first_rule_id": 5, "total_active_rules": 1}


def test_markets_and_rules_listings(store):
    for sender, signer in [("B", "C"), ("A", "B")]:
        rule = Rule(store.next_id(), sender, signer, 10, 1)
        store.put(rule.id, rule)
        store.put_book(rule.market, BookMeta(rule.id, 1))

    assert store.markets() == [("A", "B"), ("B", "C")]
    assert [r.id for r in store.rules()] == [1, 2]
