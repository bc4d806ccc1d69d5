"""
Property-based checks of stock conservation.

Random sequences of movements are applied to a pair of buckets.  Whatever
succeeds or fails, every bucket's stored quantity must equal the replay of
its ledger entries, each entry must chain balance_before to the previous
balance_after, and without negative stock no bucket may ever go below zero.
"""

from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketKey
from ppe_kernel.exceptions import InsufficientStockError

_KINDS = [
    MovementKind.INTAKE,
    MovementKind.ISSUE,
    MovementKind.RETURN,
    MovementKind.DISPOSAL,
    MovementKind.ADJUSTMENT_IN,
    MovementKind.ADJUSTMENT_OUT,
]

movements = st.lists(
    st.tuples(st.sampled_from(_KINDS), st.integers(min_value=1, max_value=20), st.booleans()),
    min_size=1,
    max_size=25,
)

_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


@pytest.fixture
def fresh_keys(make_item_type, location):
    """New item types per example; the session outlives hypothesis examples."""

    def _keys():
        return (
            BucketKey(location.id, make_item_type(f"FZ-{uuid4().hex[:10]}").id),
            BucketKey(location.id, make_item_type(f"FZ-{uuid4().hex[:10]}").id),
        )

    return _keys


class TestConservation:

    @_SETTINGS
    @given(ops=movements)
    def test_balance_equals_ledger_replay(self, ledger_service, balances, ledger_reads, fresh_keys, test_actor_id, ops):
        keys = fresh_keys()
        expected = {key: 0 for key in keys}

        for kind, quantity, second in ops:
            key = keys[1] if second else keys[0]
            try:
                ledger_service.apply_movement(key, kind, quantity, test_actor_id)
            except InsufficientStockError:
                assert kind.is_debit
                assert expected[key] < quantity
                continue
            expected[key] += kind.sign * quantity

        for key in keys:
            stored = balances.current_quantity(key)
            assert stored == expected[key]
            assert stored >= 0
            assert ledger_reads.replay_balance(key) == stored
            assert ledger_reads.chain_breaks(key) == []

    @_SETTINGS
    @given(ops=movements)
    def test_negative_stock_keeps_chain(self, ledger_service, balances, ledger_reads, fresh_keys, test_actor_id, ops):
        key, _ = fresh_keys()

        for kind, quantity, _second in ops:
            ledger_service.apply_movement(key, kind, quantity, test_actor_id, allow_negative=True)

        entries = ledger_reads.entries_for_bucket(key)
        assert [e.bucket_sequence for e in entries] == list(range(1, len(ops) + 1))
        assert balances.current_quantity(key) == sum(k.sign * q for k, q, _ in ops)
        assert ledger_reads.chain_breaks(key) == []

    @_SETTINGS
    @given(ops=movements)
    def test_reversal_restores_balance(self, ledger_service, balances, fresh_keys, test_actor_id, ops):
        key, _ = fresh_keys()
        entries = [
            ledger_service.apply_movement(key, kind, quantity, test_actor_id, allow_negative=True)
            for kind, quantity, _second in ops
        ]

        for entry in reversed(entries):
            ledger_service.reverse_movement(entry.id, test_actor_id, allow_negative=True)

        assert balances.current_quantity(key) == 0
