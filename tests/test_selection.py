"""
Tests for UTXO selection.
"""

from __future__ import annotations

import pytest

from ordwallet.errors import InsufficientFundsError
from ordwallet.selection import filter_utxos, order_utxos, select_utxos, sum_utxos


@pytest.fixture
def confirmed_pool(make_utxo):
    return [make_utxo(10000), make_utxo(20000)]


@pytest.fixture
def mixed_pool(make_utxo):
    return [make_utxo(10000), make_utxo(20000), make_utxo(30000, confirmed=False)]


class TestOrdering:
    """Tests for candidate ordering."""

    def test_confirmed_first_then_value_descending(self, make_utxo) -> None:
        a = make_utxo(5000, confirmed=False)
        b = make_utxo(1000)
        c = make_utxo(9000, confirmed=False)
        d = make_utxo(3000)
        assert order_utxos([a, b, c, d]) == [d, b, c, a]

    def test_equal_values_keep_pool_order(self, make_utxo) -> None:
        first = make_utxo(1000)
        second = make_utxo(1000)
        assert order_utxos([first, second]) == [first, second]

    def test_filter_by_outpoint(self, make_utxo) -> None:
        keep = make_utxo(1000)
        drop = make_utxo(2000)
        assert filter_utxos([keep, drop], [drop]) == [keep]

    def test_sum(self, make_utxo) -> None:
        assert sum_utxos([make_utxo(1), make_utxo(2)]) == 3


class TestSelectUtxos:
    """Tests for greedy largest-first selection."""

    def test_single_largest_covers_target(self, confirmed_pool) -> None:
        selection = select_utxos(10000, 22, confirmed_pool)
        assert [u.value for u in selection] == [20000]

    def test_both_selected_larger_first(self, confirmed_pool) -> None:
        selection = select_utxos(25000, 22, confirmed_pool)
        assert [u.value for u in selection] == [20000, 10000]

    def test_unconfirmed_not_needed(self, mixed_pool) -> None:
        selection = select_utxos(10000, 22, mixed_pool)
        assert [u.value for u in selection] == [20000]

    def test_confirmed_preferred_over_larger_unconfirmed(self, mixed_pool) -> None:
        selection = select_utxos(30000, 22, mixed_pool)
        assert [u.value for u in selection] == [20000, 10000]

    def test_all_three_selected(self, mixed_pool) -> None:
        selection = select_utxos(40000, 22, mixed_pool)
        assert [u.value for u in selection] == [20000, 10000, 30000]

    def test_dust_skipped_at_high_rate(self, mixed_pool) -> None:
        """At 150 sat/vB the 10000 UTXO costs more than 13000 sats to spend."""
        selection = select_utxos(30000, 150, mixed_pool)
        assert [u.value for u in selection] == [20000, 30000]

    def test_no_dust_test_without_rate(self, mixed_pool) -> None:
        selection = select_utxos(30000, None, mixed_pool)
        assert [u.value for u in selection] == [20000, 10000]

    def test_insufficient_funds(self, mixed_pool) -> None:
        with pytest.raises(InsufficientFundsError) as exc_info:
            select_utxos(60001, 22, mixed_pool)
        assert exc_info.value.required == 60001
        assert exc_info.value.available == 60000

    def test_dust_does_not_count_towards_available(self, mixed_pool) -> None:
        with pytest.raises(InsufficientFundsError) as exc_info:
            select_utxos(55000, 150, mixed_pool)
        assert exc_info.value.available == 50000

    def test_exact_target(self, confirmed_pool) -> None:
        selection = select_utxos(30000, 22, confirmed_pool)
        assert selection.total_value == 30000

    def test_pinned_first_and_counted(self, make_utxo, confirmed_pool) -> None:
        pinned = make_utxo(546)
        selection = select_utxos(10000, 22, confirmed_pool, pinned=pinned)
        assert selection[0] == pinned
        assert [u.value for u in selection] == [546, 20000]

    def test_pinned_never_selected_twice(self, make_utxo, confirmed_pool) -> None:
        pinned = confirmed_pool[1]
        selection = select_utxos(25000, 22, confirmed_pool, pinned=pinned)
        assert [u.outpoint for u in selection] == [pinned.outpoint, confirmed_pool[0].outpoint]

    def test_excluded_never_selected(self, make_utxo, confirmed_pool) -> None:
        inscribed = make_utxo(50000)
        pool = confirmed_pool + [inscribed]
        selection = select_utxos(25000, 22, pool, excluded=[inscribed])
        assert inscribed not in selection.utxos
        with pytest.raises(InsufficientFundsError):
            select_utxos(40000, 22, pool, excluded=[inscribed])

    def test_empty_pool(self) -> None:
        with pytest.raises(InsufficientFundsError):
            select_utxos(1, 1, [])

    def test_zero_target_selects_nothing(self, confirmed_pool) -> None:
        assert len(select_utxos(0, 1, confirmed_pool)) == 0
