"""
Lot Allocator Tests

Largest-remainder allocation with exact sums.
"""

import pytest

from app.services.lot_allocator import allocate_lots


WEIGHTS = [40, 30, 20, 10]


def test_seven_lots_default_weights():
    assert allocate_lots(7, WEIGHTS) == [3, 2, 1, 1]


def test_three_lots_default_weights():
    # Remainders 20/90/60/30 -> leftover goes to T2 and T3
    assert allocate_lots(3, WEIGHTS) == [1, 1, 1, 0]


def test_exact_division():
    assert allocate_lots(10, WEIGHTS) == [4, 3, 2, 1]


def test_zero_lots():
    assert allocate_lots(0, WEIGHTS) == [0, 0, 0, 0]


def test_ties_go_to_later_index():
    assert allocate_lots(1, [50, 50]) == [0, 1]
    assert allocate_lots(2, [25, 25, 25, 25]) == [0, 0, 1, 1]


def test_weights_not_summing_to_hundred_are_normalized():
    assert allocate_lots(6, [2, 1]) == [4, 2]


@pytest.mark.parametrize("total", range(0, 41))
def test_allocation_sums_to_total(total):
    allocation = allocate_lots(total, WEIGHTS)
    assert sum(allocation) == total
    assert all(lots >= 0 for lots in allocation)


def test_negative_total_rejected():
    with pytest.raises(ValueError):
        allocate_lots(-1, WEIGHTS)


def test_negative_weight_rejected():
    with pytest.raises(ValueError):
        allocate_lots(3, [50, -10, 60])


def test_zero_weight_sum_with_lots_rejected():
    with pytest.raises(ValueError):
        allocate_lots(2, [0, 0])
