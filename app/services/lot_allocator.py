"""
Lot Allocator

Splits a lot count across target tranches by percentage weights using
the largest-remainder method, so the allocation always sums exactly to
the total.
"""

from typing import List, Sequence


def allocate_lots(total_lots: int, weights: Sequence[int]) -> List[int]:
    """
    Allocate lots to tranches.

    Each tranche gets floor(total * w / sum(w)); the leftover lots go one
    at a time to the largest fractional remainders, ties favouring the
    later tranche. Integer arithmetic throughout.

    Args:
        total_lots: Lots to distribute (>= 0)
        weights: Non-negative tranche weights, e.g. [40, 30, 20, 10]

    Returns:
        Per-tranche lot counts summing to total_lots

    Raises:
        ValueError: On negative inputs, or lots to place with no weight

    Example:
        allocate_lots(7, [40, 30, 20, 10])  # [3, 2, 1, 1]
    """
    if total_lots < 0:
        raise ValueError(f"total_lots must be >= 0, got {total_lots}")
    if any(w < 0 for w in weights):
        raise ValueError(f"weights must be non-negative, got {list(weights)}")

    weight_sum = sum(weights)
    if total_lots == 0:
        return [0] * len(weights)
    if weight_sum <= 0:
        raise ValueError("weights must have a positive sum to allocate lots")

    floors = []
    remainders = []
    for w in weights:
        share, remainder = divmod(total_lots * w, weight_sum)
        floors.append(share)
        remainders.append(remainder)

    leftover = total_lots - sum(floors)
    order = sorted(range(len(weights)), key=lambda i: (remainders[i], i), reverse=True)
    for i in order[:leftover]:
        floors[i] += 1

    return floors
