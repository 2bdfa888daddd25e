"""Oldest-first allocation of a quantity across ordered sources.

Shared by the batch allocator (kilograms across inventory batches) and the
balance ledger (a deduction across several open advances). Pure: callers
load and order the candidates, this module only plans the slices.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Hashable, Iterable


@dataclass(frozen=True)
class Slice:
    key: Hashable
    quantity: Decimal


def total_available(candidates: Iterable[tuple[Hashable, Decimal]]) -> Decimal:
    return sum((Decimal(qty) for _, qty in candidates), Decimal("0"))


def plan_fifo(
    candidates: list[tuple[Hashable, Decimal]],
    requested: Decimal,
    on_shortfall: Callable[[Decimal, Decimal], Exception],
) -> list[Slice]:
    """Split ``requested`` across ``candidates`` in the order given.

    ``candidates`` is a list of ``(key, available)`` already sorted
    oldest-first. All-or-nothing: when the total available is short,
    ``on_shortfall(requested, available)`` is raised and nothing is planned.
    """
    available = total_available(candidates)
    if available < requested:
        raise on_shortfall(requested, available)

    left = Decimal(requested)
    slices: list[Slice] = []
    for key, qty in candidates:
        if left <= 0:
            break
        qty = Decimal(qty)
        if qty <= 0:
            continue
        take = min(left, qty)
        slices.append(Slice(key=key, quantity=take))
        left -= take
    return slices
