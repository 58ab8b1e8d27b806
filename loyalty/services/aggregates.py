"""
Denormalized counter arithmetic.

Only the transactional use-case functions (redeem, rate, delete_rating,
merchant/category moves) call into this module, inside their own unit of
work. Nothing here commits.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

_CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    # str() first so floats coming back from SQLite don't drag binary noise in
    return Decimal(str(value))


def round2(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def average_after_add(average, count: int, score: int) -> tuple[Decimal, int]:
    """Fold one more score into a running average: round2((avg*n + s) / (n+1))."""
    new_count = int(count) + 1
    total = to_decimal(average) * int(count) + score
    return round2(total / new_count), new_count


def average_after_remove(average, count: int, score: int) -> tuple[Decimal, int]:
    """Inverse of ``average_after_add``; the average resets to 0 when no score is left."""
    new_count = int(count) - 1
    if new_count <= 0:
        return ZERO, 0
    total = to_decimal(average) * int(count) - score
    return round2(total / new_count), new_count


async def bump(db: AsyncSession, model, row_id: int, **deltas: int) -> None:
    """
    UPDATE <model> SET col = col + delta ... WHERE id = row_id.

    The increment happens in SQL so concurrent writers never lose an update.
    In-session instances are not synchronized; refresh them before reading.
    """
    if not deltas:
        return
    values = {getattr(model, col): getattr(model, col) + int(delta) for col, delta in deltas.items()}
    stmt = update(model).where(model.id == int(row_id)).values(values).execution_options(synchronize_session=False)
    await db.execute(stmt)
