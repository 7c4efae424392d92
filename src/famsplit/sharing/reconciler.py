"""Currency handling and split arithmetic.

The engine compares integer cents exactly. The configured tolerance (0.01 by
default) is only applied here, when decimal user input is turned into cents.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from ..exceptions import SplitMismatchError, ValidationError
from ..models import ProposedSplit

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.01")

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}


def to_cents(amount: Decimal | str | int | float, field: str = "amount") -> int:
    """
    Convert a decimal currency amount to integer cents.
    Uses ROUND_HALF_UP; extra decimal places are rounded away with a warning.

    Args:
        amount: Amount in currency units (floats are converted via ``str``)
        field: Name reported in validation errors

    Returns:
        Amount in cents

    Raises:
        ValidationError: If the amount is not a number or is negative
    """
    value = _to_decimal(amount, field)
    cents = int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    exponent = value.as_tuple().exponent
    if isinstance(exponent, int) and exponent < -2:
        logger.warning(
            f"{field} {value} has more than two decimal places; rounded to {from_cents(cents)}"
        )
    return cents


def _to_decimal(amount: Decimal | str | int | float, field: str) -> Decimal:
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValidationError(field, f"'{amount}' is not a valid amount") from e

    if not value.is_finite():
        raise ValidationError(field, f"'{amount}' is not a valid amount")
    if value < 0:
        raise ValidationError(field, f"amount must not be negative (got {value})")
    return value


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def parse_currency(text: str, field: str = "amount") -> int:
    """
    Parse user-entered currency text such as ``"$1,234.50"`` into cents.

    Raises:
        ValidationError: If nothing numeric remains after stripping symbols
    """
    cleaned = re.sub(r"[^0-9.\-]+", "", text)
    if not cleaned or cleaned in ("-", ".", "-."):
        raise ValidationError(field, f"'{text}' is not a valid amount")
    return to_cents(cleaned, field=field)


def format_currency(cents: int, currency: str = "USD") -> str:
    """Format cents for display, e.g. ``1598`` -> ``$15.98``."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{abs(cents) / 100:,.2f}"


def validate_split_total(expected_cents: int, splits: Iterable[ProposedSplit]) -> None:
    """
    Require the split amounts to add up to the total exactly.

    Raises:
        SplitMismatchError: With expected, actual and delta in cents
    """
    actual_cents = sum(split.amount_cents for split in splits)
    if actual_cents != expected_cents:
        raise SplitMismatchError(expected_cents, actual_cents)


def splits_from_amounts(
    amounts: Mapping[str, Decimal | str | int | float],
    expected_total_cents: int,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[ProposedSplit]:
    """
    Turn decimal split amounts entered by a person into exact cent splits.

    Steps:
    1. Compare the exact entered sum with the total; a gap of a whole
       tolerance step (one cent by default) or more is a mismatch
    2. Convert each amount to cents independently
    3. Absorb the residual left by rounding sub-cent input into the
       largest split

    Amounts that are already whole cents are never rewritten.

    Args:
        amounts: Mapping of user ID to amount in currency units
        expected_total_cents: The subscription's total in cents
        tolerance: Smallest gap (in currency units) reported as a mismatch

    Returns:
        Proposed splits whose cents sum to ``expected_total_cents``

    Raises:
        ValidationError: If an amount is malformed or negative
        SplitMismatchError: If the entered amounts don't add up to the total
    """
    exact = {user_id: _to_decimal(amount, user_id) for user_id, amount in amounts.items()}
    if not exact:
        raise ValidationError("splits", "at least one split is required")

    splits = [
        ProposedSplit(user_id=user_id, amount_cents=to_cents(value, field=user_id))
        for user_id, value in exact.items()
    ]
    actual_total = sum(split.amount_cents for split in splits)

    gap = abs(sum(exact.values()) - from_cents(expected_total_cents))
    if gap >= Decimal(str(tolerance)):
        raise SplitMismatchError(expected_total_cents, actual_total)

    residual = expected_total_cents - actual_total
    if residual != 0:
        largest = max(splits, key=lambda s: s.amount_cents)
        if largest.amount_cents + residual < 0:
            raise SplitMismatchError(expected_total_cents, actual_total)
        largest.amount_cents += residual
        logger.info(
            f"Absorbed rounding residual of {residual} cent(s) into the split "
            f"for {largest.user_id}"
        )

    return splits


# ============================================================================
# Caller-side conveniences (the engine never applies these on its own)
# ============================================================================


def equal_split(total_cents: int, user_ids: list[str]) -> list[ProposedSplit]:
    """
    Divide a total evenly, handing leftover cents to the first users.

    ``equal_split(1000, ["a", "b", "c"])`` gives 334, 333, 333.
    """
    if not user_ids:
        raise ValidationError("splits", "at least one member is required")
    if len(set(user_ids)) != len(user_ids):
        raise ValidationError("splits", "each member may appear only once")

    base, remainder = divmod(total_cents, len(user_ids))
    return [
        ProposedSplit(user_id=user_id, amount_cents=base + (1 if i < remainder else 0))
        for i, user_id in enumerate(user_ids)
    ]


def percentage_split(
    total_cents: int, percentages: Mapping[str, Decimal | str | int]
) -> list[ProposedSplit]:
    """
    Divide a total by percentage using the largest remainder method.

    Raises:
        ValidationError: If the percentages are negative or don't sum to 100
    """
    if not percentages:
        raise ValidationError("splits", "at least one member is required")

    shares = {user_id: Decimal(str(pct)) for user_id, pct in percentages.items()}
    if any(pct < 0 for pct in shares.values()):
        raise ValidationError("percentages", "percentages must not be negative")
    if sum(shares.values()) != Decimal("100"):
        raise ValidationError(
            "percentages", f"percentages must add up to 100 (got {sum(shares.values())})"
        )

    exact = {
        user_id: Decimal(total_cents) * pct / Decimal("100")
        for user_id, pct in shares.items()
    }
    floored = {
        user_id: int(value.to_integral_value(rounding=ROUND_DOWN))
        for user_id, value in exact.items()
    }
    leftover = total_cents - sum(floored.values())

    # Largest fractional parts get the leftover cents, ties in input order
    order = sorted(exact, key=lambda u: exact[u] - floored[u], reverse=True)
    for user_id in order[:leftover]:
        floored[user_id] += 1

    return [
        ProposedSplit(user_id=user_id, amount_cents=floored[user_id])
        for user_id in shares
    ]
