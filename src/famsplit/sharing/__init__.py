"""Shared subscriptions and split arithmetic."""

from .engine import SplitEngine
from .reconciler import (
    equal_split,
    format_currency,
    parse_currency,
    percentage_split,
    splits_from_amounts,
    to_cents,
)

__all__ = [
    "SplitEngine",
    "equal_split",
    "format_currency",
    "parse_currency",
    "percentage_split",
    "splits_from_amounts",
    "to_cents",
]
