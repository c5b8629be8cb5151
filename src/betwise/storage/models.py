"""Declarative base shared by all ORM models."""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Numeric
from sqlalchemy.orm import DeclarativeBase

CENT = Decimal("0.01")

# Money columns: 12 digits, 2 decimals
Money = Numeric(12, 2)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def to_money(value) -> Decimal:
    """Coerce a DB/JSON numeric value to a cent-rounded Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
