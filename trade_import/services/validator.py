from __future__ import annotations

from ..models.trade import Direction, NormalizedTrade
from ..models.validation import FieldError, ValidationResult

"""Stateless validation rules for NormalizedTrade candidates."""

__all__ = [
    "validate_trade",
]


def validate_trade(trade: NormalizedTrade) -> ValidationResult:
    """Check required fields, logical consistency and non-blocking warnings.

    Errors make the row invalid; warnings are reported but never block the import.
    """
    errors: list[FieldError] = []
    warnings: list[str] = []

    if not trade.symbol:
        errors.append(FieldError("symbol", "Symbol is required"))
    if not isinstance(trade.direction, Direction):
        errors.append(FieldError("direction", "Direction must be LONG or SHORT"))
    if not trade.quantity > 0:
        errors.append(FieldError("quantity", "Quantity must be greater than 0"))
    if not trade.entry_price > 0:
        errors.append(FieldError("entryPrice", "Entry price must be greater than 0"))
    if trade.entry_date is None:
        errors.append(FieldError("entryDate", "Entry date is required"))

    if trade.exit_date is not None and trade.entry_date is not None and trade.exit_date < trade.entry_date:
        errors.append(FieldError("exitDate", "Exit date cannot be before entry date"))
    if trade.exit_price is not None and not trade.exit_price > 0:
        errors.append(FieldError("exitPrice", "Exit price must be greater than 0"))

    if trade.is_open:
        warnings.append("Trade is still open (no exit date/price)")
    if not trade.strategy:
        warnings.append("No strategy specified")
    if trade.commission == 0:
        warnings.append("No commission specified")

    return ValidationResult(errors=errors, warnings=warnings)
