from __future__ import annotations

from datetime import datetime

import pytest

from trade_import.models.field_mapping import FieldMapping
from trade_import.models.row_data import RawRecord
from trade_import.models.trade import Direction
from trade_import.parsing.record_parser import RecordParser, get_field_value, parse_direction
from trade_import.services.commission import CommissionSchedule

NOW = datetime(2024, 6, 1, 12, 0)


def _record(**values: str) -> RawRecord:
    base = {
        "Instrument": "ES 03-25",
        "Market pos.": "Long",
        "Qty": "2",
        "Entry price": "5000,25",
        "Exit price": "5002,25",
        "Entry time": "1/15/2024 9:30:00",
        "Exit time": "1/15/2024 10:15:00",
        "Profit": "$ 200,00",
        "Commission": "$ 8,40",
        "MAE": "-$ 25,00",
        "MFE": "$ 250,00",
        "Strategy": "Breakout",
        "Account": "Sim101",
        "Trade number": "17",
        "Exit name": "Target",
    }
    base.update(values)
    return RawRecord(row_number=2, values=base)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Long", Direction.LONG),
        ("buy", Direction.LONG),
        ("1", Direction.LONG),
        ("Short", Direction.SHORT),
        ("SELL", Direction.SHORT),
        ("-1", Direction.SHORT),
        ("Flat", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_direction(raw, expected):
    assert parse_direction(raw) is expected


def test_get_field_value_first_non_empty_alias():
    values = {"Qty": "", "Quantity": "3", "Size": "9"}
    assert get_field_value(values, ["Qty", "Quantity", "Size"]) == "3"
    assert get_field_value(values, ["Missing"]) is None


def test_parse_full_record():
    outcome = RecordParser().parse(_record(), NOW)
    assert outcome.error is None
    t = outcome.trade
    assert t is not None
    assert t.symbol == "ES"
    assert t.direction is Direction.LONG
    assert t.quantity == 2
    assert t.entry_price == pytest.approx(5000.25)
    assert t.exit_price == pytest.approx(5002.25)
    assert t.entry_date == datetime(2024, 1, 15, 9, 30)
    assert t.exit_date == datetime(2024, 1, 15, 10, 15)
    assert t.pnl == pytest.approx(200.0)
    assert t.commission == pytest.approx(8.40)
    assert t.mae == pytest.approx(25.0)  # stored as absolute value
    assert t.mfe == pytest.approx(250.0)
    assert t.strategy == "Breakout"
    assert t.account == "Sim101"
    assert t.external_trade_number == "17"
    assert t.notes == "Target"
    assert t.duration_minutes == 45


def test_missing_commission_uses_schedule():
    parser = RecordParser(commissions=CommissionSchedule({"ES": 4.5}))
    t = parser.parse(_record(Commission="$ 0,00"), NOW).trade
    assert t is not None
    assert t.commission == pytest.approx(9.0)

    t = parser.parse(_record(Commission=""), NOW).trade
    assert t is not None
    assert t.commission == pytest.approx(9.0)


def test_negative_quantity_stored_absolute():
    t = RecordParser().parse(_record(Qty="-3"), NOW).trade
    assert t is not None
    assert t.quantity == 3


def test_open_trade_has_no_duration():
    t = RecordParser().parse(_record(**{"Exit time": "", "Exit price": ""}), NOW).trade
    assert t is not None
    assert t.exit_date is None
    assert t.exit_price is None
    assert t.duration_minutes is None
    assert t.is_open


def test_unparsable_optional_numbers_default_to_zero():
    t = RecordParser().parse(_record(Profit="n/a", MAE="", MFE="?"), NOW).trade
    assert t is not None
    assert t.pnl == 0.0
    assert t.mae == 0.0
    assert t.mfe == 0.0


@pytest.mark.parametrize(
    ("overrides", "reason"),
    [
        ({"Entry time": ""}, "Entry date"),
        ({"Entry time": "yesterday"}, "Entry date"),
        ({"Market pos.": "Flat"}, "direction"),
        ({"Qty": "lots"}, "Quantity"),
        ({"Entry price": ""}, "Entry price"),
    ],
)
def test_unusable_rows_return_reason(overrides, reason):
    outcome = RecordParser().parse(_record(**overrides), NOW)
    assert outcome.trade is None
    assert reason in (outcome.error or "")


def test_custom_mapping_aliases():
    mapping = FieldMapping().with_overrides({"quantity": ["Contracts"], "direction": ["Side"]})
    values = dict(_record().values)
    values.pop("Qty")
    values.pop("Market pos.")
    values.update({"Contracts": "4", "Side": "Sell"})
    t = RecordParser(mapping).parse(RawRecord(row_number=5, values=values), NOW).trade
    assert t is not None
    assert t.quantity == 4
    assert t.direction is Direction.SHORT


def test_mapping_override_rejects_unknown_field():
    with pytest.raises(ValueError):
        FieldMapping().with_overrides({"price": ["Price"]})
    with pytest.raises(ValueError):
        FieldMapping().with_overrides({"quantity": []})
