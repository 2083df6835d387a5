# Shared pytest fixtures
from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from trade_import.db.memory import InMemorySessionStore, InMemoryTradeStore
from trade_import.logging.init import reset_logging
from trade_import.models.config_models import ImportConfig
from trade_import.services.executor import ImportPipeline

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)

EXPORT_HEADER = [
    "Trade number", "Instrument", "Account", "Strategy", "Market pos.", "Qty",
    "Entry price", "Exit price", "Entry time", "Exit time", "Profit", "Commission", "MAE", "MFE",
]


def trade_row(n: int = 1, **overrides: str) -> dict[str, str]:
    """One export line as a column -> text mapping, NT8 style values."""
    row = {
        "Trade number": str(n),
        "Instrument": "ES 03-25",
        "Account": "Sim101",
        "Strategy": "Breakout",
        "Market pos.": "Long",
        "Qty": "1",
        "Entry price": f"{5000 + n},25",
        "Exit price": f"{5002 + n},25",
        "Entry time": f"1/15/2024 9:{30 + n:02d}:00",
        "Exit time": f"1/15/2024 10:{n:02d}:00",
        "Profit": "$ 100,00",
        "Commission": "$ 4,20",
        "MAE": "$ 25,00",
        "MFE": "$ 150,00",
    }
    row.update(overrides)
    return row


def build_export(rows: list[dict[str, str]], header: list[str] | None = None) -> bytes:
    cols = header or EXPORT_HEADER
    lines = [";".join(cols) + ";"]
    lines.extend(";".join(r.get(c, "") for c in cols) + ";" for r in rows)
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """batch_size: 2
max_workers: 2
duplicate_policy: tolerance_window
duplicate_tolerance_seconds: 300
timezone: UTC
delimiter: ";"
commission_rates:
  ES: 4.5
field_mapping:
  notes: [Exit name, Notes]
logs_directory: ./logs
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def trade_store() -> InMemoryTradeStore:
    return InMemoryTradeStore()


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture()
def pipeline(trade_store, session_store, clock) -> ImportPipeline:
    return ImportPipeline(trade_store, session_store, ImportConfig(batch_size=2, max_workers=2), clock=clock)
