from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from canon_check.config import DATA_DIR_ENV, find_config, load_config
from canon_check.errors import StorageError
from canon_check.oracle import CachedOracle, SnapshotOracle, StaticOracle, default_snapshot_path
from canon_check.util import retry_io

from conftest import _write

CONFIG = """
data_dir = "state"
max_workers = 2
checker_timeout = 5

[authorities]
docs-lead = ["formatting", "voice"]
cto = "*"

[oracles]
house-style = "terms/house.txt"
"""


@pytest.fixture(autouse=True)
def _no_env_data_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)


def test_load_config_resolves_relative_paths(tmp_path: Path) -> None:
    path = tmp_path / "canon-check.toml"
    _write(path, CONFIG)
    _write(tmp_path / "terms" / "house.txt", "# as-of: 2026-01-15\nsynergy\n")

    config = load_config(path)
    assert config.data_dir == tmp_path / "state"
    assert config.reports_path == tmp_path / "state" / "reports.jsonl"
    assert config.max_workers == 2
    assert config.checker_timeout == 5.0
    assert config.authorities == {"docs-lead": ("formatting", "voice"), "cto": ("*",)}

    oracles = config.build_oracles()
    assert set(oracles) == {"ai-cliches", "house-style"}
    assert oracles["house-style"].lookup(date(2026, 6, 1)) == frozenset({"synergy"})


def test_find_config_walks_up(tmp_path: Path) -> None:
    _write(tmp_path / "canon-check.toml", CONFIG)
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_config(nested) == (tmp_path / "canon-check.toml").resolve()


def test_defaults_without_config(tmp_path: Path) -> None:
    config = load_config(cwd=tmp_path)
    assert config.data_dir == tmp_path / ".canon"
    assert config.authorities == {}
    assert config.source is None


def test_data_dir_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "canon-check.toml"
    _write(path, CONFIG)
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "from-env"))
    assert load_config(path).data_dir == tmp_path / "from-env"
    assert load_config(path, data_dir=tmp_path / "explicit").data_dir == tmp_path / "explicit"


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("colour = 'blue'\n", "unknown config keys: colour"),
        ("max_workers = 0\n", "max_workers must be a positive number"),
        ("io_backoff = -1\n", "io_backoff must be a positive number"),
    ],
)
def test_invalid_config(tmp_path: Path, text: str, fragment: str) -> None:
    path = tmp_path / "canon-check.toml"
    _write(path, text)
    with pytest.raises(ValueError, match=fragment):
        load_config(path)


# -----------------------------------------------------------------------------
# Oracles
# -----------------------------------------------------------------------------


def test_bundled_snapshot_has_as_of_date() -> None:
    oracle = SnapshotOracle(default_snapshot_path())
    assert oracle.as_of == date(2026, 9, 1)
    assert "delve into" in oracle.lookup(date(2026, 10, 1))


class _FlakyLive:
    def __init__(self, fail: bool):
        self.fail = fail
        self.calls = 0

    def lookup(self, as_of: date) -> frozenset[str]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("offline")
        return frozenset({"Leverage "})


def test_cached_oracle_caches_per_date() -> None:
    live = _FlakyLive(fail=False)
    oracle = CachedOracle(live, StaticOracle(["fallback"]))
    assert oracle.lookup(date(2026, 6, 1)) == frozenset({"leverage"})
    oracle.lookup(date(2026, 6, 1))
    assert live.calls == 1
    oracle.lookup(date(2026, 6, 2))
    assert live.calls == 2


def test_cached_oracle_falls_back_to_snapshot() -> None:
    oracle = CachedOracle(_FlakyLive(fail=True), StaticOracle(["Fallback"]))
    assert oracle.lookup(date(2026, 6, 1)) == frozenset({"fallback"})


# -----------------------------------------------------------------------------
# I/O retry
# -----------------------------------------------------------------------------


def test_retry_io_recovers_from_transient_errors() -> None:
    attempts: list[int] = []
    delays: list[float] = []

    def _flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise OSError("busy")
        return "ok"

    assert retry_io(_flaky, attempts=3, base_delay=0.1, sleep=delays.append) == "ok"
    assert delays == [0.1, 0.2]


def test_retry_io_gives_up_with_storage_error() -> None:
    def _broken() -> None:
        raise OSError("disk full")

    with pytest.raises(StorageError, match="disk full"):
        retry_io(_broken, attempts=2, base_delay=0.01, sleep=lambda _: None, what="appending")


def test_retry_io_does_not_retry_missing_files(tmp_path: Path) -> None:
    delays: list[float] = []
    with pytest.raises(StorageError, match="reading rules"):
        retry_io((tmp_path / "gone.toml").read_text, attempts=3, sleep=delays.append, what="reading rules")
    assert delays == []
