"""
Engine configuration.

Read from ``canon-check.toml`` (searched upward from the working directory)
or an explicit ``--config`` path:

    data_dir = ".canon"
    max_workers = 8
    checker_timeout = 10.0
    io_retries = 3
    io_backoff = 0.1

    [authorities]
    security-lead = ["security"]
    docs-lead = ["formatting", "voice", "docs-format"]
    cto = ["*"]

    [oracles]
    ai-cliches = "canons/ai-cliches.txt"

Relative paths resolve against the directory holding the config file.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .oracle import SnapshotOracle, TermOracle, default_snapshot_path

CONFIG_FILENAME = "canon-check.toml"
DATA_DIR_ENV = "CANON_CHECK_DATA_DIR"
DEFAULT_DATA_DIR = ".canon"


@dataclass(frozen=True)
class CanonConfig:
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    max_workers: int | None = None
    checker_timeout: float = 10.0
    io_retries: int = 3
    io_backoff: float = 0.1
    authorities: dict[str, tuple[str, ...]] = field(default_factory=dict)
    oracles: dict[str, Path] = field(default_factory=dict)
    source: Path | None = None

    @property
    def reports_path(self) -> Path:
        return self.data_dir / "reports.jsonl"

    @property
    def overrides_path(self) -> Path:
        return self.data_dir / "overrides.jsonl"

    def build_oracles(self) -> dict[str, TermOracle]:
        """Snapshot oracles by name; ``ai-cliches`` falls back to the bundled snapshot."""
        oracles: dict[str, TermOracle] = {"ai-cliches": SnapshotOracle(default_snapshot_path())}
        for name, path in self.oracles.items():
            oracles[name] = SnapshotOracle(path)
        return oracles


def find_config(start: Path) -> Path | None:
    cur = start.resolve()
    for p in (cur, *cur.parents):
        candidate = p / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _positive(data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{key} must be a positive number")
    return kind(value)


def config_from_dict(data: dict[str, Any], *, base: Path, source: Path | None = None) -> CanonConfig:
    unknown = set(data) - {"data_dir", "max_workers", "checker_timeout", "io_retries", "io_backoff", "authorities", "oracles"}
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")

    authorities: dict[str, tuple[str, ...]] = {}
    for principal, categories in (data.get("authorities") or {}).items():
        if isinstance(categories, str):
            categories = [categories]
        authorities[str(principal)] = tuple(str(c) for c in categories)

    oracles = {str(name): base / str(path) for name, path in (data.get("oracles") or {}).items()}

    return CanonConfig(
        data_dir=base / str(data.get("data_dir", DEFAULT_DATA_DIR)),
        max_workers=_positive(data, "max_workers", int, None),
        checker_timeout=_positive(data, "checker_timeout", float, 10.0),
        io_retries=_positive(data, "io_retries", int, 3),
        io_backoff=_positive(data, "io_backoff", float, 0.1),
        authorities=authorities,
        oracles=oracles,
        source=source,
    )


def load_config(path: Path | None = None, *, data_dir: Path | None = None, cwd: Path | None = None) -> CanonConfig:
    """
    Load configuration.

    Precedence for the data directory: explicit `data_dir`, then the
    CANON_CHECK_DATA_DIR environment variable, then the config file.
    """
    cwd = cwd or Path.cwd()
    if path is None:
        path = find_config(cwd)

    if path is not None:
        with path.open("rb") as f:
            data = tomllib.load(f)
        config = config_from_dict(data, base=path.parent, source=path)
    else:
        config = config_from_dict({}, base=cwd)

    override = data_dir or (Path(os.environ[DATA_DIR_ENV]) if os.environ.get(DATA_DIR_ENV) else None)
    if override is not None:
        config = replace(config, data_dir=override)
    return config
