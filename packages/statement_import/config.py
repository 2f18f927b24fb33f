"""Runtime settings read from the environment (and a local ``.env``).

Only policy knobs live here; the geometric tolerances of the layout extractor
are module constants in :mod:`statement_import.ingest.layout`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

# Two-cent window for same-day reconciliation matches (exclusive upper bound).
DEFAULT_DUPLICATE_TOLERANCE = Decimal("0.02")
# Height (PDF points from the page bottom) of the running-footer band.
DEFAULT_FOOTER_BAND = 120.0


@dataclass(frozen=True, slots=True)
class ImportSettings:
    database_url: str | None = None
    duplicate_tolerance: Decimal = DEFAULT_DUPLICATE_TOLERANCE
    footer_band: float = DEFAULT_FOOTER_BAND
    log_level: str | None = None

    def __post_init__(self) -> None:
        if self.duplicate_tolerance < 0:
            raise ValueError("duplicate_tolerance must be non-negative")
        if self.footer_band < 0:
            raise ValueError("footer_band must be non-negative")


def _decimal_env(env: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}") from exc


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def load_settings(
    env: Mapping[str, str] | None = None, *, dotenv_path: Path | None = None
) -> ImportSettings:
    """Build :class:`ImportSettings` from ``env`` (defaults to ``os.environ``).

    When reading the process environment, a ``.env`` in the working directory
    is loaded first without overriding variables that are already set.
    """

    if env is None:
        load_dotenv(dotenv_path=dotenv_path or Path.cwd() / ".env", override=False)
        env = os.environ

    return ImportSettings(
        database_url=(env.get("DATABASE_URL") or None),
        duplicate_tolerance=_decimal_env(
            env, "STATEMENT_IMPORT_DUPLICATE_TOLERANCE", DEFAULT_DUPLICATE_TOLERANCE
        ),
        footer_band=_float_env(env, "STATEMENT_IMPORT_FOOTER_BAND", DEFAULT_FOOTER_BAND),
        log_level=(env.get("STATEMENT_IMPORT_LOG_LEVEL") or None),
    )


__all__ = [
    "DEFAULT_DUPLICATE_TOLERANCE",
    "DEFAULT_FOOTER_BAND",
    "ImportSettings",
    "load_settings",
]
