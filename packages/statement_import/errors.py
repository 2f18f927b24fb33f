"""Exception types raised across the statement import pipeline.

Row-level defects (bad dates, zero amounts) are never raised; extractors and
the normalizer drop those rows and count them. Everything here aborts the
operation it is raised from.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import PossibleDuplicate, ResolutionAction


class StatementImportError(Exception):
    """Base class for pipeline failures."""


# Parse failures carry a stable code plus localized, user-facing text.
_PARSE_MESSAGES: dict[str, dict[str, str]] = {
    "no_header": {
        "en": "Could not find the transactions table header in the statement",
        "es": "No se encontró la cabecera de la tabla de movimientos en el extracto",
    },
    "unmapped_columns": {
        "en": "Could not identify the columns of the file",
        "es": "No se pudieron identificar las columnas del archivo",
    },
    "empty_file": {
        "en": "The file is empty or has no data",
        "es": "El archivo está vacío o no tiene datos",
    },
    "unsupported_format": {
        "en": "Unsupported file format for this bank",
        "es": "Formato de archivo no soportado para este banco",
    },
}


class StatementParseError(StatementImportError, ValueError):
    """The input file cannot be turned into a table; nothing was imported."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        if code not in _PARSE_MESSAGES:
            raise ValueError(f"unknown parse error code: {code!r}")
        self.code = code
        self.detail = detail
        super().__init__(self.message_for("en"))

    def message_for(self, locale: str = "en") -> str:
        messages = _PARSE_MESSAGES[self.code]
        lang = (locale or "en").split("-", 1)[0].split("_", 1)[0].lower()
        base = messages.get(lang, messages["en"])
        return f"{base}: {self.detail}" if self.detail else base


class AccountNotFoundError(StatementImportError, LookupError):
    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"account not found: {account_id!r}")


class LedgerError(StatementImportError, RuntimeError):
    """A ledger (storage) call failed; rows already committed stay committed."""


class ResolutionError(StatementImportError):
    """Applying a resolution action to one possible-duplicate pair failed."""

    def __init__(
        self, action: ResolutionAction, pair: PossibleDuplicate, cause: Any = None
    ) -> None:
        self.action = action
        self.pair = pair
        self.cause = cause
        super().__init__(
            f"failed to apply {action.value!r} to pair "
            f"(incoming={pair.incoming.id}, existing={pair.existing.id}): {cause}"
        )


__all__ = [
    "AccountNotFoundError",
    "LedgerError",
    "ResolutionError",
    "StatementImportError",
    "StatementParseError",
]
