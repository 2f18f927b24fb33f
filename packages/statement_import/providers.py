"""Registry of supported statement providers.

A provider fixes which extractor and which description rules apply to a file,
which file formats it accepts, and (for exports that mix a current account
with a savings pot) the name of the savings sub-account.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    key: str
    display_name: str
    formats: frozenset[str]
    savings_account_name: str | None = None


TRADE_REPUBLIC = ProviderSpec(
    key="trade_republic",
    display_name="Trade Republic",
    formats=frozenset({"pdf"}),
)
REVOLUT = ProviderSpec(
    key="revolut",
    display_name="Revolut",
    formats=frozenset({"csv", "xlsx"}),
    savings_account_name="Revolut Savings",
)

PROVIDERS: dict[str, ProviderSpec] = {p.key: p for p in (TRADE_REPUBLIC, REVOLUT)}

_ALIASES = {
    "tr": "trade_republic",
    "traderepublic": "trade_republic",
}


def get_provider(name: str) -> ProviderSpec:
    """Look up a provider by key, tolerating case, spaces and dashes."""

    key = name.strip().lower().replace(" ", "_").replace("-", "_")
    key = _ALIASES.get(key, key)
    try:
        return PROVIDERS[key]
    except KeyError:
        raise ValueError(f"unknown provider: {name!r}") from None


__all__ = ["PROVIDERS", "REVOLUT", "TRADE_REPUBLIC", "ProviderSpec", "get_provider"]
