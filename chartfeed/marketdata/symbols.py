"""Ticker spelling variants for share classes (BRK.B / BRK-B / BRK/B)."""

from __future__ import annotations


def normalize_symbol(raw: str | None) -> str:
    return (raw or "").strip().upper().replace("$", "")


def symbol_candidates(raw: str | None) -> list[str]:
    """Ordered, de-duplicated spellings to try against the provider.

    The normalized input always comes first; dot/dash/slash substitutions
    follow. Pure function, no I/O.
    """
    symbol = normalize_symbol(raw)
    if not symbol:
        return []

    ordered = [
        symbol,
        symbol.replace(".", "-"),
        symbol.replace("-", "."),
        symbol.replace("/", "."),
        symbol.replace("/", "-"),
    ]
    seen: set[str] = set()
    out: list[str] = []
    for candidate in ordered:
        if candidate and candidate not in seen:
            seen.add(candidate)
            out.append(candidate)
    return out
