from __future__ import annotations

from chartfeed.marketdata.symbols import normalize_symbol, symbol_candidates


def test_class_share_dot_gets_dash_variant() -> None:
    assert symbol_candidates("BRK.B") == ["BRK.B", "BRK-B"]


def test_plain_symbol_has_single_candidate() -> None:
    assert symbol_candidates("AAPL") == ["AAPL"]


def test_input_is_normalized_first() -> None:
    out = symbol_candidates(" brk-b ")
    assert out[0] == "BRK-B"
    assert out == ["BRK-B", "BRK.B"]


def test_slash_notation_expands_to_dot_and_dash() -> None:
    assert symbol_candidates("BF/B") == ["BF/B", "BF.B", "BF-B"]


def test_no_duplicates_and_empty_input() -> None:
    out = symbol_candidates("MSFT")
    assert len(out) == len(set(out))
    assert symbol_candidates("") == []
    assert symbol_candidates(None) == []
    assert normalize_symbol("$tsla") == "TSLA"
