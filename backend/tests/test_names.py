"""
Unit tests for club name canonicalization.

Run: pytest backend/tests/test_names.py -v
"""
from __future__ import annotations

import string

import pytest

from ingest.normalization.names import canonicalize, is_derby, lookup_key, names_match


# ── Alias table ─────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw",
    ["Man Utd", "Manchester United", "Manchester United FC", "Man United", "manchester utd", "  Man   Utd  "],
)
def test_manchester_united_spellings(raw: str) -> None:
    assert canonicalize(raw) == "Manchester United"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Brighton & Hove Albion", "Brighton and Hove Albion"),
        ("Brighton", "Brighton and Hove Albion"),
        ("Wolves", "Wolverhampton Wanderers"),
        ("Spurs", "Tottenham Hotspur"),
        ("Tottenham", "Tottenham Hotspur"),
        ("Bournemouth", "AFC Bournemouth"),
        ("AFC Bournemouth", "AFC Bournemouth"),
        ("Nott'm Forest", "Nottingham Forest"),
        ("Man City", "Manchester City"),
        ("West Ham", "West Ham United"),
        ("Newcastle Utd", "Newcastle United"),
        ("Arsenal FC", "Arsenal"),
    ],
)
def test_aliases(raw: str, expected: str) -> None:
    assert canonicalize(raw) == expected


def test_unknown_name_is_trimmed_not_rewritten() -> None:
    assert canonicalize("  Real   Madrid ") == "Real Madrid"
    assert canonicalize("Atlético Madrid") == "Atlético Madrid"


def test_diacritics_are_ignored_for_lookup() -> None:
    assert lookup_key("Atlético Madrid") == "atleticomadrid"
    assert canonicalize("Chélsea") == "Chelsea"


def test_hyphen_and_suffix_normalization() -> None:
    assert lookup_key("Wolverhampton-Wanderers FC") == lookup_key("Wolverhampton Wanderers")


# ── Totality and idempotency ────────────────────────────────────────────

def test_empty_and_blank_input() -> None:
    assert canonicalize("") == ""
    assert canonicalize("   ") == ""


@pytest.mark.parametrize("raw", list(string.printable) + ["FC", "a.f.c.", "&&", "Man Utd", "Brighton & Hove Albion", "X-Y'Z"])
def test_canonicalize_is_idempotent(raw: str) -> None:
    once = canonicalize(raw)
    assert canonicalize(once) == once


def test_names_match() -> None:
    assert names_match("Man Utd", "Manchester United FC")
    assert names_match("Spurs", "Tottenham Hotspur")
    assert not names_match("Manchester United", "Manchester City")


# ── Derbies ─────────────────────────────────────────────────────────────

def test_is_derby() -> None:
    assert is_derby("Man Utd", "Liverpool")
    assert is_derby("Arsenal", "Spurs")
    assert not is_derby("Arsenal", "Brentford")
    assert not is_derby("Arsenal", "Arsenal FC")
