"""
Club name canonicalization.

Every source spells clubs differently ("Man Utd", "Manchester United FC",
"Brighton & Hove Albion"). canonicalize() maps all of them to one display
name; that name is the join key for reconciliation.
"""
from __future__ import annotations

import re
import unicodedata

_STRIP_TOKENS = frozenset({"fc", "afc", "cf", "sc"})
_TOKEN_REWRITES = {"utd": "united"}
_NON_ALNUM = re.compile(r"[^a-z0-9 ]+")
_WS = re.compile(r"\s+")

# Canonical display names. Each is reachable from its own lookup key.
_CANONICAL_CLUBS = (
    "AFC Bournemouth",
    "Arsenal",
    "Aston Villa",
    "Brentford",
    "Brighton and Hove Albion",
    "Burnley",
    "Chelsea",
    "Crystal Palace",
    "Everton",
    "Fulham",
    "Ipswich Town",
    "Leeds United",
    "Leicester City",
    "Liverpool",
    "Luton Town",
    "Manchester City",
    "Manchester United",
    "Newcastle United",
    "Nottingham Forest",
    "Sheffield United",
    "Southampton",
    "Sunderland",
    "Tottenham Hotspur",
    "West Ham United",
    "Wolverhampton Wanderers",
)

# lookup key -> canonical display name
_ALIASES = {
    "manunited": "Manchester United",
    "manchesterunited": "Manchester United",
    "mancity": "Manchester City",
    "manchestercty": "Manchester City",
    "spurs": "Tottenham Hotspur",
    "tottenham": "Tottenham Hotspur",
    "westham": "West Ham United",
    "newcastle": "Newcastle United",
    "wolves": "Wolverhampton Wanderers",
    "wolverhampton": "Wolverhampton Wanderers",
    "brighton": "Brighton and Hove Albion",
    "brightonhovealbion": "Brighton and Hove Albion",
    "leeds": "Leeds United",
    "leicester": "Leicester City",
    "forest": "Nottingham Forest",
    "nottsforest": "Nottingham Forest",
    "nottmforest": "Nottingham Forest",
    "bournemouth": "AFC Bournemouth",
    "ipswich": "Ipswich Town",
    "luton": "Luton Town",
    "villa": "Aston Villa",
    "palace": "Crystal Palace",
}

# Clubs whose meetings are flagged as derbies / big matches.
DERBY_CLUBS = frozenset(
    {
        "Arsenal",
        "Manchester City",
        "Aston Villa",
        "Chelsea",
        "Liverpool",
        "Tottenham Hotspur",
        "Manchester United",
        "Newcastle United",
    }
)


def _tokens(raw_name: str) -> list[str]:
    s = unicodedata.normalize("NFKD", raw_name)
    s = "".join(ch for ch in s if not unicodedata.combining(ch)).lower()
    s = s.replace("&", " and ").replace("-", " ").replace("'", "").replace("’", "").replace(".", "")
    s = _NON_ALNUM.sub(" ", s)
    tokens = []
    for token in s.split():
        if token in _STRIP_TOKENS:
            continue
        tokens.append(_TOKEN_REWRITES.get(token, token))
    return tokens


def lookup_key(raw_name: str) -> str:
    """Alias-table key: ascii, lower-case, no club-type tokens, no separators."""
    return "".join(_tokens(raw_name))


def _build_table() -> dict[str, str]:
    table = {lookup_key(name): name for name in _CANONICAL_CLUBS}
    for key, name in _ALIASES.items():
        table.setdefault(key, name)
    return table


_TABLE = _build_table()


def canonicalize(raw_name: str) -> str:
    """
    Map any spelling of a club to its canonical display name.

    Total and idempotent: unknown names come back trimmed with whitespace
    collapsed, known names come back as their canonical display form.
    """
    if not raw_name:
        return ""
    found = _TABLE.get(lookup_key(raw_name))
    if found is not None:
        return found
    return _WS.sub(" ", raw_name).strip()


def names_match(a: str, b: str) -> bool:
    return lookup_key(canonicalize(a)) == lookup_key(canonicalize(b))


def is_derby(home_team: str, away_team: str) -> bool:
    home = canonicalize(home_team)
    away = canonicalize(away_team)
    if home == away:
        return False
    return home in DERBY_CLUBS and away in DERBY_CLUBS
