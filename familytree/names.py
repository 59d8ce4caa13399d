from __future__ import annotations

import re

PRIVATE_LABEL = "Private"

# Surname particles kept lowercase for display when the name has more than one token.
_NAME_LOWER_PARTICLES = {
    "de",
    "du",
    "des",
    "del",
    "della",
    "da",
    "di",
    "la",
    "le",
    "les",
    "van",
    "der",
    "den",
    "ter",
    "von",
    "zu",
}

_ROMAN_NUMERALS = {"i", "ii", "iii", "iv", "v", "vi", "vii", "viii", "ix", "x"}

_ELIDED_PREFIXES = ("d'", "l'")


def _cap_simple(word: str) -> str:
    wl = word.lower()
    if wl in _ROMAN_NUMERALS:
        return wl.upper()
    if wl.startswith("mc") and len(word) > 2 and word[2].isalpha():
        return "Mc" + word[2].upper() + word[3:].lower()
    return word[:1].upper() + word[1:].lower()


def _cap_word(word: str) -> str:
    if "-" in word:
        return "-".join(_cap_word(p) for p in word.split("-"))
    wl = word.lower()
    for prefix in _ELIDED_PREFIXES:
        if wl.startswith(prefix) and len(word) > len(prefix):
            return prefix + _cap_word(word[len(prefix):])
    if wl.startswith("o'") and len(word) > 2:
        return "O'" + _cap_word(word[2:])
    return _cap_simple(word)


def _smart_title_case_name(raw: str | None) -> str | None:
    """Best-effort title casing of a name for display.

    - ALLCAPS / lowercase input is normalized ("JEAN-PIERRE" -> "Jean-Pierre").
    - Particles stay lowercase in multi-token names ("DE LA FONTAINE" -> "de la Fontaine").
    - Elisions keep their prefix ("d'artagnan" -> "d'Artagnan").
    - "Private" is returned untouched.
    """

    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s == PRIVATE_LABEL:
        return s

    tokens = [t for t in re.split(r"\s+", s) if t]
    multi = len(tokens) > 1
    out: list[str] = []
    for tok in tokens:
        if multi and tok.lower() in _NAME_LOWER_PARTICLES:
            out.append(tok.lower())
            continue
        out.append(_cap_word(tok))
    return " ".join(out)


def _display_name(first_name: str | None, last_name: str | None) -> str:
    """Label used on tree nodes: given name title-cased, family name uppercased."""

    given = _smart_title_case_name(first_name) or ""
    family = (last_name or "").strip().upper()
    return f"{given} {family}".strip()
