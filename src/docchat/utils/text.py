"""Text transformers applied to streamed model output.

A transformer is any callable mapping a text fragment to a normalised
fragment. Transformers must be pure and idempotent: the stream buffer applies
them once per committed fragment and never re-applies them to text that has
already been emitted.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, Protocol


class TextTransformer(Protocol):
    def __call__(self, text: str) -> str: ...


OR_TO_OUR = (
    "color", "favor", "flavor", "honor", "humor", "labor", "neighbor",
    "rumor", "splendor", "vapor", "vigor", "ardor", "candor", "clamor",
    "demeanor", "endeavor", "fervor", "harbor", "odor", "parlor", "rancor",
    "rigor", "savior", "valor", "behavior", "glamor", "tumor",
)

IZE_STEMS = (
    "real", "organ", "modern", "character", "civil", "colon", "special",
    "general", "legal", "final", "central", "personal", "national", "social",
    "visual", "normal", "local", "moral", "neutral", "natural", "criminal",
    "partial", "capital", "hospital", "formal", "digital", "vital", "total",
    "royal", "brutal", "serial", "material", "memorial", "editorial",
    "standard", "custom", "minim", "maxim", "vocal", "ideal", "emphas",
    "summar", "categor", "apolog", "recogn", "critic", "symbol", "util",
    "stabil", "mobil", "author", "terror", "popular", "familiar", "regular",
    "secular", "similar", "particular", "polar", "solar", "amateur",
    "epitom", "synthes", "hypothes", "emuls", "decentral",
)

YZE_STEMS = ("anal", "paral", "catal", "hydrol", "electrol")

ER_TO_RE = (
    "center", "fiber", "liter", "meter", "theater", "saber", "somber",
    "caliber", "meager", "scepter", "specter", "maneuver", "louver",
)

ENSE_TO_ENCE = ("defense", "offense", "license", "pretense")

DOUBLE_L = {
    "traveling": "travelling",
    "traveled": "travelled",
    "traveler": "traveller",
    "canceled": "cancelled",
    "canceling": "cancelling",
    "labeled": "labelled",
    "labeling": "labelling",
    "modeling": "modelling",
    "modeled": "modelled",
    "counselor": "counsellor",
    "counseling": "counselling",
    "leveled": "levelled",
    "leveling": "levelling",
    "fueled": "fuelled",
    "fueling": "fuelling",
}

EXCEPTIONS = {
    "gray": "grey",
    "check": "cheque",
    "program": "programme",
    "tire": "tyre",
    "aluminum": "aluminium",
    "mom": "mum",
    "math": "maths",
    "airplane": "aeroplane",
    "esthetic": "aesthetic",
    "anesthesia": "anaesthesia",
    "catalog": "catalogue",
    "dialog": "dialogue",
    "jewelry": "jewellery",
    "pajamas": "pyjamas",
    "plow": "plough",
    "skeptical": "sceptical",
    "skillful": "skilful",
    "story": "storey",
}


def _build_table() -> Dict[str, str]:
    table: Dict[str, str] = {}
    for word in OR_TO_OUR:
        table[word] = word[:-2] + "our"
    for stem in IZE_STEMS:
        for us, uk in (("ize", "ise"), ("ization", "isation"), ("izing", "ising"),
                       ("ized", "ised"), ("izer", "iser")):
            table[stem + us] = stem + uk
    for stem in YZE_STEMS:
        for us, uk in (("yze", "yse"), ("yzing", "ysing"), ("yzed", "ysed"), ("yzer", "yser")):
            table[stem + us] = stem + uk
    for word in ER_TO_RE:
        table[word] = word[:-2] + "re"
    for word in ENSE_TO_ENCE:
        table[word] = word[:-4] + "ence"
    table.update(DOUBLE_L)
    table.update(EXCEPTIONS)
    return table


def _compile(words: Iterable[str]) -> re.Pattern[str]:
    alternation = "|".join(sorted(words, key=len, reverse=True))
    # Word edges are letters and digits only; ``_`` separates words like the stream buffer does.
    return re.compile(rf"(?<![^\W_])(?:{alternation})(?![^\W_])", re.IGNORECASE)


BRITISH_SPELLINGS = _build_table()
_BRITISH_PATTERN = _compile(BRITISH_SPELLINGS)


def preserve_case(original: str, replacement: str) -> str:
    """Give ``replacement`` the capitalisation of ``original``."""
    if original.isupper():
        return replacement.upper()
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def to_british_spelling(text: str) -> str:
    """Rewrite American spellings as British ones, whole words only."""
    if not text:
        return text
    return _BRITISH_PATTERN.sub(
        lambda match: preserve_case(match.group(0), BRITISH_SPELLINGS[match.group(0).lower()]),
        text,
    )


def identity(text: str) -> str:
    return text


TRANSFORMERS: Dict[str, Callable[[str], str]] = {
    "british": to_british_spelling,
    "none": identity,
}


def get_transformer(name: str) -> Callable[[str], str]:
    """Look up a transformer by its configuration name."""
    try:
        return TRANSFORMERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown transformer {name!r}; expected one of {', '.join(sorted(TRANSFORMERS))}"
        ) from None
