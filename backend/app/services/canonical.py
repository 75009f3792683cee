"""Pure text normalization that maps market questions onto canonical events.

The functions here perform no I/O so clustering and scoring can be unit tested
in isolation. ``normalize`` produces the :class:`CanonicalEvent` key used for
grouping, ``analyze_question`` additionally reports the polarity of the
wording, and ``question_similarity`` is the textual similarity used for
tie-breaks, cluster confidence and feedback matching.
"""

from __future__ import annotations

import re
from functools import lru_cache

from app.domain import CanonicalEvent, QuestionAnalysis

STOP_WORDS = frozenset(
    {
        "the", "will", "and", "for", "are", "but", "not", "you", "all", "can",
        "had", "her", "was", "one", "our", "out", "has", "have", "been", "were",
        "they", "their", "what", "when", "where", "which", "who", "how", "than",
        "that", "this", "these", "those", "then", "some", "such", "into", "other",
        "before", "after", "during", "between", "under", "over", "through", "about",
        "does", "did", "doing", "would", "could", "should", "might", "must",
        "being", "there", "here", "from", "with", "also", "just", "only", "very",
        "most", "more", "less", "much", "many", "any", "each", "every", "both",
    }
)

GENERIC_WORDS = frozenset(
    {"market", "question", "resolve", "resolves", "happen", "happens", "yes", "end", "year"}
)

NEGATION_WORDS = frozenset(
    {"not", "wont", "never", "dont", "doesnt", "isnt", "cant", "wouldnt", "didnt"}
)

MONTHS = frozenset(
    {
        "january", "february", "march", "april", "may", "june", "july",
        "august", "september", "october", "november", "december",
    }
)

# canonical verb -> (surface forms, surface forms with inverted polarity)
VERB_GROUPS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "win": (
        ("win", "wins", "winning", "won", "clinch", "clinches", "capture", "captures",
         "secure", "secures", "claim", "claims", "take", "takes"),
        ("lose", "loses", "losing", "lost"),
    ),
    "nominate": (
        ("nominate", "nominated", "nomination", "nominee", "select", "selected",
         "selection", "choose", "chosen", "pick", "picked"),
        (),
    ),
    "elect": (("elect", "elected", "vote", "voted", "reelected", "reelect"), ()),
    "confirm": (
        ("confirm", "confirmed", "approve", "approved", "confirmation", "approval"),
        (),
    ),
    "pass": (
        ("pass", "passed", "passing", "enact", "enacted", "ratify", "ratified"),
        ("fail", "failed", "failing", "reject", "rejected", "veto", "vetoed"),
    ),
    "announce": (
        ("announce", "announced", "announces", "reveal", "revealed", "disclose", "disclosed"),
        (),
    ),
    "resign": (("resign", "resigns", "resigned", "quit", "quits", "leave", "leaves"), ()),
    "die": (("die", "dies", "died", "death", "deceased"), ()),
    "convict": (
        ("convict", "convicted", "conviction", "guilty"),
        ("acquit", "acquitted", "acquittal", "innocent"),
    ),
    "impeach": (("impeach", "impeached", "impeachment"), ()),
    "reach": (
        ("reach", "reaches", "reached", "hit", "hits", "surpass", "surpasses",
         "exceed", "exceeds", "above"),
        ("below",),
    ),
    "beat": (
        ("beat", "beats", "beaten", "defeat", "defeats", "defeated", "overcome", "overcomes"),
        (),
    ),
}

_VERB_LOOKUP: dict[str, tuple[str, bool]] = {}
for _canonical, (_forms, _inverted) in VERB_GROUPS.items():
    for _form in _forms:
        _VERB_LOOKUP[_form] = (_canonical, False)
    for _form in _inverted:
        _VERB_LOOKUP[_form] = (_canonical, True)

# multi-word phrases collapsed before tokenization (order matters: longest first)
PHRASE_SYNONYMS: tuple[tuple[str, str], ...] = (
    ("united states of america", "us"),
    ("united states", "us"),
    ("united kingdom", "uk"),
    ("great britain", "uk"),
    ("european union", "eu"),
    ("new york", "new_york"),
    ("presidential election", "election"),
    ("general election", "election"),
    ("midterm elections", "midterms"),
    ("step down", "resign"),
    ("pass away", "die"),
    ("not guilty", "acquit"),
    ("found guilty", "guilty"),
    ("super bowl", "super_bowl"),
    ("world cup", "world_cup"),
    ("academy awards", "oscars"),
    ("academy award", "oscars"),
    ("best picture", "best_picture"),
    ("rate cut", "rate_cut"),
    ("rate hike", "rate_hike"),
    ("interest rates", "interest_rate"),
    ("interest rate", "interest_rate"),
    ("will not", "wont"),
)

JURISDICTIONS: dict[str, str] = {
    "us": "us", "usa": "us", "america": "us", "american": "us",
    "uk": "uk", "britain": "uk", "british": "uk", "england": "uk",
    "eu": "eu", "europe": "eu",
    "canada": "canada", "canadian": "canada",
    "france": "france", "french": "france",
    "germany": "germany", "german": "germany",
    "china": "china", "chinese": "china",
    "russia": "russia", "russian": "russia",
    "ukraine": "ukraine", "ukrainian": "ukraine",
    "india": "india", "indian": "india",
    "japan": "japan", "japanese": "japan",
    "mexico": "mexico", "brazil": "brazil", "australia": "australia",
    "israel": "israel", "taiwan": "taiwan",
    "california": "california", "texas": "texas", "florida": "florida",
    "new_york": "new_york", "pennsylvania": "pennsylvania", "georgia": "georgia",
    "arizona": "arizona", "michigan": "michigan", "wisconsin": "wisconsin",
    "nevada": "nevada", "ohio": "ohio",
}

SUBJECTS: dict[str, str] = {
    "election": "election", "elections": "election", "midterms": "election",
    "presidency": "election", "president": "election",
    "primary": "election", "primaries": "election", "runoff": "election",
    "super_bowl": "super_bowl",
    "world_cup": "world_cup",
    "oscars": "oscars", "oscar": "oscars", "best_picture": "oscars",
    "olympics": "olympics",
    "championship": "championship", "finals": "championship",
    "recession": "recession",
    "inflation": "inflation", "cpi": "inflation",
    "rate_cut": "interest_rate", "rate_hike": "interest_rate", "interest_rate": "interest_rate",
    "fed": "interest_rate",
    "bitcoin": "crypto", "btc": "crypto", "ethereum": "crypto", "eth": "crypto",
    "war": "conflict", "ceasefire": "conflict",
    "senate": "legislature", "house": "legislature", "congress": "legislature",
    "parliament": "legislature", "bill": "legislature",
}

_YEAR_RE = re.compile(r"^(?:19|20)\d{2}$")
_APOSTROPHE_RE = re.compile(r"['’]")
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")
_DEADLINE_RE = re.compile(r"\bby\s+((?:end of\s+)?(?:[a-z]+\s+)?\d{4})")
_BEFORE_RE = re.compile(r"\bbefore\s+((?:[a-z]+\s+)?\d{4})")
_AFTER_RE = re.compile(r"\bafter\s+((?:[a-z]+\s+)?\d{4})")

SUBJECTIVE_KEYWORDS = (
    "subjective", "opinion", "feel", "think", "believe",
    "best", "worst", "favorite", "prefer", "personally",
    "vibes", "seems", "might", "probably", "i think",
    "my prediction", "personal market",
)


def clean_text(text: str) -> str:
    """Lowercase, drop punctuation, squeeze whitespace and collapse synonym phrases."""

    lowered = _APOSTROPHE_RE.sub("", text.lower())
    stripped = _PUNCT_RE.sub(" ", lowered)
    squeezed = _SPACE_RE.sub(" ", stripped).strip()
    padded = f" {squeezed} "
    for phrase, replacement in PHRASE_SYNONYMS:
        padded = padded.replace(f" {phrase} ", f" {replacement} ")
    return padded.strip()


def tokenize(text: str) -> list[str]:
    return [
        word
        for word in clean_text(text).split()
        if len(word) > 2 and word not in STOP_WORDS
    ]


def extract_qualifiers(text: str) -> dict[str, str]:
    """Qualifiers that change the meaning of otherwise identical questions."""

    lowered = _SPACE_RE.sub(" ", _APOSTROPHE_RE.sub("", text.lower()))
    qualifiers: dict[str, str] = {}

    for key, pattern in (("deadline", _DEADLINE_RE), ("before", _BEFORE_RE), ("after", _AFTER_RE)):
        match = pattern.search(lowered)
        if match:
            qualifiers[key] = match.group(1)

    if "first round" in lowered:
        qualifiers["round"] = "first"
    if "second round" in lowered:
        qualifiers["round"] = "second"
    if "final round" in lowered:
        qualifiers["round"] = "final"
    if "general election" in lowered:
        qualifiers["stage"] = "general"
    if "primary" in lowered or "primaries" in lowered:
        qualifiers["stage"] = "primary"
    if "runoff" in lowered:
        qualifiers["stage"] = "runoff"
    return qualifiers


@lru_cache(maxsize=8192)
def analyze_question(question: str) -> QuestionAnalysis:
    words = clean_text(question).split()

    negated = any(word in NEGATION_WORDS for word in words)
    year: str | None = None
    jurisdiction: str | None = None
    subject: str | None = None
    verb: str | None = None
    event_tokens: set[str] = set()

    for word in words:
        if _YEAR_RE.match(word):
            year = year or word
            continue
        if word in JURISDICTIONS:
            jurisdiction = jurisdiction or JURISDICTIONS[word]
            continue
        if word in _VERB_LOOKUP:
            canonical, inverted = _VERB_LOOKUP[word]
            if verb is None:
                verb = canonical
                if inverted:
                    negated = not negated
            continue
        if word in SUBJECTS:
            subject = subject or SUBJECTS[word]
            continue
        if (
            len(word) <= 2
            or word in STOP_WORDS
            or word in NEGATION_WORDS
            or word in GENERIC_WORDS
            or word in MONTHS
            or word.isdigit()
        ):
            continue
        event_tokens.add(word)

    event_parts = sorted(event_tokens)
    if verb:
        event_parts.append(verb)

    qualifiers = extract_qualifiers(question)
    condition = ";".join(f"{key}={value}" for key, value in sorted(qualifiers.items())) or None

    canonical = CanonicalEvent(
        subject=subject or "general",
        event=" ".join(event_parts),
        year=year,
        jurisdiction=jurisdiction,
        condition=condition,
    )
    return QuestionAnalysis(canonical=canonical, negated=negated, tokens=frozenset(tokenize(question)))


def normalize(question: str) -> CanonicalEvent:
    return analyze_question(question).canonical


def keys_fuzzy_equal(first: CanonicalEvent, second: CanonicalEvent) -> bool:
    """Same subject, nested event wording, and no conflicting optional fields."""

    if first.subject != second.subject:
        return False
    for left, right in (
        (first.year, second.year),
        (first.jurisdiction, second.jurisdiction),
        (first.condition, second.condition),
    ):
        if left is not None and right is not None and left != right:
            return False
    tokens_a, tokens_b = first.event_tokens, second.event_tokens
    if not tokens_a or not tokens_b:
        return False
    return tokens_a <= tokens_b or tokens_b <= tokens_a


def _char_ngrams(text: str, size: int = 3) -> set[str]:
    cleaned = _PUNCT_RE.sub("", text.lower())
    return {cleaned[index : index + size] for index in range(len(cleaned) - size + 1)}


def ngram_similarity(first: str, second: str, size: int = 3) -> float:
    grams_a = _char_ngrams(first, size)
    grams_b = _char_ngrams(second, size)
    if not grams_a or not grams_b:
        return 0.0
    return len(grams_a & grams_b) / len(grams_a | grams_b)


@lru_cache(maxsize=65536)
def question_similarity(first: str, second: str) -> float:
    """Blend of token Jaccard (60%) and character trigram overlap (40%), in [0, 1]."""

    if first == second:
        return 1.0
    tokens_a = set(tokenize(first))
    tokens_b = set(tokenize(second))
    union = tokens_a | tokens_b
    jaccard = len(tokens_a & tokens_b) / len(union) if union else 0.0
    score = jaccard * 0.6 + ngram_similarity(first, second) * 0.4
    return max(0.0, min(1.0, score))


def has_objective_resolution(question: str, description: str | None = None) -> bool:
    text = f"{question} {description or ''}".lower()
    return not any(keyword in text for keyword in SUBJECTIVE_KEYWORDS)


__all__ = [
    "analyze_question",
    "clean_text",
    "extract_qualifiers",
    "has_objective_resolution",
    "keys_fuzzy_equal",
    "ngram_similarity",
    "normalize",
    "question_similarity",
    "tokenize",
]
