"""Letter type recommendation from extracted text.

Scores each known letter type by how much of its label shows up in the
document text. Words are compared by prefix so Russian inflections still
match (``обучение`` / ``обучения``).
"""

import logging
import re

from lettertrack.constants import LETTER_TYPES

logger = logging.getLogger(__name__)

_STOP_WORDS = frozenset(
    {"и", "в", "на", "по", "к", "о", "об", "от", "для", "из", "с", "про", "при", "до", "или", "без", "над"}
)
_SPLIT = re.compile(r"[^A-Za-z0-9\u0400-\u04FF]+")

# Label tokens longer than this are compared by this many leading characters.
_PREFIX_LENGTH = 6
_FULL_LABEL_BONUS = 3


def _normalize(text: str) -> str:
    return text.lower().replace("ё", "е")


def _tokenize(text: str) -> list[str]:
    return [token for token in _SPLIT.split(_normalize(text)) if token]


def _label_tokens(label: str) -> list[str]:
    return [t for t in _tokenize(label) if len(t) > 2 and t not in _STOP_WORDS]


def _token_matches(token: str, words: list[str]) -> bool:
    needle = token[:_PREFIX_LENGTH]
    return any(word.startswith(needle) for word in words)


def score_letter_type(label: str, source: str, words: list[str]) -> int:
    score = _FULL_LABEL_BONUS if _normalize(label) in source else 0
    return score + sum(1 for token in _label_tokens(label) if _token_matches(token, words))


def recommend_letter_type(
    content: str | None = None,
    content_russian: str | None = None,
    organization: str | None = None,
    filename: str | None = None,
    types: tuple[str, ...] = LETTER_TYPES,
) -> str:
    """Return the best-matching letter type, or ``""`` when nothing scores enough.

    Single-word labels need one hit; longer labels need two. Ties keep the
    type listed first.
    """
    source_text = " ".join(part for part in (content_russian, content, organization, filename) if part)
    if not source_text.strip():
        return ""

    source = _normalize(source_text)
    words = _tokenize(source_text)
    best_type = ""
    best_score = 0

    for label in types:
        score = score_letter_type(label, source, words)
        min_score = 1 if len(_label_tokens(label)) <= 1 else 2
        if score >= min_score and score > best_score:
            best_score = score
            best_type = label

    if best_type:
        logger.debug("Recommended type %r (score %d)", best_type, best_score)
    return best_type
