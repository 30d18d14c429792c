"""
Text matching helpers shared by the quality filter and the keyword classifier.

Matching is accent- and case-insensitive ("Atlético" matches "atletico") and
respects word boundaries ("gol" does not match "golf").
"""
import re
import unicodedata
from functools import lru_cache
from typing import List


def fold_text(text: str) -> str:
    """Lower-case and strip accents"""
    if not text:
        return ""
    normalized = unicodedata.normalize('NFKD', text)
    stripped = ''.join(c for c in normalized if not unicodedata.combining(c))
    return stripped.casefold()


@lru_cache(maxsize=1024)
def _term_pattern(folded_term: str) -> re.Pattern:
    return re.compile(r'(?<!\w)' + re.escape(folded_term) + r'(?!\w)')


def contains_term(folded_text: str, term: str) -> bool:
    """Whether term occurs as a whole word/phrase in already-folded text."""
    folded_term = fold_text(term).strip()
    if not folded_term:
        return False
    return _term_pattern(folded_term).search(folded_text) is not None


def tokenize(text: str) -> List[str]:
    return re.findall(r'\w+', fold_text(text))
