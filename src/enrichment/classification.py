"""
Classification cascade: category ids, relevance and confidence for a video.

Provider answers are only trusted after validation: categories must be a list
of known category ids, relevance and confidence must be numbers (clamped to
[0, 100] and [0, 1]). Anything else counts as a failed provider. When every
provider fails, the shared keyword table decides the categories and the result
carries the fixed fallback scores.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .cascade import attempt_with_fallback, DEFAULT_TIMEOUT_SECONDS
from .keywords import keyword_classify
from .providers import extract_json
from ..database.models import ClassificationSource
from ..utils.error_codes import MalformedProviderResponse
from ..utils.logger import setup_worker_logger

logger = setup_worker_logger('classification')

FALLBACK_RELEVANCE = 50.0
FALLBACK_CONFIDENCE = 0.5


@dataclass
class ClassificationResult:
    category_ids: List[int] = field(default_factory=list)
    relevance: float = FALLBACK_RELEVANCE
    confidence: float = FALLBACK_CONFIDENCE
    source: str = ClassificationSource.KEYWORD_FALLBACK
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.source == ClassificationSource.KEYWORD_FALLBACK

    def to_content_fields(self) -> Dict[str, Any]:
        return {
            'category_ids': list(self.category_ids),
            'relevance': self.relevance,
            'classification_confidence': self.confidence,
            'classification_source': self.source,
        }


def _as_number(data: Dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise MalformedProviderResponse(f"'{key}' is missing or not a number", {'value': repr(value)})
    try:
        number = float(value)
    except ValueError as e:
        raise MalformedProviderResponse(f"'{key}' is not a number", {'value': repr(value)}) from e
    if math.isnan(number) or math.isinf(number):
        raise MalformedProviderResponse(f"'{key}' is not finite", {'value': repr(value)})
    return number


def _as_category_id(value: Any) -> int:
    if isinstance(value, bool):
        raise MalformedProviderResponse("category id is a boolean", {'value': repr(value)})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise MalformedProviderResponse("category id is not an integer", {'value': repr(value)})


def validate_classification(raw: Any, known_ids: Set[int]) -> Dict[str, Any]:
    """Parse and validate a provider answer.

    Returns:
        {'category_ids': [...], 'relevance': float, 'confidence': float}

    Raises:
        MalformedProviderResponse: bad JSON, missing fields, non-numeric scores or unknown ids
    """
    data = raw if isinstance(raw, dict) else extract_json(raw)

    categories = data.get('categories', data.get('category_ids'))
    if not isinstance(categories, list):
        raise MalformedProviderResponse("'categories' is missing or not a list", {'value': repr(categories)})

    category_ids: List[int] = []
    for value in categories:
        category_id = _as_category_id(value)
        if category_id not in known_ids:
            raise MalformedProviderResponse(f"Unknown category id {category_id}", {'category_id': category_id})
        if category_id not in category_ids:
            category_ids.append(category_id)

    relevance = min(100.0, max(0.0, _as_number(data, 'relevance')))
    confidence = min(1.0, max(0.0, _as_number(data, 'confidence')))
    return {'category_ids': category_ids, 'relevance': relevance, 'confidence': confidence}


class ClassificationCascade:
    """Ordered classification providers with a keyword-table fallback."""

    def __init__(self, providers: Sequence[Any], keyword_table: Optional[Dict[str, List[str]]] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS):
        self.providers = list(providers)
        self.keyword_table = keyword_table
        self.timeout = timeout

    async def classify(self, title: str, description: str,
                       available_categories: Iterable[Any]) -> ClassificationResult:
        categories = list(available_categories)
        known_ids = {c['id'] if isinstance(c, dict) else c.id for c in categories}

        outcome = await attempt_with_fallback(
            self.providers,
            call=lambda provider: provider.classify(title, description, categories),
            validate=lambda raw: validate_classification(raw, known_ids),
            fallback=lambda: {
                'category_ids': keyword_classify(title, description, categories, self.keyword_table),
                'relevance': FALLBACK_RELEVANCE,
                'confidence': FALLBACK_CONFIDENCE,
            },
            timeout=self.timeout,
            label='classification',
            logger=logger,
        )

        source = ClassificationSource.KEYWORD_FALLBACK if outcome.used_fallback else outcome.source
        return ClassificationResult(source=source, failures=outcome.failures, **outcome.value)
