"""
Summary cascade: short summary plus language code for a video.

Providers answer in a two-line format:

    LANGUAGE: es
    SUMMARY: ...

(a JSON object with 'summary' and 'language' is accepted too). When every
provider fails the summary is built from a title template and the language is
guessed from stop words. Fallback summaries start with DEGRADED_SUMMARY_PREFIX
so a later refresh can find and retry them.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .cascade import attempt_with_fallback, DEFAULT_TIMEOUT_SECONDS
from .keywords import guess_language
from ..utils.error_codes import MalformedProviderResponse
from ..utils.logger import setup_worker_logger

logger = setup_worker_logger('summary')

DEGRADED_SUMMARY_PREFIX = '[auto] '
TEMPLATE_SOURCE = 'template_fallback'
DEFAULT_TEMPLATE = 'Contenido sobre Atlético de Madrid: {title}'

# Summaries this short are treated as missing
MIN_SUMMARY_LENGTH = 10

_LANGUAGE_LINE = re.compile(r'^\s*\**\s*LANGUAGE\s*\**\s*:\s*(\S+)', re.IGNORECASE | re.MULTILINE)
_SUMMARY_LINE = re.compile(r'^\s*\**\s*SUMMARY\s*\**\s*:\s*([\s\S]+)', re.IGNORECASE | re.MULTILINE)


@dataclass
class SummaryResult:
    summary: str
    language_code: str
    source: str = TEMPLATE_SOURCE
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return is_degraded_summary(self.summary)

    def to_content_fields(self) -> Dict[str, Any]:
        return {'summary': self.summary, 'language': self.language_code, 'summary_source': self.source}


def is_degraded_summary(summary: Optional[str]) -> bool:
    """True for summaries that are missing, too short, or produced by the fallback."""
    if not summary or len(summary.strip()) <= MIN_SUMMARY_LENGTH:
        return True
    return summary.startswith(DEGRADED_SUMMARY_PREFIX)


def _normalize_language(code: Any) -> str:
    if not isinstance(code, str):
        raise MalformedProviderResponse("language is missing", {'value': repr(code)})
    code = code.strip().strip('*"\'.,').lower()
    if not re.fullmatch(r'[a-z]{2}', code):
        raise MalformedProviderResponse(f"Invalid language code {code!r}", {'value': code})
    return code


def validate_summary(raw: Any) -> Dict[str, str]:
    """Parse and validate a provider answer into {'summary', 'language_code'}.

    Raises:
        MalformedProviderResponse: missing fields, invalid language code or a too-short summary
    """
    if isinstance(raw, dict):
        data = raw
    else:
        text = (raw or '').strip()
        data = None
        if text.startswith('{'):
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                data = None
        if data is None:
            language = _LANGUAGE_LINE.search(text)
            summary = _SUMMARY_LINE.search(text)
            if not summary:
                raise MalformedProviderResponse("No SUMMARY line in response", {'response': text[:200]})
            # A LANGUAGE line after the summary must not leak into it
            summary_text = _LANGUAGE_LINE.sub('', summary.group(1))
            data = {'summary': summary_text, 'language': language.group(1) if language else None}

    summary = data.get('summary')
    if not isinstance(summary, str) or len(summary.strip()) <= MIN_SUMMARY_LENGTH:
        raise MalformedProviderResponse("Summary is missing or too short", {'value': repr(summary)[:100]})
    summary = summary.strip()
    if summary.startswith(DEGRADED_SUMMARY_PREFIX):
        summary = summary[len(DEGRADED_SUMMARY_PREFIX):].strip()

    language = _normalize_language(data.get('language', data.get('language_code')))
    return {'summary': summary, 'language_code': language}


def fallback_summary(title: str, description: str = '', template: str = DEFAULT_TEMPLATE,
                     languages: Optional[Dict[str, Dict[str, Any]]] = None,
                     default_language: str = 'en') -> Dict[str, str]:
    """Template summary from the title, marked with the degraded prefix, plus a stop-word language guess"""
    return {
        'summary': DEGRADED_SUMMARY_PREFIX + template.format(title=(title or '').strip()),
        'language_code': guess_language(f"{title or ''} {description or ''}", languages, default_language),
    }


class SummaryCascade:
    """Ordered summary providers with a template fallback."""

    def __init__(self, providers: Sequence[Any], template: str = DEFAULT_TEMPLATE,
                 languages: Optional[Dict[str, Dict[str, Any]]] = None,
                 default_language: str = 'en',
                 timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS):
        self.providers = list(providers)
        self.template = template
        self.languages = languages
        self.default_language = default_language
        self.timeout = timeout

    async def summarize(self, title: str, description: str) -> SummaryResult:
        outcome = await attempt_with_fallback(
            self.providers,
            call=lambda provider: provider.summarize(title, description),
            validate=validate_summary,
            fallback=lambda: fallback_summary(title, description, self.template,
                                              self.languages, self.default_language),
            timeout=self.timeout,
            label='summary',
            logger=logger,
        )
        source = TEMPLATE_SOURCE if outcome.used_fallback else outcome.source
        return SummaryResult(source=source, failures=outcome.failures, **outcome.value)
