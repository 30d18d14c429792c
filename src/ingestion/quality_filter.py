"""
Quality filter: decides whether a candidate is worth ingesting.

Checks run in this order:
1. view count against the platform floor (always applied)
2. "always allow" channels skip every keyword check
3. exclusion terms, word-boundary matched against title + channel title
   (a term covered by a disambiguation rule is excluded only when none of the
   rule's subject keywords appear in the same text)
4. platform relevance keywords exposed by the source adapter, when any
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any, Iterable, Set

from .base import Candidate
from ..utils.text_utils import fold_text, contains_term


@dataclass(frozen=True)
class DisambiguationRule:
    """An exclusion term that also names the subject ('madrid' in 'Atlético de Madrid')."""
    term: str
    subject_keywords: List[str]

    def applies_to(self, term: str) -> bool:
        return fold_text(term).strip() == fold_text(self.term).strip()

    def subject_present(self, folded_text: str) -> bool:
        return any(contains_term(folded_text, keyword) for keyword in self.subject_keywords)


@dataclass
class QualityPolicy:
    min_view_counts: Dict[str, int] = field(default_factory=dict)
    default_min_view_count: int = 0
    exclusion_terms: List[str] = field(default_factory=list)
    always_allow_channels: Set[str] = field(default_factory=set)
    disambiguation: List[DisambiguationRule] = field(default_factory=list)
    relevance_keywords: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, quality_config: Dict[str, Any],
                    relevance_keywords: Optional[Dict[str, List[str]]] = None) -> 'QualityPolicy':
        return cls(
            min_view_counts={k: int(v) for k, v in (quality_config.get('min_view_counts') or {}).items()},
            default_min_view_count=int(quality_config.get('default_min_view_count', 0) or 0),
            exclusion_terms=list(quality_config.get('exclusion_terms') or []),
            always_allow_channels=set(quality_config.get('always_allow_channels') or []),
            disambiguation=[
                DisambiguationRule(term=rule['term'], subject_keywords=list(rule.get('subject_keywords') or []))
                for rule in (quality_config.get('disambiguation') or [])
            ],
            relevance_keywords=dict(relevance_keywords or {}),
        )

    def min_views_for(self, platform: str) -> int:
        return self.min_view_counts.get(platform, self.default_min_view_count)

    def with_exclusion_terms(self, terms: Iterable[str]) -> 'QualityPolicy':
        return replace(self, exclusion_terms=[t for t in terms if t and t.strip()])

    def is_always_allowed(self, candidate: Candidate) -> bool:
        if not candidate.channel_external_id:
            return False
        return (candidate.channel_external_id in self.always_allow_channels
                or f"{candidate.platform}:{candidate.channel_external_id}" in self.always_allow_channels)

    def rule_for(self, term: str) -> Optional[DisambiguationRule]:
        for rule in self.disambiguation:
            if rule.applies_to(term):
                return rule
        return None


@dataclass
class FilterDecision:
    accepted: bool
    reason: str
    detail: Optional[str] = None

    def __bool__(self):
        return self.accepted


ACCEPTED = 'accepted'
ALWAYS_ALLOWED = 'always_allowed'
BELOW_VIEW_FLOOR = 'below_view_floor'
EXCLUDED_TERM = 'excluded_term'
NOT_RELEVANT = 'not_relevant'


def evaluate(candidate: Candidate, policy: QualityPolicy) -> FilterDecision:
    """Evaluate a candidate against the policy and say why it was accepted or rejected."""
    floor = policy.min_views_for(candidate.platform)
    if (candidate.view_count or 0) < floor:
        return FilterDecision(False, BELOW_VIEW_FLOOR, f"{candidate.view_count} < {floor}")

    if policy.is_always_allowed(candidate):
        return FilterDecision(True, ALWAYS_ALLOWED, candidate.channel_external_id)

    folded = fold_text(f"{candidate.title or ''} {candidate.channel_title or ''}")
    for term in policy.exclusion_terms:
        if not contains_term(folded, term):
            continue
        rule = policy.rule_for(term)
        if rule is not None and rule.subject_present(folded):
            continue
        return FilterDecision(False, EXCLUDED_TERM, term)

    keywords = policy.relevance_keywords.get(candidate.platform) or []
    if keywords:
        relevance_text = fold_text(f"{candidate.title or ''} {candidate.description or ''}")
        if not any(contains_term(relevance_text, keyword) for keyword in keywords):
            return FilterDecision(False, NOT_RELEVANT)

    return FilterDecision(True, ACCEPTED)


def is_acceptable(candidate: Candidate, policy: QualityPolicy) -> bool:
    return evaluate(candidate, policy).accepted
