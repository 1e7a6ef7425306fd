"""
Alternative Finder — suggests similar schemes when a profile is rejected.

Candidate pool: every catalog scheme sharing at least one category tag with
the rejected scheme, excluding the rejected scheme. Similarity is a weighted
Jaccard index over the schemes' category tags and criterion field names.
Candidates are evaluated against the profile; only those whose confidence is
strictly above the configured floor are kept, ranked by similarity, then
confidence, then estimated benefit (scheme id as final tiebreak). A candidate
that cannot be evaluated against the profile is logged and skipped.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from benefit_kernel.eligibility.evaluator import evaluate
from benefit_kernel.errors import ValidationError
from benefit_kernel.models.config import EligibilityConfig
from benefit_kernel.models.eligibility import AlternativeSuggestion
from benefit_kernel.models.profile import Profile
from benefit_kernel.models.scheme import Scheme

logger = logging.getLogger(__name__)

Feature = Tuple[str, str]


class SchemeSource(Protocol):
    """The slice of the catalog the finder needs."""

    def schemes_by_category(self, category: str) -> List[Scheme]: ...


def _features(
    scheme: Scheme, category_weight: float, field_weight: float
) -> Dict[Feature, float]:
    features: Dict[Feature, float] = {}
    for tag in scheme.categories:
        features[("category", tag)] = category_weight
    for criterion in scheme.criteria:
        features[("field", criterion.field)] = field_weight
    return features


def similarity(
    a: Scheme,
    b: Scheme,
    category_weight: float = 2.0,
    field_weight: float = 1.0,
) -> float:
    """Weighted Jaccard over (category tags ∪ criterion field names)."""
    fa = _features(a, category_weight, field_weight)
    fb = _features(b, category_weight, field_weight)
    union = set(fa) | set(fb)
    if not union:
        return 0.0
    intersection_weight = sum(fa[f] for f in set(fa) & set(fb))
    union_weight = sum(fa.get(f, fb.get(f, 0.0)) for f in union)
    return round(intersection_weight / union_weight, 6)


def _candidate_pool(rejected: Scheme, catalog: SchemeSource) -> List[Scheme]:
    pool: Dict[str, Scheme] = {}
    for tag in sorted(set(rejected.categories)):
        for scheme in catalog.schemes_by_category(tag):
            if scheme.id != rejected.id:
                pool[scheme.id] = scheme
    return [pool[k] for k in sorted(pool)]


def find_alternatives(
    rejected: Scheme,
    profile: Profile,
    catalog: SchemeSource,
    max_results: int,
    as_of: datetime,
    config: Optional[EligibilityConfig] = None,
) -> List[AlternativeSuggestion]:
    """
    Rank same-category schemes the profile might qualify for instead.

    Returns an empty list, not an error, when nothing clears the floor.
    """
    if max_results < 1:
        raise ValidationError(
            "max_results must be at least 1",
            detail={"max_results": max_results},
        )
    cfg = config or EligibilityConfig()

    suggestions: List[AlternativeSuggestion] = []
    rejected_tags = set(rejected.categories)
    for candidate in _candidate_pool(rejected, catalog):
        try:
            outcome = evaluate(profile, candidate.criteria, as_of, scheme_id=candidate.id)
        except ValidationError as exc:
            logger.warning(
                "Skipping alternative %s for %s: %s", candidate.id, rejected.id, exc.message
            )
            continue
        if outcome.confidence <= cfg.confidence_floor:
            continue
        suggestions.append(AlternativeSuggestion(
            scheme_id=candidate.id,
            similarity=similarity(
                rejected, candidate, cfg.category_weight, cfg.field_weight
            ),
            confidence=outcome.confidence,
            eligible=outcome.eligible,
            estimated_benefit=candidate.estimated_benefit,
            shared_categories=sorted(rejected_tags & set(candidate.categories)),
            failing=outcome.failing,
            rejected_scheme_id=rejected.id,
        ))

    suggestions.sort(key=lambda s: s.scheme_id)
    suggestions.sort(
        key=lambda s: (s.similarity, s.confidence, s.estimated_benefit),
        reverse=True,
    )
    logger.info(
        "Alternatives for %s (profile %s): %d above floor %.2f",
        rejected.id, profile.id, len(suggestions), cfg.confidence_floor,
    )
    return suggestions[:max_results]
