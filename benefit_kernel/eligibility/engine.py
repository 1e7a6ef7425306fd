"""
Eligibility Engine — evaluates a profile against many schemes in parallel.

Evaluation per scheme is stateless, so schemes are fanned out to a thread
pool; the ranker's total ordering makes the merged output independent of
completion order. Results may be served from an explicit EligibilityCache.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Iterable, List, Optional

from benefit_kernel.eligibility.cache import EligibilityCache
from benefit_kernel.eligibility.evaluator import evaluate_scheme, validate_criteria
from benefit_kernel.eligibility.ranker import rank
from benefit_kernel.models.config import EligibilityConfig
from benefit_kernel.models.eligibility import EligibilityResult
from benefit_kernel.models.profile import Profile
from benefit_kernel.models.scheme import Scheme

logger = logging.getLogger(__name__)


class EligibilityEngine:
    """Parallel evaluation plus deterministic ranking."""

    def __init__(
        self,
        config: Optional[EligibilityConfig] = None,
        cache: Optional[EligibilityCache] = None,
    ):
        self.config = config or EligibilityConfig()
        self.cache = cache

    def evaluate_eligibility(
        self,
        profile: Profile,
        schemes: Iterable[Scheme],
        as_of: datetime,
        catalog_version: int = 0,
    ) -> List[EligibilityResult]:
        """
        Evaluate and rank every scheme for the profile.

        Malformed schemes are rejected up front, before any cache write.
        """
        schemes = list(schemes)
        for scheme in schemes:
            validate_criteria(scheme.criteria, scheme.id)
        if not schemes:
            return []

        key = None
        if self.cache is not None:
            key = EligibilityCache.key_for(profile, schemes, as_of)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Eligibility cache hit for profile %s", profile.id)
                return cached

        workers = min(self.config.max_workers, len(schemes))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(
                lambda s: evaluate_scheme(profile, s, as_of), schemes
            ))

        ranked = rank(results)
        if self.cache is not None:
            self.cache.put(key, ranked, catalog_version)

        logger.info(
            "Eligibility for profile %s: %d/%d schemes eligible",
            profile.id, sum(1 for r in ranked if r.eligible), len(ranked),
        )
        return ranked
