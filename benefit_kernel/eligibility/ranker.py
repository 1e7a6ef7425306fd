"""
Eligibility Ranker — total, deterministic ordering of evaluation results.

Sort key, in order:
  1. eligible before ineligible
  2. confidence, descending
  3. estimated benefit, descending
  4. scheme last-updated, most recent first
  5. scheme id, lexical, as the final tiebreak

Parallel evaluation may finish in any order; this ordering is what makes the
output reproducible.
"""

from functools import cmp_to_key
from typing import Iterable, List

from benefit_kernel.models.eligibility import EligibilityResult


def _descending(a, b) -> int:
    return (a < b) - (a > b)


def compare_results(a: EligibilityResult, b: EligibilityResult) -> int:
    """Three-way comparison implementing the ranking key."""
    for left, right in (
        (a.eligible, b.eligible),
        (a.confidence, b.confidence),
        (a.estimated_benefit, b.estimated_benefit),
        (a.scheme_last_updated, b.scheme_last_updated),
    ):
        order = _descending(left, right)
        if order:
            return order
    return (a.scheme_id > b.scheme_id) - (a.scheme_id < b.scheme_id)


def rank(results: Iterable[EligibilityResult]) -> List[EligibilityResult]:
    """Return results in ranking order. Input order never affects the output."""
    return sorted(results, key=cmp_to_key(compare_results))
