"""
Criterion Evaluator — decides one scheme's criteria against one profile.

Behavioral Contract:
- Pure function of (profile, criteria, as_of); never reads a wall clock
- An absent profile field fails its criterion with reason "missing-data"
- A type mismatch between profile and criterion raises ValidationError; values
  are never coerced
- `eligible` iff every mandatory criterion (weight > 0, not optional) passes
- `confidence` is the passing share of total weight, reported even when
  ineligible so partial matches can be shown
"""

import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from benefit_kernel.errors import ValidationError
from benefit_kernel.models.eligibility import (
    MISSING_DATA,
    NOT_SATISFIED,
    CriteriaEvaluation,
    EligibilityResult,
    FailingCriterion,
)
from benefit_kernel.models.profile import Profile
from benefit_kernel.models.scheme import Criterion, Operator, Scheme
from benefit_kernel.models.values import TypedValue, describe

logger = logging.getLogger(__name__)

_ALL_KINDS = frozenset({"number", "string", "date", "string_set"})
_ORDERED_KINDS = frozenset({"number", "date"})

# Which criterion value kinds each operator accepts
_CRITERION_KINDS: Dict[Operator, FrozenSet[str]] = {
    Operator.EQUALS: _ALL_KINDS,
    Operator.NOT_EQUALS: _ALL_KINDS,
    Operator.GREATER_THAN: _ORDERED_KINDS,
    Operator.GREATER_OR_EQUAL: _ORDERED_KINDS,
    Operator.LESS_THAN: _ORDERED_KINDS,
    Operator.LESS_OR_EQUAL: _ORDERED_KINDS,
    Operator.IN_SET: frozenset({"string_set"}),
    Operator.NOT_IN_SET: frozenset({"string_set"}),
    Operator.DATE_BEFORE: frozenset({"date"}),
    Operator.DATE_AFTER: frozenset({"date"}),
    Operator.RANGE_INCLUSIVE: _ORDERED_KINDS,
}

_PHRASES: Dict[Operator, str] = {
    Operator.EQUALS: "equal to",
    Operator.NOT_EQUALS: "different from",
    Operator.GREATER_THAN: "greater than",
    Operator.GREATER_OR_EQUAL: "at least",
    Operator.LESS_THAN: "less than",
    Operator.LESS_OR_EQUAL: "at most",
    Operator.IN_SET: "one of",
    Operator.NOT_IN_SET: "none of",
    Operator.DATE_BEFORE: "before",
    Operator.DATE_AFTER: "after",
    Operator.RANGE_INCLUSIVE: "between",
}


def _members(value: TypedValue) -> FrozenSet[str]:
    if value.kind == "string_set":
        return frozenset(value.value)
    return frozenset({value.value})


def _check_in_set(actual: TypedValue, criterion: Criterion) -> bool:
    # A string profile value must be a member; a set value must intersect
    return bool(_members(actual) & _members(criterion.value))


def _check_not_in_set(actual: TypedValue, criterion: Criterion) -> bool:
    return not (_members(actual) & _members(criterion.value))


def _check_range(actual: TypedValue, criterion: Criterion) -> bool:
    return criterion.value.value <= actual.value <= criterion.upper.value


# Operator registry: maps each operator to its comparison
_CHECKS: Dict[Operator, Callable[[TypedValue, Criterion], bool]] = {
    Operator.EQUALS: lambda a, c: a.value == c.value.value,
    Operator.NOT_EQUALS: lambda a, c: a.value != c.value.value,
    Operator.GREATER_THAN: lambda a, c: a.value > c.value.value,
    Operator.GREATER_OR_EQUAL: lambda a, c: a.value >= c.value.value,
    Operator.LESS_THAN: lambda a, c: a.value < c.value.value,
    Operator.LESS_OR_EQUAL: lambda a, c: a.value <= c.value.value,
    Operator.IN_SET: _check_in_set,
    Operator.NOT_IN_SET: _check_not_in_set,
    Operator.DATE_BEFORE: lambda a, c: a.value < c.value.value,
    Operator.DATE_AFTER: lambda a, c: a.value > c.value.value,
    Operator.RANGE_INCLUSIVE: _check_range,
}


def _compatible_profile_kinds(criterion: Criterion) -> FrozenSet[str]:
    if criterion.operator in (Operator.IN_SET, Operator.NOT_IN_SET):
        return frozenset({"string", "string_set"})
    return frozenset({criterion.value.kind})


def validate_criterion(criterion: Criterion, scheme_id: Optional[str] = None) -> None:
    """Reject a malformed criterion before anything is evaluated."""
    where = f" in scheme {scheme_id}" if scheme_id else ""
    if not criterion.field:
        raise ValidationError(f"Criterion{where} has an empty field name")

    allowed = _CRITERION_KINDS[criterion.operator]
    if criterion.value.kind not in allowed:
        raise ValidationError(
            f"Operator {criterion.operator.value} cannot compare a "
            f"{criterion.value.kind} value (field '{criterion.field}'{where})",
            detail={
                "field": criterion.field,
                "operator": criterion.operator.value,
                "value_kind": criterion.value.kind,
                "allowed_kinds": sorted(allowed),
            },
        )

    if criterion.operator == Operator.RANGE_INCLUSIVE:
        if criterion.upper is None:
            raise ValidationError(
                f"range_inclusive on '{criterion.field}'{where} needs an upper bound",
                detail={"field": criterion.field},
            )
        if criterion.upper.kind != criterion.value.kind:
            raise ValidationError(
                f"range_inclusive bounds on '{criterion.field}'{where} differ in type "
                f"({criterion.value.kind} vs {criterion.upper.kind})",
                detail={"field": criterion.field},
            )
        if criterion.upper.value < criterion.value.value:
            raise ValidationError(
                f"range_inclusive on '{criterion.field}'{where} has lower bound above upper bound",
                detail={"field": criterion.field},
            )
    elif criterion.upper is not None:
        raise ValidationError(
            f"Only range_inclusive takes an upper bound (field '{criterion.field}'{where})",
            detail={"field": criterion.field, "operator": criterion.operator.value},
        )


def validate_criteria(criteria: Sequence[Criterion], scheme_id: Optional[str] = None) -> float:
    """Validate every criterion and return the total weight, which must be positive."""
    for criterion in criteria:
        validate_criterion(criterion, scheme_id)
    total = sum(c.weight for c in criteria)
    if total <= 0:
        raise ValidationError(
            f"Scheme {scheme_id or '<anonymous>'} has zero total criterion weight; "
            f"eligibility is undefined",
            detail={"scheme_id": scheme_id, "criteria_count": len(criteria)},
        )
    return total


def _failure_reason(criterion: Criterion, actual: TypedValue) -> str:
    if criterion.reason_if_fail:
        return criterion.reason_if_fail
    expected = describe(criterion.value)
    if criterion.operator == Operator.RANGE_INCLUSIVE:
        expected = f"{expected} and {describe(criterion.upper)}"
    return (
        f"{criterion.field} must be {_PHRASES[criterion.operator]} {expected} "
        f"(was {describe(actual)})"
    )


def _evaluate_criterion(
    profile: Profile, criterion: Criterion, scheme_id: Optional[str]
) -> Optional[FailingCriterion]:
    """Return None when the criterion passes, else the failure record."""
    actual = profile.fields.get(criterion.field)
    if actual is None:
        return FailingCriterion(
            field=criterion.field,
            operator=criterion.operator,
            code=MISSING_DATA,
            reason=f"{MISSING_DATA}: profile has no value for '{criterion.field}'",
            mandatory=criterion.mandatory,
        )

    if actual.kind not in _compatible_profile_kinds(criterion):
        raise ValidationError(
            f"Profile field '{criterion.field}' is a {actual.kind} but "
            f"{criterion.operator.value} compares against {criterion.value.kind}"
            + (f" (scheme {scheme_id})" if scheme_id else ""),
            detail={
                "scheme_id": scheme_id,
                "field": criterion.field,
                "profile_kind": actual.kind,
                "criterion_kind": criterion.value.kind,
            },
        )

    if _CHECKS[criterion.operator](actual, criterion):
        return None
    return FailingCriterion(
        field=criterion.field,
        operator=criterion.operator,
        code=NOT_SATISFIED,
        reason=_failure_reason(criterion, actual),
        mandatory=criterion.mandatory,
    )


def evaluate(
    profile: Profile,
    criteria: Sequence[Criterion],
    as_of: datetime,
    scheme_id: Optional[str] = None,
) -> CriteriaEvaluation:
    """
    Evaluate criteria against a profile as of a caller-supplied instant.

    Date operators compare against the criterion's own dates, so `as_of`
    does not change the verdict; it is recorded as `evaluated_at`.

    Raises ValidationError for malformed criteria, zero total weight, or a
    profile value whose type does not match its criterion.
    """
    total_weight = validate_criteria(criteria, scheme_id)

    passing_weight = 0.0
    failing: List[FailingCriterion] = []
    for criterion in criteria:
        failure = _evaluate_criterion(profile, criterion, scheme_id)
        if failure is None:
            passing_weight += criterion.weight
        else:
            failing.append(failure)

    eligible = not any(f.mandatory for f in failing)
    confidence = round(min(1.0, passing_weight / total_weight), 6)
    return CriteriaEvaluation(
        eligible=eligible, confidence=confidence, failing=failing, evaluated_at=as_of
    )


def evaluate_scheme(profile: Profile, scheme: Scheme, as_of: datetime) -> EligibilityResult:
    """Evaluate one scheme and package the outcome as an EligibilityResult."""
    outcome = evaluate(profile, scheme.criteria, as_of, scheme_id=scheme.id)
    logger.debug(
        "Scheme %s for profile %s: eligible=%s confidence=%.3f",
        scheme.id, profile.id, outcome.eligible, outcome.confidence,
    )
    return EligibilityResult(
        scheme_id=scheme.id,
        eligible=outcome.eligible,
        confidence=outcome.confidence,
        failing=outcome.failing,
        estimated_benefit=scheme.estimated_benefit,
        scheme_last_updated=scheme.last_updated,
        evaluated_at=outcome.evaluated_at,
    )
