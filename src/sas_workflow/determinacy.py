from __future__ import annotations

from .models import Invariant, InvariantStatus, PlanItem, PlanStatus, ReadinessReport

DEFAULT_THRESHOLD = 0.5


def determinacy_score(invariants: list[Invariant]) -> float:
    """Fraction of invariants judged satisfied, clamped to [0, 1]; 0 when there are none."""
    satisfied = sum(1 for invariant in invariants if invariant.status is InvariantStatus.SATISFIED)
    return max(0.0, min(1.0, satisfied / max(1, len(invariants))))


def evaluate(
    invariants: list[Invariant],
    plan: list[PlanItem],
    mapping_layer_present: bool,
    *,
    threshold: float = DEFAULT_THRESHOLD,
) -> ReadinessReport:
    """Compute workflow readiness from invariants, plan items and the mapping layer.

    A plan whose invariants are all still ``unknown`` counts as not yet
    assessed rather than failing, so implementation may start; the threshold
    only applies once at least one invariant has been judged.
    """
    determinacy = determinacy_score(invariants)
    has_known_invariant = any(invariant.status is not InvariantStatus.UNKNOWN for invariant in invariants)
    has_open_step = any(item.status is PlanStatus.TODO for item in plan)
    return ReadinessReport(
        determinacy=determinacy,
        invariants=list(invariants),
        plan=list(plan),
        ready_for_planning=mapping_layer_present and len(invariants) > 0,
        ready_for_implementation=has_open_step and (determinacy >= threshold or not has_known_invariant),
        has_known_invariant=has_known_invariant,
    )
