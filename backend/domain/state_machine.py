"""
Order status model — settlement and fulfillment axes with explicit transition
tables, plus execution progress derived from fulfillment.

Progress is never stored independently of fulfillment: every write of a
fulfillment status goes through progress_for().
"""

from domain.enums import FulfillmentStatus as F, SettlementStatus as S
from domain.errors import TransitionRejectedError, ValidationError


SETTLEMENT_TRANSITIONS: dict[S, frozenset[S]] = {
    S.UNSETTLED: frozenset({S.SETTLED, S.FAILED}),
    S.SETTLED: frozenset({S.REFUNDED}),
    S.FAILED: frozenset(),
    S.REFUNDED: frozenset(),
}

FULFILLMENT_SEQUENCE: tuple[F, ...] = (
    F.PLACED,
    F.ACKNOWLEDGED,
    F.IN_PRODUCTION,
    F.SHIPPED,
    F.DELIVERED,
)

ABSORBING_FULFILLMENT = frozenset({F.CANCELLED, F.FAILED})
TERMINAL_FULFILLMENT = ABSORBING_FULFILLMENT | {F.DELIVERED}

FULFILLMENT_TRANSITIONS: dict[F, frozenset[F]] = {
    F.PLACED: frozenset({F.ACKNOWLEDGED}) | ABSORBING_FULFILLMENT,
    F.ACKNOWLEDGED: frozenset({F.IN_PRODUCTION}) | ABSORBING_FULFILLMENT,
    F.IN_PRODUCTION: frozenset({F.SHIPPED}) | ABSORBING_FULFILLMENT,
    F.SHIPPED: frozenset({F.DELIVERED}) | ABSORBING_FULFILLMENT,
    F.DELIVERED: frozenset(),
    F.CANCELLED: frozenset(),
    F.FAILED: frozenset(),
}

PROGRESS: dict[F, int] = {
    F.PLACED: 20,
    F.ACKNOWLEDGED: 40,
    F.IN_PRODUCTION: 60,
    F.SHIPPED: 80,
    F.DELIVERED: 100,
    F.CANCELLED: 0,
    F.FAILED: 0,
}

INITIAL_SETTLEMENT = S.UNSETTLED
INITIAL_FULFILLMENT = F.PLACED


def progress_for(fulfillment: F | str) -> int:
    """Execution progress (0-100) for a fulfillment status."""
    return PROGRESS[parse_fulfillment(fulfillment)]


def _rank(status: F) -> int:
    return FULFILLMENT_SEQUENCE.index(status)


def can_transition_fulfillment(current: F | str, target: F | str, *, override: bool = False) -> bool:
    current, target = parse_fulfillment(current), parse_fulfillment(target)
    if current == target:
        return True
    if override:
        # Overrides skip the adjacency table but never move backward
        # or leave an absorbing/terminal state.
        if current in TERMINAL_FULFILLMENT:
            return False
        if target in ABSORBING_FULFILLMENT:
            return True
        return _rank(target) > _rank(current)
    return target in FULFILLMENT_TRANSITIONS[current]


def can_transition_settlement(current: S | str, target: S | str) -> bool:
    current, target = parse_settlement(current), parse_settlement(target)
    return current == target or target in SETTLEMENT_TRANSITIONS[current]


def check_fulfillment(current: F | str, target: F | str, *, override: bool = False) -> F:
    """Return the target as an enum, or raise TransitionRejectedError."""
    if not can_transition_fulfillment(current, target, override=override):
        raise TransitionRejectedError(
            "fulfillment", F(current).value, F(target).value,
            details={"override": override},
        )
    return F(target)


def check_settlement(current: S | str, target: S | str) -> S:
    if not can_transition_settlement(current, target):
        raise TransitionRejectedError("settlement", S(current).value, S(target).value)
    return S(target)


def parse_fulfillment(value: F | str) -> F:
    try:
        return F(value)
    except ValueError:
        allowed = ", ".join(s.value for s in F)
        raise ValidationError(f"unknown status '{value}' (allowed: {allowed})", field="fulfillment")


def parse_settlement(value: S | str) -> S:
    try:
        return S(value)
    except ValueError:
        allowed = ", ".join(s.value for s in S)
        raise ValidationError(f"unknown status '{value}' (allowed: {allowed})", field="settlement")
