from __future__ import annotations

from typing import Dict, FrozenSet

from core.domain.enums.swap_enums import StepStatus, StepType, SwapStatus
from core.services.exceptions import InvalidTransitionError

S = SwapStatus

_ABORT = frozenset({S.FAILED, S.REFUNDED})

SWAP_TRANSITIONS: Dict[SwapStatus, FrozenSet[SwapStatus]] = {
    S.PENDING: frozenset({S.CONFIRMING, S.BRIDGING}) | _ABORT,
    S.CONFIRMING: frozenset({S.PROCESSING, S.COMPLETING}) | _ABORT,
    S.PROCESSING: frozenset({S.CONFIRMING, S.BRIDGING}) | _ABORT,
    S.BRIDGING: frozenset({S.PROCESSING, S.COMPLETING}) | _ABORT,
    S.COMPLETING: frozenset({S.COMPLETED}) | _ABORT,
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.REFUNDED: frozenset(),
}

STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.SUBMITTED, StepStatus.FAILED}),
    StepStatus.SUBMITTED: frozenset({StepStatus.CONFIRMING, StepStatus.CONFIRMED, StepStatus.FAILED}),
    StepStatus.CONFIRMING: frozenset({StepStatus.CONFIRMED, StepStatus.FAILED}),
    StepStatus.CONFIRMED: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return SwapStatus(target) in SWAP_TRANSITIONS[SwapStatus(current)]


def ensure_transition(current: str, target: str) -> SwapStatus:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"swap cannot move from {current} to {target}",
            details={"from": str(current), "to": str(target)},
        )
    return SwapStatus(target)


def ensure_step_transition(current: str, target: str) -> StepStatus:
    if StepStatus(target) not in STEP_TRANSITIONS[StepStatus(current)]:
        raise InvalidTransitionError(
            f"step cannot move from {current} to {target}",
            details={"from": str(current), "to": str(target)},
        )
    return StepStatus(target)


def status_after_submit(step_type: str) -> SwapStatus:
    """
    Swap status once a step's transaction has been broadcast.
    """
    if StepType(step_type) == StepType.BRIDGE:
        return SwapStatus.BRIDGING
    return SwapStatus.CONFIRMING
