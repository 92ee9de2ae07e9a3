import pytest

from core.domain.enums.swap_enums import StepStatus, StepType, SwapStatus
from core.services.exceptions import InvalidTransitionError
from core.services.swap_state_machine import (
    SWAP_TRANSITIONS,
    can_transition,
    ensure_step_transition,
    ensure_transition,
    status_after_submit,
)


@pytest.mark.parametrize(
    "current,target",
    [
        ("PENDING", "CONFIRMING"),
        ("PENDING", "BRIDGING"),
        ("CONFIRMING", "PROCESSING"),
        ("CONFIRMING", "COMPLETING"),
        ("PROCESSING", "BRIDGING"),
        ("BRIDGING", "PROCESSING"),
        ("COMPLETING", "COMPLETED"),
    ],
)
def test_forward_transitions(current, target):
    assert ensure_transition(current, target) == SwapStatus(target)


def test_every_live_status_can_abort():
    for status in SwapStatus:
        if status.is_terminal:
            continue
        assert can_transition(status, SwapStatus.FAILED)
        assert can_transition(status, SwapStatus.REFUNDED)


def test_terminal_statuses_are_final():
    for status in (SwapStatus.COMPLETED, SwapStatus.FAILED, SwapStatus.REFUNDED):
        assert SWAP_TRANSITIONS[status] == frozenset()
        with pytest.raises(InvalidTransitionError):
            ensure_transition(status, SwapStatus.PENDING)


def test_no_skipping_completing():
    assert not can_transition(SwapStatus.CONFIRMING, SwapStatus.COMPLETED)
    assert not can_transition(SwapStatus.PROCESSING, SwapStatus.PENDING)


def test_step_transitions():
    assert ensure_step_transition(StepStatus.PENDING, StepStatus.SUBMITTED) == StepStatus.SUBMITTED
    assert ensure_step_transition(StepStatus.SUBMITTED, StepStatus.CONFIRMED) == StepStatus.CONFIRMED
    with pytest.raises(InvalidTransitionError):
        ensure_step_transition(StepStatus.CONFIRMED, StepStatus.FAILED)
    with pytest.raises(InvalidTransitionError):
        ensure_step_transition(StepStatus.PENDING, StepStatus.CONFIRMED)


def test_status_after_submit():
    assert status_after_submit(StepType.BRIDGE) == SwapStatus.BRIDGING
    assert status_after_submit(StepType.SWAP) == SwapStatus.CONFIRMING
    assert status_after_submit(StepType.CEX_TRADE) == SwapStatus.CONFIRMING
