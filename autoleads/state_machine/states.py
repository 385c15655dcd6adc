"""
Intake flows and their steps.

Each flow is a fixed sequence of steps; the conversation store keeps the ordinal of
the current step. Transition tables are derived from the sequences and checked at
import time, so a flow cannot reference a step it does not contain.
"""
from enum import Enum


class IntakeFlow(str, Enum):
    """Named conversation flows"""
    VEHICLE_INTAKE = "vehicle_intake"                # one message, then photos and confirm
    VEHICLE_INTAKE_GUIDED = "vehicle_intake_guided"  # one field per message


class IntakeStep(str, Enum):
    """Steps shared by the intake flows"""
    BRAND_MODEL = "brand_model"
    YEAR_COLOR = "year_color"
    TRANSMISSION_KM = "transmission_km"
    PRICE = "price"
    PLATE = "plate"
    FEATURES = "features"
    PHOTOS = "photos"
    CONFIRM = "confirm"


class ConversationScope(str, Enum):
    ADMIN = "admin"
    GENERIC = "generic"


FLOW_STEPS: dict[IntakeFlow, tuple[IntakeStep, ...]] = {
    IntakeFlow.VEHICLE_INTAKE: (
        IntakeStep.PHOTOS,
        IntakeStep.CONFIRM,
    ),
    IntakeFlow.VEHICLE_INTAKE_GUIDED: (
        IntakeStep.BRAND_MODEL,
        IntakeStep.YEAR_COLOR,
        IntakeStep.TRANSMISSION_KM,
        IntakeStep.PRICE,
        IntakeStep.PLATE,
        IntakeStep.FEATURES,
        IntakeStep.PHOTOS,
        IntakeStep.CONFIRM,
    ),
}


def _build_transitions(steps: tuple[IntakeStep, ...]) -> dict[IntakeStep, IntakeStep | None]:
    """Each step moves to the next one; the last step ends the flow (None)"""
    return {
        step: steps[index + 1] if index + 1 < len(steps) else None
        for index, step in enumerate(steps)
    }


FLOW_TRANSITIONS: dict[IntakeFlow, dict[IntakeStep, IntakeStep | None]] = {
    flow: _build_transitions(steps) for flow, steps in FLOW_STEPS.items()
}


def _check_tables() -> None:
    for flow in IntakeFlow:
        steps = FLOW_STEPS.get(flow)
        if not steps:
            raise RuntimeError(f"Flow {flow.value} has no steps")
        if len(set(steps)) != len(steps):
            raise RuntimeError(f"Flow {flow.value} repeats a step")
        if steps[-1] != IntakeStep.CONFIRM:
            raise RuntimeError(f"Flow {flow.value} must end with the confirm step")


_check_tables()


def step_at(flow: IntakeFlow, index: int) -> IntakeStep:
    """Step for a stored ordinal. Raises IndexError for an ordinal outside the flow."""
    steps = FLOW_STEPS[flow]
    if not 0 <= index < len(steps):
        raise IndexError(f"{flow.value} has no step {index}")
    return steps[index]


def step_index(flow: IntakeFlow, step: IntakeStep) -> int:
    return FLOW_STEPS[flow].index(step)


def next_step(flow: IntakeFlow, step: IntakeStep) -> IntakeStep | None:
    return FLOW_TRANSITIONS[flow][step]


def is_valid_transition(flow: IntakeFlow, current: IntakeStep, target: IntakeStep) -> bool:
    return FLOW_TRANSITIONS[flow].get(current) == target
