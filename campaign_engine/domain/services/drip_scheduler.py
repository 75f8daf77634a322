"""
Drip Step Scheduler
Decides which step, if any, a recipient is due for.

Delays are absolute: every step's delay_days counts from enrolled_at, never
from the previous message, so processing latency cannot push later steps
back. A recipient advances at most one step per pass.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from campaign_engine.domain.models.campaign import DripStep
from campaign_engine.utils.clock import whole_days_between


class StepAction(str, Enum):
    """What the run processor should do with a recipient this pass"""
    SEND = "send"
    WAIT = "wait"
    COMPLETE = "complete"


@dataclass(frozen=True)
class StepDecision:
    action: StepAction
    step: Optional[DripStep] = None
    is_final: bool = False  # sending this step exhausts the sequence


def decide_next_step(
    steps: Sequence[DripStep],
    enrolled_at: datetime,
    last_step_index: int,
    now: datetime,
) -> StepDecision:
    """
    Pick the next due step.

    The due step is the smallest step_index greater than last_step_index whose
    delay_days has elapsed since enrollment (whole days, floored).
    """
    if not steps:
        return StepDecision(StepAction.COMPLETE)

    ordered = sorted(steps, key=lambda s: s.step_index)
    final_index = ordered[-1].step_index
    if last_step_index >= final_index:
        return StepDecision(StepAction.COMPLETE)

    elapsed_days = whole_days_between(enrolled_at, now)
    for step in ordered:
        if step.step_index <= last_step_index:
            continue
        if step.delay_days <= elapsed_days:
            return StepDecision(StepAction.SEND, step=step, is_final=step.step_index == final_index)

    return StepDecision(StepAction.WAIT)
