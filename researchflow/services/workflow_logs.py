from __future__ import annotations

from datetime import datetime

from researchflow.models.research import StepName, WorkflowLogEntry

STEP_ORDER: tuple[StepName, ...] = tuple(StepName)


def step_sort_key(log: WorkflowLogEntry) -> tuple[int, int, datetime]:
    """Recognized steps in ``STEP_ORDER``, then everything else by timestamp."""
    step = StepName.parse(log.step)
    if step is not None:
        return (0, STEP_ORDER.index(step), log.timestamp)
    return (1, 0, log.timestamp)


def aggregate_workflow_logs(logs: list[WorkflowLogEntry]) -> list[WorkflowLogEntry]:
    """Collapse an append-ordered log into one entry per step.

    The last appended entry for a step wins, regardless of its timestamp.
    Unrecognized steps sharing a timestamp keep first-appearance order.
    """
    if not logs:
        return []

    latest_by_step: dict[str, WorkflowLogEntry] = {}
    for log in logs:
        latest_by_step[log.step] = log

    return sorted(latest_by_step.values(), key=step_sort_key)
