"""Decide what to do with the stored record for a logical pod name.

``reconcile`` is pure: it only reads the state it is given and returns a
plan. Executing the plan is the orchestrator's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from podward.model import PersistedState, PodStatus, ReconcileMode


@dataclass(frozen=True, slots=True)
class DoNothing:
    """The pod is running (or already coming up); just wait for it."""

    pod_id: str


@dataclass(frozen=True, slots=True)
class Start:
    """The pod exists but is stopped or exited."""

    pod_id: str


@dataclass(frozen=True, slots=True)
class Create:
    """Create a fresh pod, terminating ``replaces`` first when set."""

    replaces: str | None = None


PlannedAction: TypeAlias = DoNothing | Start | Create


def reconcile(
    state: PersistedState,
    name: str,
    desired_image: str,
    *,
    mode: ReconcileMode = "reuse",
) -> PlannedAction:
    record = state.get(name)
    if record is None or record.status is PodStatus.TERMINATED:
        return Create()

    if mode == "recreate" and record.image != desired_image:
        return Create(replaces=record.id)

    match record.status:
        case PodStatus.STOPPED | PodStatus.EXITED:
            return Start(record.id)
        case _:
            return DoNothing(record.id)
