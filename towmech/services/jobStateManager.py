"""
Job State Manager
=================

Dispatch lifecycle of a job. Services call ``validate_transition`` before
writing a new status.

State machine overview::

    created --> broadcasted --> assigned --> in_progress --> completed
                    ^  |            |             |
                    |__|            |             |
                (fresh round)       |             |
                    ^_______________|_____________|
                      (assigned provider cancels)

    created / broadcasted / assigned / in_progress --> cancelled

``completed`` and ``cancelled`` are terminal.

Guards here only look at the actor type. Whether the actor is the assigned
provider or the owning customer is checked by the service running the
operation.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from towmech.models.job import JobStatus


class ActorType(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    SYSTEM = "system"
    ADMIN = "admin"


@dataclass(frozen=True)
class TransitionResult:
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

# Structural edges only; actor guards live in the _guard_* helpers.
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.CREATED: {
        JobStatus.BROADCASTED,
        JobStatus.CANCELLED,
    },
    JobStatus.BROADCASTED: {
        JobStatus.BROADCASTED,  # a fresh broadcast round
        JobStatus.ASSIGNED,
        JobStatus.CANCELLED,
    },
    JobStatus.ASSIGNED: {
        JobStatus.IN_PROGRESS,
        JobStatus.BROADCASTED,  # assigned provider cancelled
        JobStatus.CANCELLED,
    },
    JobStatus.IN_PROGRESS: {
        JobStatus.COMPLETED,
        JobStatus.BROADCASTED,  # assigned provider cancelled
        JobStatus.CANCELLED,
    },
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

# Statuses from which the assigned provider may hand the job back
_PROVIDER_RELEASABLE: frozenset[JobStatus] = frozenset({
    JobStatus.ASSIGNED,
    JobStatus.IN_PROGRESS,
})

_CANCELLING_ACTORS: frozenset[ActorType] = frozenset({
    ActorType.CUSTOMER,
    ActorType.ADMIN,
    ActorType.SYSTEM,
})

# Completion also accepts an administrative override
_COMPLETING_ACTORS: frozenset[ActorType] = frozenset({
    ActorType.PROVIDER,
    ActorType.ADMIN,
})


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_broadcast(current: JobStatus, actor_type: ActorType) -> TransitionResult:
    """Broadcast rounds are run by the system, except the release path where
    the assigned provider hands the job back."""
    if current in _PROVIDER_RELEASABLE:
        if actor_type != ActorType.PROVIDER:
            return TransitionResult(
                allowed=False,
                reason=(
                    f"Only the assigned provider can return a job in "
                    f"'{current.value}' status to broadcasting."
                ),
            )
        return TransitionResult(allowed=True)
    if actor_type != ActorType.SYSTEM:
        return TransitionResult(
            allowed=False,
            reason="Only the dispatch system can broadcast a job.",
        )
    return TransitionResult(allowed=True)


def _guard_assign(actor_type: ActorType) -> TransitionResult:
    if actor_type != ActorType.PROVIDER:
        return TransitionResult(
            allowed=False,
            reason="Only a provider can accept a job.",
        )
    return TransitionResult(allowed=True)


def _guard_start_work(actor_type: ActorType) -> TransitionResult:
    """Only the assigned provider starts work; there is no admin override."""
    if actor_type != ActorType.PROVIDER:
        return TransitionResult(
            allowed=False,
            reason="Only the assigned provider can start work on a job.",
        )
    return TransitionResult(allowed=True)


def _guard_complete(actor_type: ActorType) -> TransitionResult:
    if actor_type not in _COMPLETING_ACTORS:
        return TransitionResult(
            allowed=False,
            reason="Only the assigned provider or an admin can complete a job.",
        )
    return TransitionResult(allowed=True)


def _guard_cancel(actor_type: ActorType) -> TransitionResult:
    """Providers never cancel outright; they release the job instead."""
    if actor_type not in _CANCELLING_ACTORS:
        return TransitionResult(
            allowed=False,
            reason=(
                "Providers cannot cancel a job. Release it so it can be "
                "rebroadcast to other providers."
            ),
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: JobStatus,
    new_status: JobStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> TransitionResult:
    """Check ``current_status -> new_status`` for ``actor_type``.

    A refused transition carries a ``reason`` suitable for an API error.
    """
    targets = VALID_TRANSITIONS[current_status]
    if new_status not in targets:
        options = ", ".join(sorted(s.value for s in targets)) or "none"
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid transition {current_status.value} -> {new_status.value}; "
                f"{current_status.value} jobs can move to: {options}"
            ),
        )

    if new_status == JobStatus.BROADCASTED:
        return _guard_broadcast(current_status, actor_type)

    if new_status == JobStatus.ASSIGNED:
        return _guard_assign(actor_type)

    if new_status == JobStatus.IN_PROGRESS:
        return _guard_start_work(actor_type)

    if new_status == JobStatus.COMPLETED:
        return _guard_complete(actor_type)

    if new_status == JobStatus.CANCELLED:
        return _guard_cancel(actor_type)

    return TransitionResult(allowed=True)


def get_valid_transitions(
    current_status: JobStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[JobStatus]:
    """Statuses ``actor_type`` may move a ``current_status`` job to, sorted."""
    return sorted(
        (
            target
            for target in VALID_TRANSITIONS[current_status]
            if validate_transition(current_status, target, actor_type).allowed
        ),
        key=lambda s: s.value,
    )
