"""
Milestone state machine and derived instruction status.

    PENDING ──► COMPLETED | DELAYED | FAILED | SKIPPED
    DELAYED ──► COMPLETED | FAILED | SKIPPED

COMPLETED, FAILED and SKIPPED are terminal. Instruction status is a pure
function of the milestone statuses (CANCELLED is sticky and set directly).
"""

from settlerisk.exceptions import InvalidMilestoneTransition
from settlerisk.schemas import InstructionStatus
from settlerisk.timeline.schemas import MilestoneStatus, MilestoneType, SettlementMilestone
from settlerisk.timeline.templates import TERMINAL_MILESTONE

S = MilestoneStatus

ALLOWED_TRANSITIONS: dict[MilestoneStatus, frozenset[MilestoneStatus]] = {
    S.PENDING: frozenset({S.COMPLETED, S.DELAYED, S.FAILED, S.SKIPPED}),
    S.DELAYED: frozenset({S.COMPLETED, S.FAILED, S.SKIPPED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.SKIPPED: frozenset(),
}


def check_transition(milestone: SettlementMilestone, target: MilestoneStatus) -> bool:
    """
    Validate a requested status change.

    Returns False when the milestone is already in ``target`` (idempotent
    no-op), True when the change should be applied.

    Raises:
        InvalidMilestoneTransition: for any other move.
    """
    if milestone.status == target:
        return False
    if target not in ALLOWED_TRANSITIONS[milestone.status]:
        raise InvalidMilestoneTransition(
            milestone.milestone_type.value, milestone.status.value, target.value
        )
    return True


def derive_instruction_status(
    milestones: list[SettlementMilestone],
    current: InstructionStatus = InstructionStatus.PENDING,
    terminal: MilestoneType = TERMINAL_MILESTONE,
) -> InstructionStatus:
    if current == InstructionStatus.CANCELLED:
        return current

    statuses = [m.status for m in milestones]
    if S.FAILED in statuses:
        return InstructionStatus.FAILED
    if any(m.milestone_type == terminal and m.status == S.COMPLETED for m in milestones):
        return InstructionStatus.SETTLED
    if S.DELAYED in statuses:
        return InstructionStatus.DELAYED
    if all(s == S.PENDING for s in statuses):
        return InstructionStatus.PENDING
    return InstructionStatus.PROCESSING
