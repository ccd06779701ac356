"""
Deadline computation for attempts and timed sections.

Deadlines are derived facts: the attempt deadline is fixed at start (and
stored on the attempt so the sweep can query it); a section deadline is the
section's start plus its time limit. Nothing here mutates state. The engine
asks `check_deadlines` before each operation and applies the outcome.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Tuple

from app.core.datetime_utils import ensure_timezone_aware, minutes, seconds_between
from app.core.exam.types import SectionProgress, TestDefinition
from app.models.models import TestMode


def attempt_deadline(definition: TestDefinition, started_at: datetime) -> Optional[datetime]:
    """
    Wall-clock deadline for a new attempt.

    `started_at + duration` when the test has a duration; a scheduled
    `end_time` (anytime_mock's window close, live_mock's end) is binding when
    it comes first. None means the attempt never expires on its own.
    """
    candidates: List[datetime] = []
    if definition.scheduling.duration > 0:
        candidates.append(started_at + minutes(definition.scheduling.duration))
    end_time = definition.scheduling.end_time
    if end_time is not None and definition.mode in (
        TestMode.ANYTIME_MOCK,
        TestMode.LIVE_MOCK,
    ):
        candidates.append(ensure_timezone_aware(end_time))
    return min(candidates) if candidates else None


def section_deadline(
    definition: TestDefinition, sections: List[SectionProgress], index: int
) -> Optional[datetime]:
    """Deadline of section `index`, or None when it is untimed or not started."""
    if not definition.strict_sections or index >= len(definition.sections):
        return None
    section = definition.sections[index]
    progress = sections[index] if index < len(sections) else None
    if not section.is_timed or progress is None or progress.started_at is None:
        return None
    return progress.started_at + minutes(section.time_limit)


def time_remaining_seconds(
    deadlines: List[Optional[datetime]], now: datetime
) -> Optional[int]:
    """Seconds until the soonest of the given deadlines, floored at zero."""
    active = [ensure_timezone_aware(d) for d in deadlines if d is not None]
    if not active:
        return None
    return seconds_between(now, min(active))


def is_past(deadline: Optional[datetime], now: datetime) -> bool:
    return deadline is not None and now > ensure_timezone_aware(deadline)


@dataclass
class DeadlineCheck:
    """What lazy enforcement has to do before an operation may proceed."""

    # (section_index, deadline) for each section whose time ran out, in order
    expired_sections: List[Tuple[int, datetime]] = field(default_factory=list)
    auto_submit: bool = False

    @property
    def needs_action(self) -> bool:
        return self.auto_submit or bool(self.expired_sections)


def check_deadlines(
    definition: TestDefinition,
    deadline_at: Optional[datetime],
    sections: List[SectionProgress],
    current_index: int,
    now: datetime,
) -> DeadlineCheck:
    """
    Decide what an in-progress attempt needs before it can be used at `now`.

    Section expiry cascades: when section i ran out at D, section i+1 is
    treated as having started at D, and may itself have run out since.
    Running out of the last section, or past the attempt deadline, means the
    attempt must be auto-submitted.
    """
    check = DeadlineCheck()
    if is_past(deadline_at, now):
        check.auto_submit = True
        return check

    index = current_index
    started_at = sections[index].started_at if index < len(sections) else None
    while index < len(definition.sections) and definition.strict_sections:
        section = definition.sections[index]
        if not section.is_timed or started_at is None:
            break
        deadline = started_at + minutes(section.time_limit)
        if not now > deadline:
            break
        check.expired_sections.append((index, deadline))
        if index == len(definition.sections) - 1:
            check.auto_submit = True
            break
        index += 1
        started_at = deadline
    return check


def apply_section_cutovers(
    definition: TestDefinition,
    sections: List[SectionProgress],
    expired: List[Tuple[int, datetime]],
) -> Tuple[List[SectionProgress], int]:
    """
    Section progress after locking every expired section at its deadline.

    Returns the new progress list and the new current section index. The
    section following the last expired one starts at that deadline.
    """
    updated = [replace(progress) for progress in sections]
    new_index = expired[-1][0] if expired else 0
    for index, deadline in expired:
        progress = updated[index]
        progress.completed_at = deadline
        progress.time_spent = seconds_between(progress.started_at or deadline, deadline)
        progress.is_locked = True
        if index + 1 < len(definition.sections):
            updated[index + 1].started_at = deadline
            new_index = index + 1
    return updated, new_index


def close_all_sections(
    definition: TestDefinition, sections: List[SectionProgress], now: datetime
) -> List[SectionProgress]:
    """
    Lock every section for submission.

    Open sections are completed at `now`, or at their own deadline if that
    came first, so time spent never exceeds a section's limit.
    """
    closed: List[SectionProgress] = []
    for index, progress in enumerate(sections):
        progress = replace(progress)
        if not progress.is_locked:
            if progress.started_at is not None:
                deadline = section_deadline(definition, sections, index)
                end = min(now, deadline) if deadline is not None else now
                progress.completed_at = end
                progress.time_spent = seconds_between(progress.started_at, end)
            progress.is_locked = True
        closed.append(progress)
    return closed
