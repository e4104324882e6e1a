"""Auto-completion policy: observed consumption -> completed flag.

Pure functions, no I/O.  Callers persist the result in a progress write.

Completion is monotone.  Every decision ORs with the prior state, so a
later, lower position (seeking back in a video, scrolling up in a text)
never un-marks a lesson.  Only an explicit write can do that: a toggle,
or a full upsert that sets ``completed`` to false.
"""

from __future__ import annotations

from academy.models.course import MediaKind

COMPLETION_THRESHOLD = 0.9


def clamp_position(position: float) -> float:
    """Normalize a reported position into [0, 1]."""
    if position != position:  # NaN
        return 0.0
    return min(1.0, max(0.0, position))


def decide(
    media_kind: MediaKind,
    normalized_position: float,
    previously_completed: bool,
    *,
    threshold: float = COMPLETION_THRESHOLD,
) -> bool:
    """Return the completed flag after observing ``normalized_position``.

    Media lessons complete once playback reaches ``threshold``.  Text
    lessons are not completed by position; the caller raises a separate
    reached-bottom signal (see ``reached_bottom``), so for text this only
    carries the prior state forward.
    """
    if previously_completed:
        return True
    if media_kind is MediaKind.TEXT:
        return False
    return clamp_position(normalized_position) >= threshold


def reached_bottom(scroll_fraction: float, *, threshold: float = COMPLETION_THRESHOLD) -> bool:
    """Caller-side signal for text lessons: scrolled past ``threshold`` of the extent."""
    return clamp_position(scroll_fraction) >= threshold
