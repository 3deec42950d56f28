"""
Progress display for imports whose backend reports no incremental progress.

The backend answers status polls with ``progress: 0`` until the job is done,
so the displayed value is synthesized: it creeps towards 95% in shrinking
steps and never goes backwards. Real progress, when the backend sends any,
always wins.
"""

import math

MAX_ESTIMATED_PROGRESS = 95

BASE_SECONDS = 15
SECONDS_PER_MB = 2
SECONDS_PER_MESSAGE = 0.005
MIN_ESTIMATE_SECONDS = 20
MAX_ESTIMATE_SECONDS = 300


def progress_increment(current: float) -> int:
    """Step applied per empty poll; smaller as the bar fills up."""
    if current < 40:
        return 15
    if current < 70:
        return 10
    if current < 90:
        return 5
    return 2


class ProgressEstimator:
    """Monotonic 0-100 progress for one import."""

    def __init__(self, initial: int = 0):
        self.displayed = initial

    def observe(self, server_progress: float | None) -> int:
        """Fold one poll response into the displayed value and return it."""
        # Non-numeric progress counts as "no progress reported"
        if isinstance(server_progress, bool) or not isinstance(server_progress, int | float):
            server_progress = 0
        if not server_progress:
            if self.displayed < MAX_ESTIMATED_PROGRESS:
                self.displayed = min(
                    self.displayed + progress_increment(self.displayed), MAX_ESTIMATED_PROGRESS
                )
            return self.displayed

        # Trust the backend, but never move the bar backwards
        self.displayed = max(self.displayed, min(int(server_progress), 100))
        return self.displayed

    def complete(self) -> int:
        self.displayed = 100
        return self.displayed

    def reset(self) -> None:
        self.displayed = 0


def estimated_seconds(file_size: int | None, message_count: float | None) -> float:
    """Processing time estimate in seconds, floored at 20s and capped at 5 minutes."""
    file_size_time = (file_size / (1024 * 1024)) * SECONDS_PER_MB if file_size else 0
    message_time = message_count * SECONDS_PER_MESSAGE if message_count else 0
    total = max(BASE_SECONDS + file_size_time, BASE_SECONDS + message_time, MIN_ESTIMATE_SECONDS)
    return min(total, MAX_ESTIMATE_SECONDS)


def calculate_estimated_time(file_size: int | None, message_count: float | None) -> str:
    seconds = estimated_seconds(file_size, message_count)
    if seconds < 30:
        return "< 30 seconds"
    if seconds < 60:
        return "< 1 min"
    if seconds < 120:
        return "~1-2 min"
    return f"~{math.ceil(seconds / 60)} min"


def estimate_time_remaining(
    progress: float, message_count: int | None = None, file_size: int | None = None
) -> str:
    """
    Human-readable time left for an import in flight.

    Uses the unprocessed share of messages when the count is known, then the
    file size, and finally coarse buckets on the progress value alone.
    """
    if message_count:
        remaining_messages = message_count * (1 - progress / 100)
        return calculate_estimated_time(None, remaining_messages)

    if file_size and file_size > 0:
        return calculate_estimated_time(file_size, None)

    if progress < 20:
        return "1-2 min"
    if progress < 50:
        return "< 1 min"
    if progress < 85:
        return "Just a moment..."
    return "Almost done!"


def progress_phase_message(progress: float) -> str:
    if progress < 40:
        return "Starting import process..."
    if progress < 70:
        return "Processing messages..."
    return "Finalizing analysis..."
