"""
Domain models for the chat import feature.

``ImportJob`` and ``ChatFile`` are plain dataclasses mutated by the workflow.
``ImportAnalysis`` wraps the backend's analysis payload and guarantees every
documented field is present with a type-correct default, so callers never
have to guard against missing keys.
"""

import copy
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Import job statuses reported by the backend
STATUS_NONE = "none"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ANALYZED = "analyzed"
STATUS_FAILED = "failed"

SUCCESS_STATUSES = frozenset({STATUS_COMPLETED, STATUS_ANALYZED})
TERMINAL_STATUSES = SUCCESS_STATUSES | {STATUS_FAILED}

CHAT_SOURCES = ("whatsapp", "imessage")
DEFAULT_CHAT_SOURCE = "whatsapp"
ALLOWED_FILE_EXTENSIONS = (".txt", ".csv", ".json", ".zip", ".html")

# Workflow steps
STEP_SELECT_SOURCE = 0
STEP_UPLOAD_FILE = 1
STEP_PROCESS_IMPORT = 2
STEP_REVIEW_ANALYSIS = 3
STEP_LABELS = ("Select Source", "Upload File", "Process Import", "Review Analysis")


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def is_success(status: str | None) -> bool:
    return status in SUCCESS_STATUSES


@dataclass(slots=True)
class ChatFile:
    """An uploaded chat export."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()

    def has_allowed_extension(self) -> bool:
        return self.extension in ALLOWED_FILE_EXTENSIONS


@dataclass(slots=True)
class ImportJob:
    """State of one server-side import, as last observed by polling."""

    conversation_id: str
    status: str = STATUS_PROCESSING
    progress: int = 0
    file_size: int = 0
    message_count: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_polled_at: datetime | None = None
    stalled: bool = False

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def elapsed_seconds(self, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        return (now - self.started_at).total_seconds()


@dataclass(slots=True)
class RelationshipAnalysisState:
    """Progress of the relationship-level analysis that follows an import."""

    status: str = "idle"  # idle, analyzing, completed, timeout, error
    progress: float = 0
    error: str | None = None
    refreshing: bool = False

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "progress": round(self.progress),
            "error": self.error,
            "refreshing": self.refreshing,
        }


DEFAULT_EMOTIONAL_DYNAMICS = {
    "overall": "balanced",
    "user": "engaged",
    "contact": "responsive",
    "trends": "consistent",
}
DEFAULT_INSIGHTS = "Analysis in progress..."
FALLBACK_INSIGHTS = "Unable to load analysis data."

# camelCase payload key -> (expected type, default)
ANALYSIS_FIELDS: dict[str, tuple[type | tuple[type, ...], Any]] = {
    "topSenders": (dict, {}),
    "topTopics": (list, []),
    "timeRange": (str, ""),
    "messageCount": ((int, float), 0),
    "sentimentScore": ((int, float), 0),
    "sentimentLabel": (str, ""),
    "communicationBalance": (str, ""),
    "primaryTopics": (list, []),
    "topicDistribution": (list, []),
    "connectionScore": ((int, float), 0),
    "relationshipLevel": ((int, float), 0),
    "challengesBadges": (list, []),
    "nextMilestone": (str, ""),
    "communicationStyle": (dict, {}),
    "loveLanguage": (str, ""),
    "trustLevel": ((int, float), 0),
    "theirValues": (list, []),
    "theirInterests": (list, []),
    "communicationPreferences": (dict, {}),
    "importantDates": (list, []),
}


def _coerce(value: Any, expected: type | tuple[type, ...], default: Any) -> Any:
    # bool is an int subclass; never let True stand in for a score
    if isinstance(value, bool) or not isinstance(value, expected):
        return copy.deepcopy(default)
    return value


class ImportAnalysis:
    """Normalized import analysis. Read-only once built."""

    def __init__(self, data: dict | None):
        raw = data if isinstance(data, dict) else {}
        values = {
            name: _coerce(raw.get(name), expected, default)
            for name, (expected, default) in ANALYSIS_FIELDS.items()
        }
        values["insights"] = self._parse_insights(raw.get("insights"))
        values["summary"] = self._parse_summary(raw.get("summary"))
        self._values = values
        self.raw_data = raw

    @staticmethod
    def _parse_insights(insights: Any) -> str:
        if isinstance(insights, dict):
            text = insights.get("insightsText")
            return text if isinstance(text, str) and text else DEFAULT_INSIGHTS
        if isinstance(insights, str) and insights:
            return insights
        return DEFAULT_INSIGHTS

    @staticmethod
    def _parse_summary(summary: Any) -> dict:
        result = dict(summary) if isinstance(summary, dict) else {}
        dynamics = result.get("emotionalDynamics")
        result["emotionalDynamics"] = (
            dynamics if isinstance(dynamics, dict) else dict(DEFAULT_EMOTIONAL_DYNAMICS)
        )
        for key in ("keyInsights", "areasForGrowth"):
            if not isinstance(result.get(key), list):
                result[key] = []
        return result

    @classmethod
    def fallback(cls) -> "ImportAnalysis":
        """Renderable placeholder used when the analysis could not be fetched."""
        analysis = cls({})
        analysis._values["topSenders"] = {"You": 1, "Contact": 1}
        analysis._values["insights"] = FALLBACK_INSIGHTS
        return analysis

    def __getitem__(self, key: str) -> Any:
        return copy.deepcopy(self._values[key])

    @property
    def top_topics(self) -> list[dict]:
        return self["topTopics"]

    @property
    def message_count(self) -> int:
        return self._values["messageCount"]

    def topics_for_update(self) -> list[dict]:
        """Top topics reduced to the {name, percentage} pairs the backend accepts."""
        return [
            {"name": topic.get("name"), "percentage": topic.get("percentage")}
            for topic in self._values["topTopics"]
            if isinstance(topic, dict)
        ]

    def to_dict(self) -> dict:
        return copy.deepcopy(self._values)
