import pytest

from soulsync.features.chat_import.domain.models import (
    ANALYSIS_FIELDS,
    DEFAULT_EMOTIONAL_DYNAMICS,
    ChatFile,
    ImportAnalysis,
    ImportJob,
    is_success,
    is_terminal,
)

DOCUMENTED_FIELDS = set(ANALYSIS_FIELDS) | {"insights", "summary"}


def _assert_complete(result: dict):
    assert DOCUMENTED_FIELDS <= set(result)
    for key in DOCUMENTED_FIELDS:
        assert result[key] is not None, key
    for key in ("emotionalDynamics", "keyInsights", "areasForGrowth"):
        assert result["summary"][key] is not None, key


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        [],
        "not an object",
        {"summary": None, "topTopics": None},
        {"summary": "oops", "topSenders": [], "messageCount": "12"},
        {"summary": {"emotionalDynamics": None, "keyInsights": "x"}},
    ],
)
def test_partial_payloads_get_safe_defaults(payload):
    result = ImportAnalysis(payload).to_dict()

    _assert_complete(result)
    assert result["topTopics"] == []
    assert result["summary"]["emotionalDynamics"] == DEFAULT_EMOTIONAL_DYNAMICS
    assert result["summary"]["keyInsights"] == []
    assert result["summary"]["areasForGrowth"] == []
    assert result["insights"] == "Analysis in progress..."


def test_wrong_types_fall_back_to_defaults():
    result = ImportAnalysis(
        {
            "topSenders": ["You"],
            "messageCount": "lots",
            "connectionScore": True,
            "communicationStyle": "direct",
            "challengesBadges": {"first": 1},
        }
    ).to_dict()

    assert result["topSenders"] == {}
    assert result["messageCount"] == 0
    assert result["connectionScore"] == 0
    assert result["communicationStyle"] == {}
    assert result["challengesBadges"] == []


def test_present_fields_are_kept():
    analysis = ImportAnalysis(
        {
            "topSenders": {"You": 10, "Sam": 8},
            "topTopics": [{"name": "Travel", "percentage": 55}],
            "summary": {"keyInsights": ["You plan trips together"], "tone": "warm"},
            "sentimentScore": 0.7,
            "sentimentLabel": "positive",
            "connectionScore": 81,
            "nextMilestone": "Weekly call",
        }
    )
    result = analysis.to_dict()

    assert result["topSenders"] == {"You": 10, "Sam": 8}
    assert result["summary"]["keyInsights"] == ["You plan trips together"]
    assert result["summary"]["tone"] == "warm"
    assert result["summary"]["emotionalDynamics"] == DEFAULT_EMOTIONAL_DYNAMICS
    assert result["sentimentScore"] == 0.7
    assert result["connectionScore"] == 81
    assert analysis["nextMilestone"] == "Weekly call"


def test_insights_object_uses_insights_text():
    assert ImportAnalysis({"insights": {"insightsText": "Lots of laughter"}})["insights"] == (
        "Lots of laughter"
    )
    assert ImportAnalysis({"insights": {}})["insights"] == "Analysis in progress..."
    assert ImportAnalysis({"insights": "Plain text"})["insights"] == "Plain text"


def test_fallback_is_renderable():
    result = ImportAnalysis.fallback().to_dict()

    _assert_complete(result)
    assert result["topSenders"] == {"You": 1, "Contact": 1}
    assert result["insights"] == "Unable to load analysis data."
    assert result["connectionScore"] == 0


def test_analysis_is_not_mutated_through_accessors():
    analysis = ImportAnalysis({"topTopics": [{"name": "Work", "percentage": 30}]})

    analysis.to_dict()["topTopics"].append({"name": "Other"})
    analysis["topTopics"].clear()

    assert analysis.top_topics == [{"name": "Work", "percentage": 30}]


def test_topics_for_update_keeps_name_and_percentage():
    analysis = ImportAnalysis(
        {
            "topTopics": [
                {"name": "Travel", "percentage": 40, "count": 48, "keywords": ["trip"]},
                "garbage",
                {"name": "Work", "percentage": 25},
            ]
        }
    )

    assert analysis.topics_for_update() == [
        {"name": "Travel", "percentage": 40},
        {"name": "Work", "percentage": 25},
    ]


def test_status_helpers():
    assert is_terminal("completed") and is_terminal("analyzed") and is_terminal("failed")
    assert not is_terminal("processing")
    assert not is_terminal(None)
    assert is_success("analyzed")
    assert not is_success("failed")
    assert ImportJob("conv-1", status="failed").is_terminal


def test_chat_file_extension_check():
    assert ChatFile("WhatsApp Chat.TXT", b"hi").has_allowed_extension()
    assert ChatFile("export.zip", b"").has_allowed_extension()
    assert not ChatFile("photo.png", b"").has_allowed_extension()
    assert ChatFile("a.txt", b"12345").size == 5
