"""
Tests: schedule analysis payload, response validation and the busy guard.

The generator port is replaced by a small fake; nothing here talks to the
network.
"""

import json

import pytest

from sitecontrol.analysis import (
    LATE,
    RECENT,
    UPCOMING,
    AnalysisBusyError,
    AnalysisError,
    GeminiGenerator,
    ScheduleAnalyzer,
    build_prompt,
    no_critical_result,
    parse_analysis,
    reduce_records,
)
from sitecontrol.models import OPERATIONS, PROCUREMENT

GOOD_REPLY = json.dumps({
    "summary": "Two items are behind.",
    "criticalDelays": ["Late steel: 9 days"],
    "recommendations": ["Chase the supplier"],
})


class FakeGenerator:
    def __init__(self, reply=GOOD_REPLY, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def _proc(item, scheduled="", actual="", remarks=""):
    return {
        "engineering_item": item,
        "scheduled_request_date": scheduled,
        "actual_request_date": actual,
        "remarks": remarks,
    }


@pytest.fixture
def records():
    return [
        _proc("Late steel", "2024-01-01", "2024-01-10"),
        _proc("Overdue glazing", "2024-01-10"),
        _proc("Recent pumps", "2024-01-20", "2024-01-15"),
        _proc("Upcoming lifts", "2024-02-01"),
        _proc("Old paving", "2023-06-01", "2023-05-01"),
        _proc("   ", "2024-01-01", "2024-01-30"),
    ]


def _items(payload):
    return [p["item"] for p in payload]


class TestReduceRecords:
    def test_no_filter_keeps_every_named_record(self, records, today):
        payload = reduce_records(PROCUREMENT, records, today=today, locale="en")
        assert _items(payload) == [
            "Late steel", "Overdue glazing", "Recent pumps", "Upcoming lifts", "Old paving",
        ]
        assert payload[0] == {
            "item": "Late steel",
            "scheduled": "2024-01-01",
            "actual": "2024-01-10",
            "variance": -9,
            "status": "Delayed, notify site (orange)",
            "remarks": "",
        }

    def test_late(self, records, today):
        payload = reduce_records(PROCUREMENT, records, today=today, filters=[LATE])
        assert _items(payload) == ["Late steel", "Overdue glazing"]

    def test_recent(self, records, today):
        payload = reduce_records(PROCUREMENT, records, today=today, filters=[RECENT])
        assert _items(payload) == ["Late steel", "Recent pumps"]

    def test_upcoming(self, records, today):
        payload = reduce_records(PROCUREMENT, records, today=today, filters=[UPCOMING])
        assert _items(payload) == ["Upcoming lifts"]

    def test_filters_combine_as_union(self, records, today):
        payload = reduce_records(PROCUREMENT, records, today=today, filters=[LATE, UPCOMING])
        assert _items(payload) == ["Late steel", "Overdue glazing", "Upcoming lifts"]

    def test_operations_use_end_dates(self, today):
        ops = [{"item": "Frame", "scheduled_end_date": "2024-01-05", "actual_end_date": "2024-01-20"}]
        payload = reduce_records(OPERATIONS, ops, today=today, filters=[LATE], locale="en")
        assert payload[0]["variance"] == -15
        assert payload[0]["status"] == "Behind (orange)"

    def test_unknown_filter(self, records, today):
        with pytest.raises(ValueError):
            reduce_records(PROCUREMENT, records, today=today, filters=["overdue"])


class TestParseAnalysis:
    def test_plain_json(self):
        result = parse_analysis(GOOD_REPLY)
        assert result.summary == "Two items are behind."
        assert result.critical_delays == ["Late steel: 9 days"]
        assert result.to_dict()["recommendations"] == ["Chase the supplier"]

    def test_fenced_json(self):
        result = parse_analysis("```json\n" + GOOD_REPLY + "\n```")
        assert result.recommendations == ["Chase the supplier"]

    @pytest.mark.parametrize("reply", [
        "",
        "not json at all",
        "[1, 2]",
        json.dumps({"summary": "x", "criticalDelays": []}),
        json.dumps({"summary": 3, "criticalDelays": [], "recommendations": []}),
        json.dumps({"summary": "x", "criticalDelays": "none", "recommendations": []}),
        json.dumps({"summary": "x", "criticalDelays": [1], "recommendations": []}),
    ])
    def test_malformed_replies_fail(self, reply):
        with pytest.raises(AnalysisError):
            parse_analysis(reply)


class TestScheduleAnalyzer:
    def test_success(self, records, today):
        generator = FakeGenerator()
        result = ScheduleAnalyzer(generator).analyze(PROCUREMENT, records, today=today, filters=[LATE])
        assert result.critical_delays == ["Late steel: 9 days"]
        assert len(generator.prompts) == 1
        assert "Late steel" in generator.prompts[0]
        assert "Upcoming lifts" not in generator.prompts[0]

    def test_nothing_to_analyze_skips_the_call(self, today):
        generator = FakeGenerator()
        quiet = [_proc("Old paving", "2023-06-01", "2023-05-01")]
        result = ScheduleAnalyzer(generator).analyze(
            PROCUREMENT, quiet, today=today, filters=[LATE, UPCOMING], locale="en")
        assert result == no_critical_result("en")
        assert result.critical_delays == []
        assert generator.prompts == []

    def test_empty_partition_skips_the_call(self, today):
        generator = FakeGenerator()
        ScheduleAnalyzer(generator).analyze(OPERATIONS, [], today=today)
        assert generator.prompts == []

    def test_malformed_reply(self, records, today):
        analyzer = ScheduleAnalyzer(FakeGenerator(reply="{oops"))
        with pytest.raises(AnalysisError):
            analyzer.analyze(PROCUREMENT, records, today=today)
        assert not analyzer.busy

    def test_transport_failure_is_wrapped(self, records, today):
        analyzer = ScheduleAnalyzer(FakeGenerator(error=ConnectionError("timed out")))
        with pytest.raises(AnalysisError) as info:
            analyzer.analyze(PROCUREMENT, records, today=today)
        assert isinstance(info.value.__cause__, ConnectionError)
        assert not analyzer.busy

    def test_second_request_while_busy_is_rejected(self, records, today):
        generator = FakeGenerator()
        analyzer = ScheduleAnalyzer(generator)
        analyzer._lock.acquire()
        try:
            assert analyzer.busy
            with pytest.raises(AnalysisBusyError):
                analyzer.analyze(PROCUREMENT, records, today=today)
        finally:
            analyzer._lock.release()
        assert generator.prompts == []
        assert analyzer.analyze(PROCUREMENT, records, today=today).summary


def test_prompt_carries_date_and_payload(today):
    payload = [{"item": "鋼構", "variance": -3}]
    prompt = build_prompt(PROCUREMENT, payload, today=today)
    assert "2024-01-21" in prompt
    assert "鋼構" in prompt
    assert "criticalDelays" in prompt


def test_gemini_generator_without_key():
    with pytest.raises(AnalysisError):
        GeminiGenerator(api_key="").generate("hello")
