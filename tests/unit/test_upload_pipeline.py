"""Unit tests for the batch upload pipeline.

Tests classification, duplicate detection and the order of storage calls,
using mocked storage collaborators.
"""

import itertools
import json
import sys
from unittest.mock import MagicMock

import pytest

from sensing.errors import DataAccessError, InvalidBatchError, MalformedConditionError
from sensing.schemas.survey import Survey
from sensing.services.upload import UploadPipeline, parse_batch


def stream_point(timestamp: str, mode: str = "walk", **overrides) -> dict:
    point = {
        "stream_id": "mode",
        "stream_version": 1,
        "metadata": {"timestamp": timestamp},
        "data": {"mode": mode},
    }
    point.update(overrides)
    return point


def survey_point(timestamp: str, responses: dict) -> dict:
    return {
        "survey_id": "mood",
        "survey_version": 1,
        "metadata": {"timestamp": timestamp},
        "responses": responses,
    }


@pytest.fixture
def duplicate_index():
    index = MagicMock()
    index.find_existing.return_value = set()
    return index


@pytest.fixture
def sink():
    return MagicMock()


@pytest.fixture
def pipeline(duplicate_index, sink):
    return UploadPipeline(duplicate_index, sink)


class TestParseBatch:
    """Tests for decoding uploaded batches."""

    def test_array(self):
        assert list(parse_batch('[{"a": 1}, 2]')) == [{"a": 1}, 2]

    def test_invalid_json(self):
        with pytest.raises(InvalidBatchError) as exc_info:
            parse_batch("[{")

        assert exc_info.value.code == "invalid_batch"

    def test_not_an_array(self):
        with pytest.raises(InvalidBatchError):
            parse_batch('{"stream_id": "mode"}')

    @pytest.mark.skipif(
        not hasattr(sys, "get_int_max_str_digits"),
        reason="interpreter has no integer digit limit",
    )
    def test_integer_over_digit_limit(self):
        with pytest.raises(InvalidBatchError):
            parse_batch("[" + "1" * 5000 + "]")

    def test_nesting_too_deep(self):
        with pytest.raises(InvalidBatchError):
            parse_batch("[" * 100000 + "]" * 100000)


class TestStreamUploads:
    """Tests for uploads against an observer."""

    def test_all_valid(self, pipeline, sink, mobility_observer):
        points = [stream_point("2024-05-01T12:00:00Z"), stream_point("2024-05-01T12:01:00Z")]

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 2
        assert result.duplicate_count == 0
        assert result.invalid_points == []
        sink.store.assert_called_once_with("owner", mobility_observer, result.valid_points)
        sink.store_invalid.assert_not_called()

    def test_in_batch_duplicate(self, pipeline, sink, mobility_observer):
        """A repeated point is counted as a duplicate, not stored twice."""
        first = stream_point("2024-05-01T12:00:00Z")
        points = [first, dict(first), stream_point("2024-05-01T12:05:00Z")]

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 2
        assert result.duplicate_count == 1
        stored = sink.store.call_args.args[2]
        assert [p.timestamp.minute for p in stored] == [0, 5]

    def test_first_occurrence_wins(self, pipeline, mobility_observer):
        """Points with the same identity but different data keep the first."""
        points = [
            stream_point("2024-05-01T12:00:00Z", mode="walk"),
            stream_point("2024-05-01T12:00:00Z", mode="run"),
        ]

        result = pipeline.upload("owner", mobility_observer, points)

        assert [p.data["mode"] for p in result.valid_points] == ["walk"]
        assert result.duplicate_count == 1

    def test_stored_duplicates(self, pipeline, duplicate_index, sink, mobility_observer):
        """Points already stored by an earlier upload are skipped."""
        points = [stream_point("2024-05-01T12:00:00Z"), stream_point("2024-05-01T12:01:00Z")]
        classified = pipeline.classify(mobility_observer, points)[0]
        duplicate_index.find_existing.return_value = {classified[0].identity}

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 1
        assert result.duplicate_count == 1
        duplicate_index.find_existing.assert_called_once()
        owner, definition, keys = duplicate_index.find_existing.call_args.args
        assert owner == "owner"
        assert definition is mobility_observer
        assert keys == {point.identity for point in classified}

    def test_invalid_point_does_not_abort(self, pipeline, mobility_observer):
        """A point missing a required field is reported; the rest are kept."""
        points = [
            stream_point("2024-05-01T12:00:00Z"),
            stream_point("2024-05-01T12:01:00Z", data={"speed": 2}),
            stream_point("2024-05-01T12:02:00Z"),
        ]

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 2
        assert len(result.invalid_points) == 1
        invalid = result.invalid_points[0]
        assert invalid.index == 1
        assert "data.mode" in invalid.reason
        assert invalid.persisted is False

    @pytest.mark.parametrize("preserve", [True, False])
    def test_persisted_flag_follows_opt_in(self, pipeline, sink, mobility_observer, preserve):
        points = [stream_point("2024-05-01T12:00:00Z", data={"speed": 2})]

        result = pipeline.upload("owner", mobility_observer, points, preserve_invalid_points=preserve)

        assert result.invalid_points[0].persisted is preserve
        assert sink.store_invalid.called is preserve

    def test_invalid_points_in_batch_order(self, pipeline, mobility_observer):
        points = [
            "not an object",
            stream_point("2024-05-01T12:00:00Z", stream_id="unknown"),
            stream_point("2024-05-01T12:00:00Z", stream_version="x"),
            stream_point("2024-05-01T12:00:00Z"),
            stream_point("not a time"),
        ]

        result = pipeline.upload("owner", mobility_observer, points)

        assert [p.index for p in result.invalid_points] == [0, 1, 2, 4]
        assert result.valid_count == 1

    def test_version_as_string(self, pipeline, mobility_observer):
        result = pipeline.upload(
            "owner", mobility_observer, [stream_point("2024-05-01T12:00:00Z", stream_version="1")]
        )

        assert result.valid_count == 1

    def test_summary(self, pipeline, mobility_observer):
        points = [
            stream_point("2024-05-01T12:00:00Z"),
            stream_point("2024-05-01T12:00:00Z"),
            stream_point("bad"),
        ]

        summary = pipeline.upload("owner", mobility_observer, points, True).summary()

        assert summary["valid_count"] == 1
        assert summary["duplicate_count"] == 1
        assert summary["invalid_points"][0]["index"] == 2
        assert summary["invalid_points"][0]["persisted"] is True
        assert set(summary["invalid_points"][0]) == {"index", "persisted", "reason"}

    def test_dedup_independent_of_order(self, duplicate_index, sink, mobility_observer):
        """Every ordering of a batch yields the same counts and point set."""
        points = [
            stream_point("2024-05-01T12:00:00Z"),
            stream_point("2024-05-01T12:00:00Z"),
            stream_point("2024-05-01T12:01:00Z"),
            stream_point("2024-05-01T12:02:00Z"),
        ]
        outcomes = set()

        for ordering in itertools.permutations(points):
            result = UploadPipeline(duplicate_index, sink).upload("owner", mobility_observer, ordering)
            identities = frozenset(p.identity for p in result.valid_points)
            outcomes.add((result.valid_count, result.duplicate_count, identities))

        assert len(outcomes) == 1

    def test_batch_consumed_once(self, pipeline, mobility_observer):
        points = (stream_point(f"2024-05-01T12:0{i}:00Z") for i in range(3))

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 3

    def test_max_points(self, duplicate_index, sink, mobility_observer):
        pipeline = UploadPipeline(duplicate_index, sink, max_points=2)
        points = [stream_point(f"2024-05-01T12:0{i}:00Z") for i in range(3)]

        with pytest.raises(InvalidBatchError):
            pipeline.upload("owner", mobility_observer, points)

        sink.store.assert_not_called()


class TestSurveyUploads:
    """Tests for uploads against a survey."""

    def test_valid_and_invalid_responses(self, pipeline, mood_survey):
        points = [
            survey_point("2024-05-01T08:00:00Z", {"p1": 7, "p2": "sunny"}),
            survey_point("2024-05-02T08:00:00Z", {"p1": 3}),
            survey_point("2024-05-03T08:00:00Z", {"p1": 7}),
        ]

        result = pipeline.upload("owner", mood_survey, points)

        assert result.valid_count == 2
        assert [p.index for p in result.invalid_points] == [2]
        assert result.valid_points[0].responses == {"p1": 7, "p2": "sunny"}

    def test_other_survey_rejected(self, pipeline, mood_survey):
        point = survey_point("2024-05-01T08:00:00Z", {"p1": 3})
        point["survey_id"] = "other"

        result = pipeline.upload("owner", mood_survey, [point])

        assert result.valid_count == 0
        assert "another survey" in result.invalid_points[0].reason

    def test_responses_required(self, pipeline, mood_survey):
        point = survey_point("2024-05-01T08:00:00Z", {})
        del point["responses"]

        result = pipeline.upload("owner", mood_survey, [point])

        assert len(result.invalid_points) == 1

    def test_malformed_condition_aborts(self, pipeline, sink):
        """A broken survey definition fails the whole upload."""
        survey = Survey.model_validate({
            "id": "broken",
            "version": 1,
            "name": "Broken",
            "items": [
                {"id": "name", "type": "text"},
                {"id": "age", "type": "number", "condition": "name > 5"},
            ],
        })
        points = [{
            "metadata": {"timestamp": "2024-05-01T08:00:00Z"},
            "responses": {"name": "Ada", "age": 3},
        }]

        with pytest.raises(MalformedConditionError):
            pipeline.upload("owner", survey, points)

        sink.store.assert_not_called()


class TestUnusualValues:
    """Odd but well-formed JSON values reject their point, not the batch."""

    def test_non_ascii_digit_version(self, pipeline, mobility_observer):
        points = [
            stream_point("2024-05-01T12:00:00Z", stream_version="²"),
            stream_point("2024-05-01T12:01:00Z"),
        ]

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 1
        assert [p.index for p in result.invalid_points] == [0]

    def test_non_ascii_digit_choice(self, pipeline):
        survey = Survey.model_validate({
            "id": "habits",
            "version": 1,
            "name": "Habits",
            "items": [{
                "id": "coffee",
                "type": "single_choice",
                "properties": {"choices": [
                    {"key": 1, "label": "Yes"},
                    {"key": 2, "label": "No"},
                ]},
            }],
        })
        points = [
            survey_point("2024-05-01T08:00:00Z", {"coffee": "²"}),
            survey_point("2024-05-02T08:00:00Z", {"coffee": "2"}),
        ]
        for point in points:
            point.update(survey_id="habits")

        result = pipeline.upload("owner", survey, points)

        assert result.valid_count == 1
        assert [p.index for p in result.invalid_points] == [0]

    def test_integer_too_large_for_a_float(self, pipeline, mobility_observer):
        huge = "1" + "0" * 400
        data = (
            '[{"stream_id": "mode", "stream_version": 1,'
            ' "metadata": {"timestamp": "2024-05-01T12:00:00Z"},'
            ' "data": {"mode": "walk", "speed": ' + huge + '}}, '
            + json.dumps(stream_point("2024-05-01T12:01:00Z")) + "]"
        )

        result = pipeline.upload("owner", mobility_observer, parse_batch(data))

        assert result.valid_count == 1
        assert [p.index for p in result.invalid_points] == [0]
        assert "data.speed" in result.invalid_points[0].reason

    def test_timestamp_outside_calendar(self, pipeline, mobility_observer):
        points = [
            stream_point("0001-01-01T00:00:00+05:00"),
            stream_point("2024-05-01T12:01:00Z"),
        ]

        result = pipeline.upload("owner", mobility_observer, points)

        assert result.valid_count == 1
        assert [p.index for p in result.invalid_points] == [0]


class TestStorageFailures:
    """Tests for collaborator failures."""

    def test_lookup_failure_propagates(self, pipeline, duplicate_index, sink, mobility_observer):
        duplicate_index.find_existing.side_effect = DataAccessError("down")

        with pytest.raises(DataAccessError):
            pipeline.upload("owner", mobility_observer, [stream_point("2024-05-01T12:00:00Z")])

        sink.store.assert_not_called()

    def test_empty_batch_skips_lookup(self, pipeline, duplicate_index, sink, mobility_observer):
        result = pipeline.upload("owner", mobility_observer, [])

        assert result.valid_count == 0
        duplicate_index.find_existing.assert_not_called()
        sink.store.assert_called_once_with("owner", mobility_observer, [])
