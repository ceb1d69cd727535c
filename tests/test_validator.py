"""Tests for response clean-up, JSON repair and FileReview validation."""

import json

import pytest

from errors import ResponseValidationError
from models import RAGStatus, Severity
from tests.helpers import (
    code_error,
    improvement,
    make_source,
    review_json,
    security_issue,
)
from validator import (
    degraded_file_review,
    normalise_severity,
    parse_json_object,
    repair_json,
    strip_artifacts,
    validate_file_review,
)

INFO = make_source("src/app.py", "x = 1\n").info()


class TestStripArtifacts:
    """Tests for strip_artifacts."""

    def test_removes_fences_and_think_blocks(self):
        text = '<think>the user wants {json}</think>\n```json\n{"a": 1}\n```\nHope this helps!'
        assert strip_artifacts(text) == '{"a": 1}'

    def test_removes_control_characters(self):
        assert strip_artifacts('{"a":\x00 "b\x07"}') == '{"a": "b"}'

    def test_truncated_object_runs_to_end(self):
        assert strip_artifacts('noise {"a": [1, 2') == '{"a": [1, 2'


class TestRepairJson:
    """Tests for repair_json."""

    @pytest.mark.parametrize(
        "broken, expected",
        [
            ('{"a": 1,}', {"a": 1}),
            ('{"a": [1, 2,],}', {"a": [1, 2]}),
            ('{"a": 1, // note\n "b": 2}', {"a": 1, "b": 2}),
            ('{"a": /* gone */ 1}', {"a": 1}),
            ('{"a": 1, # note\n "b": 2}', {"a": 1, "b": 2}),
            ('{"a": "unterminated', {"a": "unterminated"}),
            ('{"a": [{"b": 1}, {"c": 2', {"a": [{"b": 1}, {"c": 2}]}),
            ('{"a": 1, "b":', {"a": 1, "b": None}),
            ('{"a": 1, "b"', {"a": 1, "b": None}),
            ('{"a": tr', {"a": True}),
            ('{"a": 1.', {"a": 1}),
        ],
    )
    def test_repairs(self, broken, expected):
        assert json.loads(repair_json(broken)) == expected

    def test_comment_markers_inside_strings_are_kept(self):
        text = '{"url": "http://example.com/#top", "q": "a, b",}'
        assert json.loads(repair_json(text)) == {
            "url": "http://example.com/#top",
            "q": "a, b",
        }


class TestParseJsonObject:
    """Tests for parse_json_object."""

    def test_valid_json_is_not_marked_repaired(self):
        obj, repaired = parse_json_object('Here you go: {"a": 1} and {"b": 2}')
        assert obj == {"a": 1}
        assert not repaired

    def test_broken_json_is_marked_repaired(self):
        obj, repaired = parse_json_object('```json\n{"a": 1,}\n```')
        assert obj == {"a": 1}
        assert repaired

    def test_no_object_raises(self):
        with pytest.raises(ResponseValidationError):
            parse_json_object("I cannot review this file.")


class TestNormaliseSeverity:
    """Tests for normalise_severity."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("High", Severity.HIGH),
            ("CRITICAL", Severity.CRITICAL),
            (" low ", Severity.LOW),
            ("moderate", Severity.MEDIUM),
            ("info", Severity.LOW),
            (9.8, Severity.CRITICAL),
            ("7.5", Severity.HIGH),
            (5, Severity.MEDIUM),
            ("catastrophic", None),
            (None, None),
            (True, None),
        ],
    )
    def test_normalise(self, value, expected):
        assert normalise_severity(value) == expected


class TestValidateFileReview:
    """Tests for validate_file_review."""

    def test_valid_response(self):
        text = review_json(
            "src/app.py",
            summary="One bug.",
            errors=[code_error()],
            improvements=[improvement()],
        )

        outcome = validate_file_review(text, INFO)

        review = outcome.review
        assert review.summary == "One bug."
        assert review.file_rag_status is RAGStatus.AMBER
        assert len(review.errors) == 1
        assert review.improvements[0].improvement_details == "def f(x: int) -> int:"
        assert not review.degraded
        assert not outcome.repaired

    def test_identity_comes_from_local_scan(self):
        text = review_json("somewhere/else.py")
        review = validate_file_review(text, INFO).review
        assert review.source_file_info == INFO

    def test_model_rag_status_is_ignored(self):
        text = review_json(security_issues=[security_issue("Critical")], rag="Green")
        assert validate_file_review(text, INFO).review.file_rag_status is RAGStatus.RED

    def test_missing_collections_default_to_empty(self):
        text = json.dumps({"source_file_info": {}, "summary": "ok"})
        review = validate_file_review(text, INFO).review
        assert review.security_issues == []
        assert review.errors == []
        assert review.improvements == []
        assert review.file_rag_status is RAGStatus.GREEN

    @pytest.mark.parametrize("missing", ["source_file_info", "summary"])
    def test_required_fields(self, missing):
        obj = json.loads(review_json())
        obj[missing] = None
        with pytest.raises(ResponseValidationError, match=missing):
            validate_file_review(json.dumps(obj), INFO)

    def test_unknown_severity_is_dropped_and_recorded(self):
        text = review_json(
            security_issues=[security_issue("High"), security_issue("apocalyptic")]
        )

        outcome = validate_file_review(text, INFO)

        review = outcome.review
        assert [i.severity for i in review.security_issues] == [Severity.HIGH]
        assert review.errors[-1].code == "general"
        assert "apocalyptic" in review.errors[-1].issue
        assert review.degraded
        assert len(outcome.notes) == 1

    def test_non_object_entries_are_dropped(self):
        obj = json.loads(review_json(improvements=[improvement()]))
        obj["improvements"].append("just a string")

        review = validate_file_review(json.dumps(obj), INFO).review

        assert len(review.improvements) == 1
        assert review.errors[0].code == "general"

    def test_truncated_response_is_repaired(self):
        text = review_json(summary="Cut off", errors=[code_error()])[:-40]

        outcome = validate_file_review(text, INFO)

        assert outcome.repaired
        assert outcome.review.degraded
        assert outcome.review.summary == "Cut off"

    def test_fenced_response_with_prose(self):
        text = "Sure! Here is the review:\n```json\n" + review_json() + "\n```\nLet me know."
        outcome = validate_file_review(text, INFO)
        assert not outcome.review.degraded


class TestDegradedFileReview:
    """Tests for degraded_file_review."""

    def test_is_amber_with_one_general_error(self):
        review = degraded_file_review(INFO, "Response is not valid JSON")

        assert review.file_rag_status is RAGStatus.AMBER
        assert review.degraded
        assert len(review.errors) == 1
        assert review.errors[0].code == "general"
        assert review.errors[0].issue == "Response is not valid JSON"
        assert review.source_file_info == INFO
