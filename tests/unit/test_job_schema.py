"""Unit tests for the Job schema and parse_job.

Tests cover:
- parse_job() accepts a minimal job and leaves lang/html/success unset
- parse_job() accepts bytes payloads and integer ids
- parse_job() raises JobParseError for non-JSON and non-object payloads
- parse_job() raises JobSchemaError naming missing id/url
- parse_job() raises JobSchemaError for ill-typed id/url
- parse_job() ignores html/success sent by the producer
- Job.language() falls back to the default for missing/blank/non-string lang
- Job.to_payload() keeps caller fields and omits html on failure
"""

from __future__ import annotations

import json

import pytest

from render_worker.core.exceptions import JobParseError, JobSchemaError
from render_worker.core.schemas.job import Job, parse_job


class TestParseJob:
    def test_minimal_job(self) -> None:
        job = parse_job('{"id": "1", "url": "http://example.com"}')

        assert job.id == "1"
        assert job.url == "http://example.com"
        assert job.lang is None
        assert job.html is None
        assert job.success is None

    def test_bytes_payload_and_integer_id(self) -> None:
        job = parse_job(b'{"id": 42, "url": "http://example.com", "lang": "fr"}')

        assert job.id == 42
        assert job.lang == "fr"

    @pytest.mark.parametrize("raw", ["not json", "", b"\x80not json", "{'id': 1}"])
    def test_invalid_json_raises_parse_error(self, raw: str | bytes) -> None:
        with pytest.raises(JobParseError) as exc_info:
            parse_job(raw)

        assert exc_info.value.raw == raw

    @pytest.mark.parametrize("raw", ['"a string"', "[1, 2]", "42", "null"])
    def test_non_object_json_raises_parse_error(self, raw: str) -> None:
        with pytest.raises(JobParseError):
            parse_job(raw)

    def test_missing_url_raises_schema_error(self) -> None:
        with pytest.raises(JobSchemaError) as exc_info:
            parse_job('{"id": "1"}')

        assert exc_info.value.missing == ("url",)

    def test_missing_both_fields_lists_both(self) -> None:
        with pytest.raises(JobSchemaError) as exc_info:
            parse_job('{"lang": "fr"}')

        assert exc_info.value.missing == ("id", "url")

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"id": "1", "url": None}, "url"),
            ({"id": "1", "url": 5}, "url"),
            ({"id": True, "url": "http://x"}, "id"),
            ({"id": None, "url": "http://x"}, "id"),
        ],
    )
    def test_ill_typed_required_field_raises_schema_error(
        self, payload: dict, field: str
    ) -> None:
        with pytest.raises(JobSchemaError) as exc_info:
            parse_job(json.dumps(payload))

        assert field in exc_info.value.missing

    @pytest.mark.parametrize(
        "extra",
        [{"html": 5}, {"success": "pending"}, {"html": None, "success": [1]}],
    )
    def test_producer_output_fields_are_ignored(self, extra: dict) -> None:
        job = parse_job(json.dumps({"id": "1", "url": "http://x", **extra}))

        assert job.html is None
        assert job.success is None

    def test_stale_html_is_not_echoed_on_failure(self) -> None:
        job = parse_job('{"id": "1", "url": "http://x", "html": "<old/>", "success": true}')
        job.mark_failed()

        assert json.loads(job.to_payload()) == {
            "id": "1",
            "url": "http://x",
            "success": False,
        }


class TestJobLanguage:
    @pytest.mark.parametrize("lang", [None, "", "   ", 7, ["fr"]])
    def test_falls_back_to_default(self, lang: object) -> None:
        job = Job(id="1", url="http://x", lang=lang)

        assert job.language("en-US") == "en-US"

    def test_uses_job_language(self) -> None:
        job = Job(id="1", url="http://x", lang="de-DE")

        assert job.language("en-US") == "de-DE"


class TestJobPayload:
    def test_success_payload_keeps_caller_fields(self) -> None:
        job = parse_job('{"id": "1", "url": "http://x", "priority": 3, "meta": {"a": 1}}')
        job.mark_rendered("<html></html>")

        payload = json.loads(job.to_payload())

        assert payload == {
            "id": "1",
            "url": "http://x",
            "html": "<html></html>",
            "success": True,
            "priority": 3,
            "meta": {"a": 1},
        }

    def test_failure_payload_has_no_html(self) -> None:
        job = parse_job('{"id": "2", "url": "http://bad"}')
        job.mark_failed()

        payload = json.loads(job.to_payload())

        assert payload == {"id": "2", "url": "http://bad", "success": False}

    def test_lang_is_echoed_when_sent(self) -> None:
        job = parse_job('{"id": "3", "url": "http://x", "lang": "fr"}')
        job.mark_failed()

        assert json.loads(job.to_payload())["lang"] == "fr"
