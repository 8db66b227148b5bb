"""
Unit tests for src/completer/api.py

The session is a FakeSession from conftest, so every request is recorded and
no network is touched.
"""

import asyncio

import pytest
import requests

from src.completer import config
from src.completer.api import CompletionClient
from src.completer.page import CoursePage

from conftest import BASE_URL, COURSE_URL, FakeResponse, FakeSession, course_html


def _client(session, settings, token="tok-123456789012345678901234", variants=config.POSITION_VARIANTS):
    page = CoursePage.from_html(course_html([{}], token=token), url=COURSE_URL, session=session)
    return CompletionClient(page, settings, variants=variants)


class TestStreamProgress:
    def test_stops_at_first_variant_that_raises_module_count(self, settings):
        session = FakeSession(post_responses=[
            FakeResponse.json_body({"modules_completed": 2, "progress": 10}),
            FakeResponse.json_body({"modules_completed": 3, "progress": 40}),
            FakeResponse.json_body({"modules_completed": 3, "progress": 40}),
        ])
        client = _client(session, settings, variants=("A", "B", "C"))

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=2))

        assert session.positions() == ["A", "B"]
        assert result.success is True
        assert result.progress_changed is True
        assert result.modules_completed == 3
        assert result.progress_level == 40

    def test_all_variants_exhausted(self, settings):
        session = FakeSession(post_responses=[FakeResponse.json_body({"modules_completed": 1})])
        client = _client(session, settings)

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=1))

        assert session.positions() == list(config.POSITION_VARIANTS)
        assert result.success is False
        assert result.error == "All position_data variants failed"

    def test_missing_modules_completed_counts_as_unchanged(self, settings):
        session = FakeSession(post_responses=[FakeResponse.json_body({"progress": 80})])
        client = _client(session, settings)

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=0))

        assert len(session.posts) == 3
        assert result.success is False

    def test_missing_token_fails_without_requests(self, settings):
        session = FakeSession()
        client = _client(session, settings, token=None)

        result = asyncio.run(client.submit_stream_progress("vid-1"))

        assert session.posts == []
        assert result.success is False
        assert result.error == "No CSRF token"

    def test_non_json_success_is_accepted(self, settings):
        session = FakeSession(post_responses=[FakeResponse(200, "<html>saved</html>")])
        client = _client(session, settings)

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=4))

        assert len(session.posts) == 1
        assert result.success is True
        assert result.progress_changed is True
        assert result.modules_completed is None

    def test_null_json_body_is_accepted_on_first_variant(self, settings):
        session = FakeSession(post_responses=[FakeResponse(200, "null")])
        client = _client(session, settings)

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=4))

        assert session.positions() == ["300"]
        assert result.success is True
        assert result.progress_changed is True

    def test_http_error_advances_to_next_variant(self, settings):
        session = FakeSession(post_responses=[
            FakeResponse(500, "server error"),
            FakeResponse.json_body({"modules_completed": 1}),
        ])
        client = _client(session, settings)

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=0))

        assert session.positions() == ["300", "594"]
        assert result.success is True

    def test_transport_error_advances_to_next_variant(self, settings):
        session = FakeSession(post_responses=[
            requests.exceptions.ConnectionError("reset by peer"),
            requests.exceptions.Timeout("slow"),
            FakeResponse.json_body({"modules_completed": 9}),
        ])
        client = _client(session, settings)

        result = asyncio.run(client.submit_stream_progress("vid-1", baseline=0))

        assert session.positions() == ["300", "594", "99999"]
        assert result.success is True
        assert result.modules_completed == 9

    def test_form_fields_and_headers(self, settings):
        session = FakeSession(post_responses=[FakeResponse(200, "ok")])
        client = _client(session, settings, token="secret-token")

        asyncio.run(client.submit_stream_progress("vid-42"))

        sent = session.posts[0]
        assert sent["url"] == BASE_URL + config.MEDIA_PROGRESS_PATH
        assert sent["data"] == {
            "course_data": "vid-42",
            "duration_data": "",
            "position_data": "300",
            "version_number": "3",
            "_csrfToken": "secret-token",
        }
        assert sent["headers"]["X-Requested-With"] == "XMLHttpRequest"
        assert sent["headers"]["Content-Type"].startswith("application/x-www-form-urlencoded")
        assert sent["headers"]["Origin"] == BASE_URL
        assert sent["headers"]["Referer"] == COURSE_URL
        assert sent["timeout"] is None


class TestSingleProgress:
    def test_json_success_reports_counts(self, settings):
        session = FakeSession(post_responses=[FakeResponse.json_body({"modules_completed": 6, "progress": 75})])
        client = _client(session, settings)

        result = asyncio.run(client.submit_single_progress("doc-1"))

        assert len(session.posts) == 1
        assert session.posts[0]["url"] == BASE_URL + config.SINGLE_PROGRESS_PATH
        assert session.posts[0]["data"] == {
            "course_data": "doc-1",
            "version_number": "3",
            "_csrfToken": "tok-123456789012345678901234",
        }
        assert result.success is True
        assert result.modules_completed == 6
        assert result.progress_level == 75
        # The single-step protocol never claims a progress change.
        assert result.progress_changed is False

    def test_non_json_success(self, settings):
        session = FakeSession(post_responses=[FakeResponse(200, "done")])
        result = asyncio.run(_client(session, settings).submit_single_progress("doc-1"))
        assert result.success is True
        assert result.modules_completed is None

    def test_http_error_fails(self, settings):
        session = FakeSession(post_responses=[FakeResponse(403, "forbidden")])
        result = asyncio.run(_client(session, settings).submit_single_progress("doc-1"))
        assert result.success is False
        assert result.error == "HTTP 403"
        assert len(session.posts) == 1

    def test_transport_error_fails(self, settings):
        session = FakeSession(post_responses=[requests.exceptions.ConnectionError("offline")])
        result = asyncio.run(_client(session, settings).submit_single_progress("doc-1"))
        assert result.success is False
        assert "offline" in result.error

    def test_missing_token(self, settings):
        session = FakeSession()
        result = asyncio.run(_client(session, settings, token=None).submit_single_progress("doc-1"))
        assert result.success is False
        assert result.error == "No CSRF token"
        assert session.posts == []


def test_client_requires_session(settings):
    page = CoursePage.from_html(course_html([{}]))
    with pytest.raises(ValueError):
        CompletionClient(page, settings)
