import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest
import requests

from src.completer.config import CompleterSettings
from src.completer.page import CoursePage

COURSE_URL = "https://vle.example.edu/courses/view/42"
BASE_URL = "https://vle.example.edu"

_ICON_FOR_CATEGORY = {
    "html": "fa-file-code-o",
    "video": "fa-file-movie-o",
    "pdf": "fa-file-pdf-o",
    "assessment": "fa-file-text-o",
    "unknown": "fa-question",
}


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = ""):
        self.status_code = status_code
        self.text = text

    @classmethod
    def json_body(cls, payload: Any, status_code: int = 200) -> "FakeResponse":
        return cls(status_code=status_code, text=json.dumps(payload))

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            error = requests.exceptions.HTTPError(f"{self.status_code} error")
            error.response = self
            raise error


ResponseItem = Union[FakeResponse, Exception]


class FakeSession:
    """Stand-in for requests.Session that records every call.

    POST responses are consumed in order (the last one repeats), unless
    ``post_handler`` is set, in which case it is called with (url, data).
    GET responses behave the same way.
    """

    def __init__(
        self,
        post_responses: Optional[Sequence[ResponseItem]] = None,
        get_responses: Optional[Sequence[ResponseItem]] = None,
    ):
        self.cookies = requests.cookies.RequestsCookieJar()
        self.headers: Dict[str, str] = {}
        self.posts: List[Dict[str, Any]] = []
        self.gets: List[str] = []
        self._post_queue: List[ResponseItem] = list(post_responses or [])
        self._get_queue: List[ResponseItem] = list(get_responses or [])
        self.post_handler: Optional[Callable[[str, Dict[str, str]], ResponseItem]] = None

    @staticmethod
    def _next(queue: List[ResponseItem], default: ResponseItem) -> ResponseItem:
        if not queue:
            return default
        if len(queue) == 1:
            return queue[0]
        return queue.pop(0)

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": dict(data or {}), "headers": dict(headers or {}), "timeout": timeout})
        if self.post_handler is not None:
            item = self.post_handler(url, dict(data or {}))
        else:
            item = self._next(self._post_queue, FakeResponse(200, "{}"))
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, timeout=None, allow_redirects=True):
        self.gets.append(url)
        item = self._next(self._get_queue, FakeResponse(404, ""))
        if isinstance(item, Exception):
            raise item
        return item

    def positions(self) -> List[str]:
        return [p["data"].get("position_data") for p in self.posts]


def module_html(
    index: int,
    category: str = "video",
    locked: bool = False,
    completed: bool = False,
    data_id: Optional[str] = "auto",
) -> str:
    classes = [f"auto_{index}"]
    if locked:
        classes.append("lock")
    if completed:
        classes.append("full")
    link = ""
    if data_id is not None:
        value = f"id-{index}" if data_id == "auto" else data_id
        link = f'<a href="#" data-id="{value}">Lesson {index}</a>'
    icon = _ICON_FOR_CATEGORY.get(category, category)
    return (
        '<div class="lecture_content">'
        f'<i class="fa {icon}"></i>{link}'
        f'<span class="{" ".join(classes)}"></span>'
        "</div>"
    )


def course_html(modules: Sequence[Dict[str, Any]], token: Optional[str] = "tok-123456789012345678901234") -> str:
    """Build a course page; each entry is passed to ``module_html``."""
    head = f'<meta name="csrfToken" content="{token}">' if token else ""
    body = "".join(module_html(i, **module) for i, module in enumerate(modules))
    return f"<html><head>{head}</head><body><ul>{body}</ul></body></html>"


@pytest.fixture()
def settings() -> CompleterSettings:
    """Settings with every pacing delay disabled."""
    return CompleterSettings(
        base_url=BASE_URL,
        course_url=COURSE_URL,
        module_delay=0,
        unlock_delay=0,
        settle_delay=0,
        reconcile_delay=0,
        reload_delay=0,
        request_timeout=None,
        assessment_modules=[],
        reload_on_server_ahead=True,
    )


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def make_page(fake_session):
    """Factory: make_page([{...}, ...], token=...) -> CoursePage bound to fake_session."""

    def _make(modules: Sequence[Dict[str, Any]], token: Optional[str] = "tok-123456789012345678901234") -> CoursePage:
        return CoursePage.from_html(course_html(modules, token=token), url=COURSE_URL, session=fake_session)

    return _make
