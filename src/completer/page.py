"""
Course page state: module markers, security token, and local marker updates.

The page is the course HTML document fetched through the authenticated
session and parsed with BeautifulSoup. Unlocking or marking a module complete
only touches this parsed copy; the server is the source of truth and is
consulted again through ``fetch_fresh()`` / ``reload()``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import requests
from bs4 import BeautifulSoup, Tag
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import config
from .models import ContentCategory, ModuleRecord

_PARSER = "lxml"


def _classes(element: Tag) -> list[str]:
    value = element.get("class") or []
    if isinstance(value, str):
        return value.split()
    return list(value)


def _set_classes(element: Tag, remove: Iterable[str] = (), add: Iterable[str] = ()) -> None:
    removed = set(remove)
    classes = [c for c in _classes(element) if c not in removed]
    for name in add:
        if name not in classes:
            classes.append(name)
    element["class"] = classes


def _closest(element: Tag, class_name: str) -> Optional[Tag]:
    """Nearest ancestor-or-self carrying ``class_name``."""
    if class_name in _classes(element):
        return element
    return element.find_parent(class_=class_name)


def _category_from_icon(icon: Optional[Tag]) -> ContentCategory:
    if icon is None:
        return ContentCategory.UNKNOWN
    icon_classes = _classes(icon)
    for icon_class, category in config.ICON_CATEGORY_MAP:
        if icon_class in icon_classes:
            return ContentCategory(category)
    return ContentCategory.UNKNOWN


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type((requests.exceptions.ConnectionError, requests.exceptions.Timeout)),
    reraise=True,
)
def _get_document(session: requests.Session, url: str, timeout: Optional[float]) -> str:
    resp = session.get(url, timeout=timeout, allow_redirects=True)
    resp.raise_for_status()
    return resp.text


class CoursePage:
    """Read/write view over the course page's module markers."""

    def __init__(
        self,
        soup: Optional[BeautifulSoup],
        url: str = "",
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.soup = soup
        self.url = url
        self.session = session
        self.timeout = timeout

    @classmethod
    def from_html(
        cls,
        html: str,
        url: str = "",
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> "CoursePage":
        return cls(BeautifulSoup(html, _PARSER), url=url, session=session, timeout=timeout)

    @classmethod
    def load(
        cls,
        url: str,
        session: requests.Session,
        timeout: Optional[float] = None,
    ) -> "CoursePage":
        """Fetch ``url`` through ``session`` and parse it."""
        logging.info(f"🌐 Loading course page: {url}")
        html = _get_document(session, url, timeout)
        return cls.from_html(html, url=url, session=session, timeout=timeout)

    @property
    def is_loaded(self) -> bool:
        return self.soup is not None

    # --- Module markers ---

    def _marker(self, index: int) -> Optional[Tag]:
        if self.soup is None or index < 0:
            return None
        return self.soup.select_one("." + config.MODULE_CLASS_TEMPLATE.format(index=index))

    def read_module(self, index: int) -> Optional[ModuleRecord]:
        """Return the module at ``index``, or None when no marker exists."""
        marker = self._marker(index)
        if marker is None:
            return None

        marker_classes = _classes(marker)
        category = ContentCategory.UNKNOWN
        external_id = None

        container = _closest(marker, config.CONTENT_CONTAINER_CLASS)
        if container is not None:
            category = _category_from_icon(container.select_one(config.ICON_CSS))
            link = container.select_one(config.EXTERNAL_ID_LINK_CSS)
            if link is not None:
                external_id = link.get(config.EXTERNAL_ID_ATTR) or None

        return ModuleRecord(
            index=index,
            locked=config.LOCKED_CLASS in marker_classes,
            completed=config.COMPLETED_CLASS in marker_classes,
            category=category,
            external_id=external_id,
        )

    def module_count(self) -> int:
        """Smallest index with no module marker."""
        count = 0
        while self._marker(count) is not None:
            count += 1
        return count

    def count_completed(self, total: int) -> int:
        completed = 0
        for index in range(total):
            marker = self._marker(index)
            if marker is not None and config.COMPLETED_CLASS in _classes(marker):
                completed += 1
        return completed

    # --- Local marker updates ---

    def unlock(self, index: int) -> bool:
        marker = self._marker(index)
        if marker is None:
            return False
        _set_classes(marker, remove=[config.LOCKED_CLASS], add=[config.UNLOCKED_CLASS])
        logging.info(f"   🔓 Module {index} unlocked")
        return True

    def mark_completed(self, index: int) -> bool:
        marker = self._marker(index)
        if marker is None:
            return False
        _set_classes(
            marker,
            remove=[config.LOCKED_CLASS],
            add=[config.UNLOCKED_CLASS, config.COMPLETED_CLASS],
        )
        return True

    # --- Security token ---

    def csrf_token(self) -> Optional[str]:
        """Look up the CSRF token: meta tags, hidden field, then cookie."""
        if self.soup is not None:
            for selector in config.CSRF_TOKEN_SELECTORS:
                element = self.soup.select_one(selector)
                if element is None:
                    continue
                token = element.get("content") or element.get("value")
                if token:
                    return token

        if self.session is not None:
            token = self.session.cookies.get(config.CSRF_COOKIE_NAME)
            if token:
                return token
        return None

    # --- Server round-trips ---

    def fetch_fresh(self) -> "CoursePage":
        """Fetch the page again and return it as a separate document."""
        if self.session is None or not self.url:
            raise ValueError("Cannot fetch course page without a session and URL.")
        html = _get_document(self.session, self.url, self.timeout)
        return CoursePage.from_html(html, url=self.url, session=self.session, timeout=self.timeout)

    def reload(self) -> None:
        """Replace the live document with a fresh copy from the server."""
        fresh = self.fetch_fresh()
        self.soup = fresh.soup
        logging.info(f"🔄 Course page reloaded from {self.url}")
