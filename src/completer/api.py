"""
Client for the platform's progress-update endpoints.

Two protocols:

* media progress (video): one POST per position variant until the server's
  completed-module count rises above the baseline;
* single progress (html/pdf): one POST, success read from the HTTP status.

Both run the blocking ``requests`` call in a worker thread so each network
call is one suspension point for the caller's event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

import requests

from src.shared.utils import mask_token

from . import config
from .errors import AllVariantsExhausted, HttpStatusError, MissingTokenError, TransportError
from .models import APIResult, ParsedResponse, ResponseBody, UnparsedBody, parse_response_body
from .page import CoursePage


def _is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300


class CompletionClient:
    """Submits module progress on behalf of the logged-in session."""

    def __init__(
        self,
        page: CoursePage,
        settings: Optional[config.CompleterSettings] = None,
        session: Optional[requests.Session] = None,
        variants: Sequence[str] = config.POSITION_VARIANTS,
    ):
        self.page = page
        self.settings = settings or config.SETTINGS
        self.session = session or page.session
        self.variants = tuple(variants)
        if self.session is None:
            raise ValueError("CompletionClient requires a requests session.")

    # --- Request plumbing ---

    def _media_headers(self) -> Dict[str, str]:
        headers = dict(config.XHR_HEADERS)
        headers.update(config.MEDIA_EXTRA_HEADERS)
        headers["Origin"] = self.settings.base_url.rstrip("/")
        headers["Referer"] = self.page.url or self.settings.course_url
        return headers

    def _require_token(self) -> str:
        token = self.page.csrf_token()
        if not token:
            raise MissingTokenError()
        return token

    def _post(self, url: str, data: Dict[str, str], headers: Dict[str, str]) -> ResponseBody:
        """POST a form and narrow the body. Raises TransportError / HttpStatusError."""
        try:
            resp = self.session.post(
                url,
                data=data,
                headers=headers,
                timeout=self.settings.request_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(str(e)) from e

        logging.info(f"   Response: HTTP {resp.status_code}")
        logging.debug(f"   Raw response: {resp.text}")
        if not _is_success_status(resp.status_code):
            raise HttpStatusError(resp.status_code)
        return parse_response_body(resp.text)

    # --- Media (multi-step) progress ---

    async def submit_stream_progress(self, external_id: str, baseline: int = 0) -> APIResult:
        """Cycle through position variants until server-side progress increases.

        ``baseline`` is the completed-module count known when the call starts;
        a JSON response only counts as success once ``modules_completed``
        exceeds it. A non-JSON 2xx body is taken as acceptance.
        """
        try:
            token = self._require_token()
        except MissingTokenError as e:
            logging.error(f"   ❌ No CSRF token found; skipping media progress for {external_id}")
            return APIResult.failure(str(e))

        logging.info(f"   CSRF token: {mask_token(token)}")
        logging.info(f"   Using data-id: {external_id}")

        url = self.settings.media_progress_url
        headers = self._media_headers()

        for position in self.variants:
            data = {
                "course_data": external_id,
                "duration_data": "",
                "position_data": position,
                "version_number": config.VERSION_NUMBER,
                "_csrfToken": token,
            }
            logging.info(f"   📡 Calling media progress API with position_data={position}")
            try:
                body = await asyncio.to_thread(self._post, url, data, headers)
            except HttpStatusError as e:
                logging.warning(f"   ⚠️ API failed ({e}); trying next variant")
                continue
            except TransportError as e:
                logging.warning(f"   ⚠️ Network error: {e}; trying next variant")
                continue

            if isinstance(body, UnparsedBody):
                logging.info("   Non-JSON success body; assuming progress was accepted")
                return APIResult(success=True, progress_changed=True)

            modules_completed = body.modules_completed if body.modules_completed is not None else baseline
            logging.info(f"   Progress: {body.progress}, Modules: {modules_completed}")

            if modules_completed > baseline:
                logging.info(f"   ✅ Server module count increased to {modules_completed}")
                return APIResult(
                    success=True,
                    progress_changed=True,
                    modules_completed=modules_completed,
                    progress_level=body.progress,
                )
            logging.warning("   ⚠️ Progress unchanged; trying next variant")

        return APIResult.failure(str(AllVariantsExhausted()))

    # --- Single-step progress ---

    async def submit_single_progress(self, external_id: str) -> APIResult:
        """Mark static content (html/pdf) as read with a single request.

        Success follows the HTTP status alone; ``progress_changed`` is never
        set here, so callers decide how lenient to be.
        """
        try:
            token = self._require_token()
        except MissingTokenError as e:
            logging.error(f"   ❌ No CSRF token found; skipping single progress for {external_id}")
            return APIResult.failure(str(e))

        data = {
            "course_data": external_id,
            "version_number": config.VERSION_NUMBER,
            "_csrfToken": token,
        }
        logging.info(f"   📡 Calling single progress API for data-id {external_id}")
        try:
            body = await asyncio.to_thread(
                self._post, self.settings.single_progress_url, data, dict(config.XHR_HEADERS)
            )
        except (HttpStatusError, TransportError) as e:
            return APIResult.failure(str(e))

        if isinstance(body, ParsedResponse):
            return APIResult(
                success=True,
                modules_completed=body.modules_completed,
                progress_level=body.progress,
            )
        return APIResult(success=True)
