"""
Configuration for the completer module.

Static selectors, endpoint paths and request constants live here as module
constants; anything an operator may want to tune goes through
``CompleterSettings`` so it can be driven from the environment or ``.env``.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Core URLs ---
BASE_URL = "https://vle.hcmue.edu.vn"
MEDIA_PROGRESS_PATH = "/courses/update-media-progress"
SINGLE_PROGRESS_PATH = "/courses/update-single-progress"

# --- Module markers on the course page ---
# Each module indicator carries a class "auto_<index>" (auto_0, auto_1, ...).
MODULE_CLASS_TEMPLATE = "auto_{index}"
LOCKED_CLASS = "lock"
UNLOCKED_CLASS = "unlock"
COMPLETED_CLASS = "full"

# The container that groups a module indicator with its icon and link.
CONTENT_CONTAINER_CLASS = "lecture_content"
ICON_CSS = ".fa"
EXTERNAL_ID_LINK_CSS = "a[data-id]"
EXTERNAL_ID_ATTR = "data-id"

# Icon class -> content category. Order matters only if a page puts more than
# one of these on the same icon.
ICON_CATEGORY_MAP = (
    ("fa-file-code-o", "html"),
    ("fa-file-movie-o", "video"),
    ("fa-file-pdf-o", "pdf"),
    ("fa-file-text-o", "assessment"),
)

# --- Security token lookup (priority order) ---
CSRF_TOKEN_SELECTORS = (
    'meta[name="csrfToken"]',
    'meta[name="_token"]',
    'input[name="_token"]',
)
CSRF_COOKIE_NAME = "csrfToken"

# --- Progress API ---
# Some installations only register media progress after certain playback
# positions are reported: small, large, then saturating.
POSITION_VARIANTS = ("300", "594", "99999")
VERSION_NUMBER = "3"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"
XHR_HEADERS = {
    "Content-Type": FORM_CONTENT_TYPE,
    "X-Requested-With": "XMLHttpRequest",
}
MEDIA_EXTRA_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
}

# Browser-like User-Agent for every request made through the session
BROWSER_HEADER = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    )
}

LOG_FILE = "logs/completer.log"


# --- Structured settings (via Pydantic Settings) ---
class CompleterSettings(BaseSettings):
    """Typed settings for a completion run.

    Values can be configured via environment variables (``VLE_*``) or a
    ``.env`` file. Delays are in seconds.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    base_url: str = Field(
        default=BASE_URL,
        validation_alias=AliasChoices("VLE_BASE_URL"),
    )

    # Course page holding the auto_<n> markers
    course_url: str = Field(
        default="",
        validation_alias=AliasChoices("VLE_COURSE_URL"),
    )

    # Raw "Cookie" header copied from an authenticated browser session
    session_cookie: str = Field(
        default="",
        validation_alias=AliasChoices("VLE_SESSION_COOKIE", "VLE_COOKIE"),
    )

    # Pause after every module attempt, success or failure
    module_delay: float = Field(
        default=2.0,
        validation_alias=AliasChoices("VLE_MODULE_DELAY", "VLE_DELAY"),
    )

    # Pause after unlocking a locked module before calling the API
    unlock_delay: float = Field(
        default=0.5,
        validation_alias=AliasChoices("VLE_UNLOCK_DELAY"),
    )

    # Pause after a successful completion so the backend can catch up
    settle_delay: float = Field(
        default=1.0,
        validation_alias=AliasChoices("VLE_SETTLE_DELAY"),
    )

    # Pause before fetching the page for reconciliation
    reconcile_delay: float = Field(
        default=1.0,
        validation_alias=AliasChoices("VLE_RECONCILE_DELAY"),
    )

    # Pause before the scheduled reload when the server is ahead
    reload_delay: float = Field(
        default=2.0,
        validation_alias=AliasChoices("VLE_RELOAD_DELAY"),
    )

    # None leaves request timeouts to the network stack
    request_timeout: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("VLE_REQUEST_TIMEOUT"),
    )

    # Module indices that must never be submitted (e.g. graded assessments)
    assessment_modules: List[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("VLE_ASSESSMENT_MODULES", "VLE_SKIP_MODULES"),
    )

    reload_on_server_ahead: bool = Field(
        default=True,
        validation_alias=AliasChoices("VLE_RELOAD_ON_SERVER_AHEAD"),
    )

    @property
    def media_progress_url(self) -> str:
        return self.base_url.rstrip("/") + MEDIA_PROGRESS_PATH

    @property
    def single_progress_url(self) -> str:
        return self.base_url.rstrip("/") + SINGLE_PROGRESS_PATH


# Instantiate settings once for module-level access
SETTINGS = CompleterSettings()
