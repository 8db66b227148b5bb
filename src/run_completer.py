# src/run_completer.py

import argparse
import asyncio
import datetime
import json
import logging
import os
import signal
import sys
from typing import List, Optional

import requests
import sentry_sdk
from dotenv import load_dotenv
from sentry_sdk.integrations.logging import LoggingIntegration

# --- Import project modules (package-qualified for -m execution) ---
from src.completer import config
from src.completer.controller import CompletionController
from src.completer.models import ModuleOutcome, RunSummary
from src.completer.page import CoursePage
from src.shared import utils

SUMMARY_DIR = "logs"


def setup_logging(level: str = "INFO", log_file: str = config.LOG_FILE) -> None:
    """Log to a file and to the console."""
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(module)s - %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(),
        ],
        force=True,
    )


def init_sentry() -> bool:
    """Enable Sentry error reporting when SENTRY_DSN is configured."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return False
    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        before_send=utils.sanitize_event,
        send_default_pii=False,
    )
    logging.info("Sentry monitoring initialized for completer")
    return True


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="VLE course auto completer")
    parser.add_argument("--url", default=None, help="Course page URL (defaults to VLE_COURSE_URL)")
    parser.add_argument(
        "--cookie",
        default=None,
        help="Raw Cookie header from a logged-in browser (defaults to VLE_SESSION_COOKIE)",
    )
    parser.add_argument(
        "--skip",
        type=int,
        nargs="*",
        default=None,
        metavar="INDEX",
        help="Module indices to leave untouched (e.g. graded assessments)",
    )
    parser.add_argument("--delay", type=float, default=None, help="Seconds to pause between modules")
    parser.add_argument("--no-reload", action="store_true", help="Do not reload when the server is ahead")
    parser.add_argument("--probe", type=int, default=None, metavar="INDEX", help="Only test the API on one module")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    return parser


def settings_from_args(args: argparse.Namespace) -> config.CompleterSettings:
    overrides = {}
    if args.url:
        overrides["course_url"] = args.url
    if args.cookie:
        overrides["session_cookie"] = args.cookie
    if args.skip is not None:
        overrides["assessment_modules"] = list(args.skip)
    if args.delay is not None:
        overrides["module_delay"] = args.delay
    if args.no_reload:
        overrides["reload_on_server_ahead"] = False
    return config.SETTINGS.model_copy(update=overrides)


def save_run_summary(summary: RunSummary, start_time: datetime.datetime, directory: str = SUMMARY_DIR) -> str:
    """Write the run summary to a timestamped JSON file and return its path."""
    duration = (datetime.datetime.now() - start_time).total_seconds()
    payload = {
        "run_metadata": {
            "timestamp": start_time.isoformat(),
            "duration_seconds": round(duration, 2),
            "duration_human": f"{int(duration // 60)}m {int(duration % 60)}s",
        },
        "summary": summary.model_dump(mode="json"),
        "counts": {outcome.value: summary.count(outcome) for outcome in ModuleOutcome},
    }

    os.makedirs(directory, exist_ok=True)
    filename = os.path.join(directory, f"run_summary_{start_time.strftime('%Y%m%d_%H%M%S')}.json")
    with open(filename, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    with open(os.path.join(directory, "run_summary_latest.json"), "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    logging.info(f"📊 Run summary saved to {filename}")
    return filename


async def run(controller: CompletionController) -> RunSummary:
    summary = await controller.start_run()
    await controller.wait_for_reload()
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    # .env must be loaded before the parser reads LOG_LEVEL for its default.
    load_dotenv()
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level)
    init_sentry()

    settings = settings_from_args(args)
    if not settings.course_url:
        logging.error("No course URL given (use --url or VLE_COURSE_URL).")
        return 2

    session = utils.build_session(settings.session_cookie, settings.base_url)
    try:
        page = CoursePage.load(settings.course_url, session, timeout=settings.request_timeout)
    except requests.exceptions.RequestException as e:
        logging.error(f"❌ Could not load course page: {e}")
        return 1

    controller = CompletionController(page, settings=settings)

    if args.probe is not None:
        result = asyncio.run(controller.probe_module(args.probe))
        return 0 if result is not None and result.success else 1

    def _handle_interrupt(signum, frame):
        controller.stop_run()

    previous_handler = signal.signal(signal.SIGINT, _handle_interrupt)
    start_time = datetime.datetime.now()
    try:
        summary = asyncio.run(run(controller))
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    save_run_summary(summary, start_time)
    snapshot = controller.progress()
    logging.info(f"🚀 Done. Local: {snapshot.completed}/{snapshot.total} ({snapshot.percentage:.1f}%)")
    if summary.reconciliation is not None:
        logging.info(f"   Server: {summary.reconciliation.server_count}/{summary.reconciliation.total}")
    return 0 if summary.started and summary.error is None else 1


# --- Allow running the script directly ---
if __name__ == "__main__":
    sys.exit(main())
