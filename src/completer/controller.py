"""
Run controller: walks every module in order, paces requests, honours stop
requests, then reconciles local bookkeeping against a fresh server copy.

All run state lives on the controller instance so independent runs (and
tests) never share a completion set.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Iterable, Optional, Set

import requests

from . import config
from .api import CompletionClient
from .errors import AlreadyRunningError, PreconditionError
from .models import APIResult, ModuleOutcome, ProgressSnapshot, ReconciliationReport, RunSummary
from .page import CoursePage
from .processor import ModuleProcessor


class CompletionController:
    """Single-flight driver for completing every module on a course page."""

    def __init__(
        self,
        page: CoursePage,
        client: Optional[CompletionClient] = None,
        settings: Optional[config.CompleterSettings] = None,
        skip_list: Optional[Iterable[int]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or config.SETTINGS
        self.page = page
        self.client = client or CompletionClient(page, self.settings)
        self._sleep = sleep

        # RunState
        self.running = False
        self.module_count = 0
        self.assessment_skip_list: Set[int] = set(
            self.settings.assessment_modules if skip_list is None else skip_list
        )

        # CompletionSet: only ever cleared by initialize_progress()
        self.completed: Set[int] = set()

        # Set from stop_run(), possibly from a signal handler
        self._cancel = threading.Event()
        self.pending_reload: Optional[asyncio.Task] = None

        self.processor = ModuleProcessor(
            page,
            self.client,
            self.completed,
            self.assessment_skip_list,
            settings=self.settings,
            sleep=sleep,
        )

    # --- Progress bookkeeping ---

    def initialize_progress(self) -> None:
        """Re-detect the module count and seed completions from page markers."""
        self.module_count = self.page.module_count()
        self.completed.clear()
        for index in range(self.module_count):
            record = self.page.read_module(index)
            if record is not None and record.completed:
                self.completed.add(index)
                logging.info(f"Module {index} already completed")
        logging.info(f"📊 Found {len(self.completed)}/{self.module_count} modules already completed")

    def progress(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            running=self.running,
            completed=len(self.completed),
            total=self.module_count,
            completed_indices=sorted(self.completed),
        )

    # --- Run lifecycle ---

    def ensure_can_start(self) -> None:
        if self.running:
            raise AlreadyRunningError()
        if not self.page.is_loaded:
            raise PreconditionError("Course page is not loaded.")

    async def start_run(self) -> RunSummary:
        """Complete every module once; returns a summary of what happened.

        A second call while a run is active is a logged no-op. The check and
        the running flag are set before the first await.
        """
        try:
            self.ensure_can_start()
        except AlreadyRunningError as e:
            logging.warning(f"⚠️ {e}!")
            return RunSummary(started=False, error=str(e))
        except PreconditionError as e:
            logging.error(f"❌ Cannot start auto-completion: {e}")
            return RunSummary(started=False, error=str(e))

        self.running = True
        self._cancel.clear()
        summary = RunSummary(started=True)
        logging.info("🚀 Starting auto-completion...")

        try:
            self.initialize_progress()

            for index in range(self.module_count):
                if self._cancel.is_set():
                    logging.info(f"🛑 Stop requested; halting before module {index}")
                    summary.cancelled = True
                    break

                try:
                    outcome = await self.processor.process(index, self.module_count)
                except Exception as e:
                    logging.error(f"❌ Unexpected error on module {index}: {e}", exc_info=True)
                    outcome = ModuleOutcome.FAILED
                summary.outcomes[index] = outcome

                await self._sleep(self.settings.module_delay)

            logging.info("✅ Auto-completion finished!")
            logging.info(f"Local result: {len(self.completed)}/{self.module_count} modules completed")

            summary.reconciliation = await self.reconcile()
        except Exception as e:
            logging.error(f"❌ Auto-completion aborted: {e}", exc_info=True)
            summary.error = str(e)
        finally:
            self.running = False

        return summary

    def stop_run(self) -> None:
        """Request cancellation at the next module boundary."""
        self._cancel.set()
        logging.info("Stop requested; the current module will finish first")

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    # --- Reconciliation ---

    async def reconcile(self) -> ReconciliationReport:
        """Compare local completions with a freshly fetched copy of the page."""
        logging.info("🔍 Checking final progress from server...")
        await self._sleep(self.settings.reconcile_delay)

        local_count = len(self.completed)
        try:
            fresh = await asyncio.to_thread(self.page.fetch_fresh)
        except (requests.exceptions.RequestException, ValueError) as e:
            logging.error(f"❌ Error checking server progress: {e}")
            return ReconciliationReport(
                local_count=local_count,
                server_count=local_count,
                total=self.module_count,
                fetch_error=str(e),
            )

        server_count = fresh.count_completed(self.module_count)
        logging.info(f"Server reports {server_count}/{self.module_count} modules completed")
        logging.info(f"Local count: {local_count}/{self.module_count} modules completed")

        reload_scheduled = False
        if server_count > local_count and self.settings.reload_on_server_ahead:
            logging.info(
                f"🔄 Server has more completed modules than local. "
                f"Reloading page in {self.settings.reload_delay}s..."
            )
            self.pending_reload = asyncio.create_task(self._reload_after(self.settings.reload_delay))
            reload_scheduled = True

        discrepancy = server_count != local_count
        if discrepancy:
            logging.warning(f"⚠️ Discrepancy detected: Local={local_count}, Server={server_count}")

        return ReconciliationReport(
            local_count=local_count,
            server_count=server_count,
            total=self.module_count,
            discrepancy=discrepancy,
            reload_scheduled=reload_scheduled,
        )

    async def _reload_after(self, delay: float) -> None:
        await self._sleep(delay)
        try:
            await asyncio.to_thread(self.page.reload)
        except (requests.exceptions.RequestException, ValueError) as e:
            logging.error(f"❌ Page reload failed: {e}")

    async def wait_for_reload(self) -> None:
        if self.pending_reload is not None:
            await self.pending_reload

    # --- Manual hook ---

    def _probe_baseline(self) -> int:
        # Before any run has seeded the CompletionSet, count the page markers.
        if self.module_count == 0 and not self.running:
            return self.page.count_completed(self.page.module_count())
        return len(self.completed)

    async def probe_module(self, index: int) -> Optional[APIResult]:
        """Submit media progress for one module and report, without touching run state."""
        record = self.page.read_module(index)
        if record is None:
            logging.error(f"Module {index} not found")
            return None
        if not record.external_id:
            logging.error(f"No data-id found for module {index}")
            return None

        logging.info(f"🧪 Testing API for module {index} ({record.category.value})")
        logging.info(f"   Data-id: {record.external_id}")
        result = await self.client.submit_stream_progress(record.external_id, baseline=self._probe_baseline())

        if result.success:
            logging.info(f"✅ API test successful for module {index}")
        else:
            logging.error(f"❌ API test failed for module {index}: {result.error}")
        return result
