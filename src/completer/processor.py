"""Per-module state machine: check, skip, unlock, submit, mark complete."""

from __future__ import annotations

import asyncio
import logging
from typing import AbstractSet, Awaitable, Callable, Optional, Set

from . import config
from .api import CompletionClient
from .errors import ModuleNotFound, UnknownCategoryError
from .models import APIResult, ContentCategory, ModuleOutcome, ModuleRecord
from .page import CoursePage

SINGLE_PROGRESS_CATEGORIES = (ContentCategory.HTML, ContentCategory.PDF)


class ModuleProcessor:
    """Drives one module from its current page state to an outcome.

    ``completed`` and ``skip_list`` are owned by the caller (the run
    controller); the processor only ever adds to ``completed``.
    """

    def __init__(
        self,
        page: CoursePage,
        client: CompletionClient,
        completed: Set[int],
        skip_list: AbstractSet[int] = frozenset(),
        settings: Optional[config.CompleterSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.page = page
        self.client = client
        self.completed = completed
        self.skip_list = skip_list
        self.settings = settings or config.SETTINGS
        self._sleep = sleep

    def _read(self, index: int) -> ModuleRecord:
        record = self.page.read_module(index)
        if record is None:
            raise ModuleNotFound(index)
        return record

    def _protocol_for(self, record: ModuleRecord) -> Callable[[ModuleRecord], Awaitable[APIResult]]:
        """Pick the completion protocol for the module's category."""
        if record.category == ContentCategory.VIDEO:
            return self._submit_video
        if record.category in SINGLE_PROGRESS_CATEGORIES:
            return self._submit_content
        raise UnknownCategoryError(f"unknown content type '{record.category.value}'")

    async def _submit_video(self, record: ModuleRecord) -> APIResult:
        logging.info(f"   🎬 Processing video {record.index} with data-id {record.external_id}")
        return await self.client.submit_stream_progress(record.external_id, baseline=len(self.completed))

    async def _submit_content(self, record: ModuleRecord) -> APIResult:
        logging.info(f"   📄 Processing {record.category.value} {record.index} with data-id {record.external_id}")
        # Static content counts as complete on any 2xx, even when the
        # server progress did not move.
        return await self.client.submit_single_progress(record.external_id)

    def _complete(self, index: int, module_count: int) -> None:
        self.page.mark_completed(index)
        self.completed.add(index)
        if index + 1 < module_count:
            self.page.unlock(index + 1)
        logging.info(f"✅ Module {index} marked as completed ({len(self.completed)}/{module_count})")

    async def process(self, index: int, module_count: int) -> ModuleOutcome:
        try:
            record = self._read(index)
        except ModuleNotFound as e:
            logging.warning(f"⚠️ {e}")
            return ModuleOutcome.NOT_FOUND

        if record.completed:
            logging.info(f"Module {index} already completed")
            return ModuleOutcome.ALREADY_COMPLETED

        if index in self.skip_list:
            logging.info(f"⏭️ Skipping assessment module {index}")
            return ModuleOutcome.SKIPPED

        if record.locked:
            self.page.unlock(index)
            await self._sleep(self.settings.unlock_delay)

        logging.info(f"Processing {record.category.value} module {index}")

        try:
            submit = self._protocol_for(record)
        except UnknownCategoryError as e:
            logging.warning(f"   ⏭️ Module {index} skipped: {e}")
            return ModuleOutcome.SKIPPED

        if not record.external_id:
            logging.error(f"   ❌ No data-id found for {record.category.value} module {index}")
            return ModuleOutcome.FAILED

        result = await submit(record)

        if not result.success:
            logging.error(f"   ❌ Failed to complete module {index}: {result.error}")
            return ModuleOutcome.FAILED

        if result.progress_changed:
            logging.info(f"   Module {index} accepted. Progress: {result.progress_level}, Modules: {result.modules_completed}")
        else:
            logging.warning(
                f"   ⚠️ Module {index} API successful but server progress unchanged "
                f"(Progress={result.progress_level}, Modules={result.modules_completed})"
            )

        self._complete(index, module_count)
        await self._sleep(self.settings.settle_delay)
        return ModuleOutcome.COMPLETED
