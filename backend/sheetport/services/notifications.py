"""
Import notifications (best-effort, fire-and-forget).
"""
import asyncio
from typing import Protocol

from sheetport.models.imports import Dataset
from sheetport.utils.logger import get_logger

logger = get_logger(__name__)

# Pending sends, held until done
_background_tasks: set = set()


class Notifier(Protocol):
    async def dataset_imported(self, subject_id: str, dataset: Dataset) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    async def dataset_imported(self, subject_id: str, dataset: Dataset) -> None:
        logger.info(f"Dataset {dataset.dataset_id} ready for subject {subject_id}")


def notify_imported(notifier: Notifier, subject_id: str, dataset: Dataset) -> "asyncio.Task":
    """
    Schedule a notification without awaiting it.

    Failures are logged and never reach the import caller.
    """
    async def _send():
        try:
            await notifier.dataset_imported(subject_id, dataset)
        except Exception as e:
            logger.warning(f"Import notification failed for {dataset.dataset_id}: {e}")

    task = asyncio.create_task(_send())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
