"""
Dataset persistence.

The real product keeps datasets in MongoDB behind its own service; the
import path only needs create and read, so this in-memory store stands
in for it. Swap in another DatasetStore implementation to persist.
"""
import asyncio
import hashlib
from typing import Dict, Optional, Protocol

from sheetport.models.imports import Dataset
from sheetport.utils.logger import get_logger

logger = get_logger(__name__)


def dataset_id_for(source_key: str) -> str:
    """Stable dataset id for a source, so re-imports replace rather than duplicate."""
    return "ds_" + hashlib.sha256(source_key.encode("utf-8")).hexdigest()[:24]


class DatasetStore(Protocol):
    async def save(self, dataset: Dataset) -> Dataset: ...

    async def get(self, dataset_id: str) -> Optional[Dataset]: ...


class InMemoryDatasetStore:
    """Dict-backed DatasetStore."""

    def __init__(self):
        self._datasets: Dict[str, Dataset] = {}
        self._lock = asyncio.Lock()

    async def save(self, dataset: Dataset) -> Dataset:
        async with self._lock:
            replaced = dataset.dataset_id in self._datasets
            self._datasets[dataset.dataset_id] = dataset
        logger.info(f"{'Replaced' if replaced else 'Created'} dataset {dataset.dataset_id} ({dataset.source})")
        return dataset

    async def get(self, dataset_id: str) -> Optional[Dataset]:
        return self._datasets.get(dataset_id)
