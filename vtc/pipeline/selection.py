from typing import Iterable, List

from vtc.config.models import ORDER_CHOICES
from vtc.domain.models import FileRecord, WorkItem


def build_work_items(records: Iterable[FileRecord]) -> List[WorkItem]:
    return [WorkItem.from_record(record) for record in records]


def order_items(items: List[WorkItem], mode: str) -> List[WorkItem]:
    """Orders the work queue. Ties fall back to name, then full path."""
    if mode in ("size", "size-desc"):
        return sorted(items, key=lambda it: (-it.record.file_size, it.path.name, str(it.path)))

    if mode == "difficulty":
        return sorted(items, key=lambda it: (-it.difficulty, it.path.name, str(it.path)))

    if mode == "name":
        return sorted(items, key=lambda it: (it.path.name, str(it.path)))

    allowed = ", ".join(ORDER_CHOICES)
    raise ValueError(f"Unsupported order '{mode}'. Use one of: {allowed}.")
