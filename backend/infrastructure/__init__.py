"""Infrastructure layer exports."""

from .records import InMemoryRecordRepository, RecordRepository

__all__ = [
    "InMemoryRecordRepository",
    "RecordRepository",
]
