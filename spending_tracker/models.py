"""Typed records shared by the store, the import pipeline and the analytics."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field as dataclass_field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

TRANSACTION_COLUMNS = ['id', 'date', 'amount', 'description', 'category', 'created_at']


class ImportStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass(frozen=True)
class CandidateTransaction:
    """A validated CSV row that has not been written yet."""

    date: date
    amount: float
    description: str
    category: Optional[str] = None
    row: Optional[int] = None

    @property
    def key(self) -> tuple:
        """The duplicate-detection key."""
        return (self.date.isoformat(), self.amount, self.description)


@dataclass(frozen=True)
class Transaction:
    id: int
    date: date
    amount: float
    description: str
    category: Optional[str]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['date'] = self.date.isoformat()
        return data


@dataclass(frozen=True)
class InsertResult:
    """Outcome of a store insert: either a new row or the existing duplicate."""

    created: bool
    transaction_id: int

    @property
    def is_duplicate(self) -> bool:
        return not self.created


@dataclass(frozen=True)
class ImportSession:
    id: int
    source_name: str
    started_at: str
    completed_at: Optional[str]
    total_rows: int
    imported_count: int
    duplicate_count: int
    error_count: int
    status: ImportStatus
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass(frozen=True)
class DuplicateInfo:
    row: int
    date: str
    amount: float
    description: str
    existing_id: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RowError:
    row: int
    message: str
    field: Optional[str] = None
    raw_data: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImportResult:
    session: ImportSession
    imported: List[Transaction] = dataclass_field(default_factory=list)
    duplicates: List[DuplicateInfo] = dataclass_field(default_factory=list)
    errors: List[RowError] = dataclass_field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session': self.session.to_dict(),
            'imported': [t.to_dict() for t in self.imported],
            'duplicates': [d.to_dict() for d in self.duplicates],
            'errors': [e.to_dict() for e in self.errors],
        }


@dataclass
class DailySpending:
    date: date
    amount: float = 0.0
    transaction_count: int = 0
    categories: Dict[str, float] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'amount': self.amount,
            'transaction_count': self.transaction_count,
            'categories': dict(self.categories),
        }


def transactions_frame(transactions: List[Transaction]) -> pd.DataFrame:
    """Convert store records into the DataFrame shape the analytics expect."""
    if not transactions:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)
    frame = pd.DataFrame([asdict(t) for t in transactions], columns=TRANSACTION_COLUMNS)
    frame['date'] = pd.to_datetime(frame['date'])
    return frame


def timestamp() -> str:
    """UTC write timestamp in ISO format."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec='seconds')
