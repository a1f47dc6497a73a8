"""CSV import pipeline.

Rows are streamed one at a time, validated into
:class:`~spending_tracker.models.CandidateTransaction` records and written
through the store. Each row commits on its own, so an import that fails or
is cancelled half way keeps what it already wrote; the duplicate key makes
re-running the same file safe.
"""

from __future__ import annotations

import csv
import io
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterator, Optional, Sequence, Union

from . import config
from .db import TransactionStore
from .errors import (
    DateFormatError,
    RowValidationError,
    StorageError,
    StructuralImportError,
    ValidationError,
)
from .dates import parse_iso_date
from .models import (
    CandidateTransaction,
    DuplicateInfo,
    ImportResult,
    ImportSession,
    ImportStatus,
    RowError,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('date', 'amount', 'description')
OPTIONAL_COLUMNS = ('category', 'type')
CURRENCY_MARKERS = ('$', '£', '€', '¥', '₹', ',', ' ')

# str is a path; CSV text goes in as bytes or a file-like object
Source = Union[str, Path, bytes, bytearray, IO]


@dataclass(frozen=True)
class ImportOptions:
    """Knobs for a single import.

    ``skip_duplicates`` only changes reporting: duplicates are always
    detected and counted, but with ``True`` they are not listed one by one.
    """

    skip_duplicates: bool = False
    validate_only: bool = False
    max_file_size: int = config.MAX_CSV_SIZE


class _Cancelled(Exception):
    pass


# ---------------------------------------------------------------------------
# Source handling
# ---------------------------------------------------------------------------


def _source_name(source: Source, fallback: str = 'upload.csv') -> str:
    if isinstance(source, (str, Path)):
        return Path(source).name
    return getattr(source, 'name', None) or fallback


@contextmanager
def _open_source(source: Source, max_size: int) -> Iterator[IO[str]]:
    if isinstance(source, (bytes, bytearray)):
        if len(source) > max_size:
            raise StructuralImportError(_too_large(max_size))
        yield io.StringIO(_decode(bytes(source)), newline='')
        return

    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise StructuralImportError(f"Cannot read {path}: {exc}") from exc
        if size > max_size:
            raise StructuralImportError(_too_large(max_size))
        try:
            handle = path.open('r', newline='', encoding='utf-8-sig')
        except OSError as exc:
            raise StructuralImportError(f"Cannot read {path}: {exc}") from exc
        with handle:
            yield handle
        return

    if hasattr(source, 'read'):
        data = source.read()
        if isinstance(data, bytes):
            if len(data) > max_size:
                raise StructuralImportError(_too_large(max_size))
            data = _decode(data)
        elif len(data.encode('utf-8')) > max_size:
            raise StructuralImportError(_too_large(max_size))
        yield io.StringIO(data.lstrip('\ufeff'), newline='')
        return

    raise StructuralImportError(f"Unsupported import source type: {type(source).__name__}")


def _decode(data: bytes) -> str:
    try:
        return data.decode('utf-8-sig')
    except UnicodeDecodeError as exc:
        raise StructuralImportError(f"File is not valid UTF-8: {exc}") from exc


def _too_large(max_size: int) -> str:
    return f"File size exceeds maximum allowed size of {max_size / (1024 * 1024):g}MB"


# ---------------------------------------------------------------------------
# Header and row validation
# ---------------------------------------------------------------------------


def normalize_header(name: Any) -> str:
    return str(name or '').strip().lstrip('\ufeff').strip('"').strip().lower()


def parse_header(header: Optional[Sequence[str]]) -> Dict[str, int]:
    """Map known column names to their position, failing on missing required ones."""
    if not header or not any(str(h).strip() for h in header):
        raise StructuralImportError("CSV file is empty or has no header row")

    positions: Dict[str, int] = {}
    for index, name in enumerate(header):
        key = normalize_header(name)
        if key in REQUIRED_COLUMNS + OPTIONAL_COLUMNS and key not in positions:
            positions[key] = index

    missing = [c for c in REQUIRED_COLUMNS if c not in positions]
    if missing:
        raise StructuralImportError(f"Missing required columns: {', '.join(missing)}")
    return positions


def parse_amount(text: Optional[str], txn_type: Optional[str] = None) -> float:
    """Parse a signed amount, accepting currency markers and (accounting) negatives."""
    cleaned = (text or '').strip()
    if not cleaned:
        raise ValueError("Amount is required")

    negative = cleaned.startswith('(') and cleaned.endswith(')')
    if negative:
        cleaned = cleaned[1:-1]
    for marker in CURRENCY_MARKERS:
        cleaned = cleaned.replace(marker, '')

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Invalid amount format {text!r}") from None
    if not value.is_finite():
        raise ValueError(f"Invalid amount format {text!r}")
    if value == 0:
        raise ValueError("Amount cannot be zero")
    if abs(value) > Decimal(str(config.MAX_AMOUNT)):
        raise ValueError(f"Amount {text.strip()!r} exceeds maximum allowed value of {config.MAX_AMOUNT}")

    if negative:
        value = -abs(value)
    kind = (txn_type or '').strip().lower()
    if kind == 'credit':
        value = abs(value)
    elif kind == 'debit':
        value = -abs(value)
    return float(value)


def validate_row(
    values: Dict[str, str],
    row: int,
    today: date,
    raw_data: Optional[Dict[str, Any]] = None,
) -> CandidateTransaction:
    """Turn one row (keyed by normalized column name) into a candidate.

    Raises RowValidationError naming the first offending field.
    """
    raw = raw_data if raw_data is not None else values

    def fail(field: str, message: str) -> RowValidationError:
        return RowValidationError(message, row=row, field=field, raw_data=raw)

    date_text = (values.get('date') or '').strip()
    if not date_text:
        raise fail('date', "Date is required")
    try:
        txn_date = parse_iso_date(date_text)
    except DateFormatError as exc:
        raise fail('date', str(exc)) from None
    if txn_date > today:
        raise fail('date', f"Date {date_text!r} cannot be in the future")

    try:
        amount = parse_amount(values.get('amount'), values.get('type'))
    except ValueError as exc:
        raise fail('amount', str(exc)) from None

    description = (values.get('description') or '').strip()
    if not description:
        raise fail('description', "Description is required")
    if len(description) > config.MAX_DESCRIPTION_LENGTH:
        raise fail(
            'description',
            f"Description exceeds {config.MAX_DESCRIPTION_LENGTH} characters",
        )

    category = (values.get('category') or '').strip() or None
    if category is not None and len(category) > config.MAX_CATEGORY_LENGTH:
        raise fail('category', f"Category exceeds {config.MAX_CATEGORY_LENGTH} characters")

    return CandidateTransaction(
        date=txn_date, amount=amount, description=description, category=category, row=row
    )


def _row_values(header: Sequence[str], positions: Dict[str, int], cells: Sequence[str], row: int):
    raw: Dict[str, Any] = dict(zip(header, cells))
    if len(cells) > len(header):
        raw['_extra'] = list(cells[len(header):])
    if len(cells) != len(header):
        raise RowValidationError(
            f"Expected {len(header)} fields, found {len(cells)}", row=row, raw_data=raw
        )
    values = {key: cells[index] for key, index in positions.items()}
    return values, raw


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ImportPipeline:
    """Validates CSV sources and writes them through a TransactionStore."""

    def __init__(self, store: TransactionStore, today: Optional[Callable[[], date]] = None):
        self.store = store
        self._today = today or date.today

    def import_csv(
        self,
        source: Source,
        source_name: Optional[str] = None,
        options: Optional[ImportOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportResult:
        """Import a CSV file, bytes payload or file-like object.

        A ``str`` source is always a filesystem path, never CSV text; pass
        text as bytes or wrap it in ``io.StringIO``.

        Only one import per database runs at a time. Structural problems end
        the session as ``failed`` and are reported through the returned
        session. Any other failure also fails the session, then propagates.
        """
        opts = options or ImportOptions()
        name = source_name or _source_name(source)
        today = self._today()

        with self.store.write_lock():
            session = self.store.create_session(name)
            result = ImportResult(session=session)
            totals = {'rows': 0, 'imported': 0, 'duplicates': 0, 'errors': 0}

            try:
                self._process(source, opts, today, cancel_event, result, totals)
            except StructuralImportError as exc:
                logger.warning("Import session %s failed: %s", session.id, exc)
                result.session = self._fail(session.id, str(exc), totals)
                return result
            except _Cancelled:
                logger.warning(
                    "Import session %s cancelled after %s rows", session.id, totals['rows']
                )
                result.session = self._fail(session.id, "Import cancelled", totals)
                return result
            except StorageError as exc:
                logger.error("Import session %s aborted by storage error: %s", session.id, exc)
                try:
                    self._fail(session.id, f"Storage error: {exc}", totals)
                except StorageError:
                    logger.exception("Could not mark import session %s as failed", session.id)
                raise
            except Exception as exc:
                logger.exception("Import session %s aborted by unexpected error", session.id)
                try:
                    self._fail(session.id, f"Unexpected error: {exc}", totals)
                except StorageError:
                    logger.exception("Could not mark import session %s as failed", session.id)
                raise

            result.session = self.store.complete_session(
                session.id,
                total_rows=totals['rows'],
                imported=totals['imported'],
                duplicates=totals['duplicates'],
                errors=totals['errors'],
            )
        return result

    def _process(
        self,
        source: Source,
        opts: ImportOptions,
        today: date,
        cancel_event: Optional[threading.Event],
        result: ImportResult,
        totals: Dict[str, int],
    ) -> None:
        with _open_source(source, opts.max_file_size) as handle:
            reader = csv.reader(handle)
            try:
                header = next(reader, None)
                positions = parse_header(header)
                header = [str(h) for h in header]

                for row_number, cells in enumerate(reader, start=2):
                    if cancel_event is not None and cancel_event.is_set():
                        raise _Cancelled()
                    if not any(cell.strip() for cell in cells):
                        continue
                    totals['rows'] += 1
                    self._process_row(header, positions, cells, row_number, today, opts, result, totals)
            except (csv.Error, UnicodeDecodeError) as exc:
                raise StructuralImportError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc

    def _process_row(
        self,
        header: Sequence[str],
        positions: Dict[str, int],
        cells: Sequence[str],
        row_number: int,
        today: date,
        opts: ImportOptions,
        result: ImportResult,
        totals: Dict[str, int],
    ) -> None:
        try:
            values, raw = _row_values(header, positions, cells, row_number)
            candidate = validate_row(values, row_number, today, raw_data=raw)
        except RowValidationError as exc:
            totals['errors'] += 1
            result.errors.append(
                RowError(row=exc.row, message=exc.message, field=exc.field, raw_data=exc.raw_data)
            )
            return

        if opts.validate_only:
            return

        outcome = self.store.insert(candidate)
        if outcome.created:
            totals['imported'] += 1
            result.imported.append(self.store.get_transaction(outcome.transaction_id))
            return

        totals['duplicates'] += 1
        if not opts.skip_duplicates:
            result.duplicates.append(
                DuplicateInfo(
                    row=row_number,
                    date=candidate.date.isoformat(),
                    amount=candidate.amount,
                    description=candidate.description,
                    existing_id=outcome.transaction_id,
                )
            )

    def _fail(self, session_id: int, message: str, totals: Dict[str, int]) -> ImportSession:
        return self.store.fail_session(
            session_id,
            message,
            total_rows=totals['rows'],
            imported=totals['imported'],
            duplicates=totals['duplicates'],
            errors=totals['errors'],
        )

    def cancel_import(self, session_id: int) -> ImportSession:
        """Fail a session left ``pending`` (e.g. by a crashed process)."""
        session = self.store.get_session(session_id)
        if session.status is not ImportStatus.PENDING:
            raise ValidationError(
                f"Cannot cancel import session with status: {session.status.value}"
            )
        return self.store.fail_session(session_id, "Import cancelled by user")


def preview_csv(source: Source, rows: int = 5, max_file_size: int = config.MAX_CSV_SIZE) -> Dict[str, Any]:
    """Header check plus the first few rows, without touching the store."""
    preview: Dict[str, Any] = {
        'is_valid': False,
        'errors': [],
        'headers': [],
        'sample_rows': [],
        'estimated_rows': 0,
    }
    try:
        with _open_source(source, max_file_size) as handle:
            reader = csv.reader(handle)
            header = next(reader, None)
            preview['headers'] = [str(h).strip() for h in header or []]
            count = 0
            for cells in reader:
                if not any(cell.strip() for cell in cells):
                    continue
                if count < rows:
                    preview['sample_rows'].append(list(cells))
                count += 1
            preview['estimated_rows'] = count
        parse_header(header)
        preview['is_valid'] = True
    except StructuralImportError as exc:
        preview['errors'].append(str(exc))
    except (csv.Error, UnicodeDecodeError) as exc:
        preview['errors'].append(f"Malformed CSV: {exc}")
    return preview
