"""Resumable state for the volunteer export.

The export CSV is the only persisted state. On start-up every existing row is
read back to rebuild two indexes: the (event, role, volunteer) keys already
written and the volunteer detail captured for each name. There is no separate
cache file, so a crash between two appends can never leave the indexes and
the CSV disagreeing. A last row cut off mid-write (no line ending) is
discarded on load and fetched again.

Row layout (no header)::

    event, role, volunteer, comments, note1, note2, ...
"""

from __future__ import annotations

import csv
import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, TextIO, Tuple

logger = logging.getLogger(__name__)

FIXED_COLUMNS = 4
HIDDEN_MARKER = "(Hidden)"

ProcessedKey = Tuple[str, str, str]


class CorruptCacheError(RuntimeError):
    """Raised when the export file cannot be parsed back into rows."""


def normalize_volunteer_name(raw: str) -> str:
    return raw.replace(HIDDEN_MARKER, "").strip()


@dataclass(frozen=True)
class EventRef:
    name: str
    url: str


@dataclass(frozen=True)
class RoleRef:
    name: str
    url: str


@dataclass(frozen=True)
class VolunteerRef:
    """A volunteer link found in a schedule or unassigned table."""

    name: str
    url: str

    @classmethod
    def from_link(cls, text: str, href: str) -> "VolunteerRef":
        return cls(name=normalize_volunteer_name(text), url=href)


@dataclass(frozen=True)
class VolunteerDetail:
    name: str
    comments: str
    personal_notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExportRow:
    event_name: str
    role_name: str
    volunteer_name: str
    comments: str
    personal_notes: Tuple[str, ...] = ()

    @property
    def key(self) -> ProcessedKey:
        return (self.event_name, self.role_name, self.volunteer_name)

    @property
    def detail(self) -> VolunteerDetail:
        return VolunteerDetail(self.volunteer_name, self.comments, self.personal_notes)

    def as_fields(self) -> List[str]:
        return [
            self.event_name,
            self.role_name,
            self.volunteer_name,
            self.comments,
            *self.personal_notes,
        ]

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "ExportRow":
        if len(fields) < FIXED_COLUMNS:
            raise ValueError(
                f"expected at least {FIXED_COLUMNS} columns, found {len(fields)}"
            )
        event_name, role_name, volunteer_name, comments, *notes = fields
        return cls(event_name, role_name, volunteer_name, comments, tuple(notes))


def format_row(row: ExportRow) -> str:
    buffer = io.StringIO()
    csv.writer(buffer).writerow(row.as_fields())
    return buffer.getvalue()


class RecordCache:
    """Index of exported rows, backed by the append-only export CSV.

    ``record_row`` appends the full row, flushes and fsyncs it, and only then
    updates the in-memory indexes. Reloading the file is what makes the
    indexes trustworthy after a crash.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._processed: Set[ProcessedKey] = set()
        self._details: Dict[str, VolunteerDetail] = {}
        self._row_count = 0
        self._handle: Optional[TextIO] = None

    @classmethod
    def open(cls, path: Path) -> "RecordCache":
        cache = cls(path)
        cache.load()
        cache._handle = cache.path.open("a", newline="", encoding="utf-8")
        return cache

    def __enter__(self) -> "RecordCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __len__(self) -> int:
        return self._row_count

    def load(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

        with self.path.open("r", newline="", encoding="utf-8") as handle:
            text = handle.read()

        pieces = text.split("\n")
        lines = [piece + "\n" for piece in pieces[:-1]]
        torn = bool(pieces[-1])
        if torn:
            lines.append(pieces[-1])

        records: List[Tuple[int, Optional[List[str]]]] = []
        reader = csv.reader(lines, strict=True)
        start = 0
        try:
            for fields in reader:
                records.append((start, fields))
                start = reader.line_num
        except csv.Error as exc:
            # Only the unterminated last record may fail to parse.
            if not torn or reader.line_num != len(lines):
                raise CorruptCacheError(f"{self.path}:{reader.line_num}: {exc}") from exc
            records.append((start, None))

        if torn:
            torn_start, _ = records.pop()
            self._drop_torn_tail("".join(lines[:torn_start]))

        for start, fields in records:
            if not fields:
                continue
            try:
                row = ExportRow.from_fields(fields)
            except ValueError as exc:
                raise CorruptCacheError(f"{self.path}:{start + 1}: {exc}") from exc
            self._index(row)

        logger.info(
            "Loaded %d exported rows (%d distinct volunteers) from %s",
            self._row_count,
            len(self._details),
            self.path,
        )

    def _drop_torn_tail(self, complete: str) -> None:
        """Cut a row left without its line ending by an interrupted write."""

        size = len(complete.encode("utf-8"))
        logger.warning(
            "Discarding unfinished last row of %s (%d bytes)",
            self.path,
            self.path.stat().st_size - size,
        )
        with self.path.open("r+b") as handle:
            handle.truncate(size)

    def _index(self, row: ExportRow) -> None:
        self._processed.add(row.key)
        self._details.setdefault(row.volunteer_name, row.detail)
        self._row_count += 1

    def is_processed(self, event_name: str, role_name: str, volunteer_name: str) -> bool:
        return (event_name, role_name, volunteer_name) in self._processed

    def lookup_detail(self, volunteer_name: str) -> Optional[VolunteerDetail]:
        return self._details.get(volunteer_name)

    def record_row(self, row: ExportRow) -> None:
        if self._handle is None:
            raise RuntimeError("RecordCache.open() must be used before writing rows")
        self._handle.write(format_row(row))
        self._handle.flush()
        os.fsync(self._handle.fileno())
        self._index(row)
