"""Local directory staging area.

Match documents land as ``*.json`` (one document) or ``*.jsonl`` (one document per
line) files in a directory. What has already been ingested is decided from
``meta_staged_file``: a file is only read when its name is new or its mtime is
newer than the one recorded when it was last read.
"""

import hashlib
import logging
from dataclasses import dataclass
from functools import cached_property
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import func
from sqlmodel import Session, select

from cricket_warehouse.models.raw import StagedFileLog

logger = logging.getLogger(__name__)

STAGED_SUFFIXES = (".json", ".jsonl")


@dataclass
class StagedFile:
    """A file sitting in the staging area."""

    name: str
    content: bytes
    modified_at: datetime

    @cached_property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


class LocalStagingArea:
    """Staging area backed by a local directory.

    Usage:
        >>> stage = LocalStagingArea("data/staging")
        >>> with get_session() as session:
        ...     new_files = stage.list_new_files(session)
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _scan(self) -> list[tuple[str, datetime]]:
        """(name, mtime) of every staged file, oldest first."""
        if not self.directory.exists():
            logger.warning(f"Staging directory {self.directory} does not exist")
            return []

        entries = []
        for path in self.directory.iterdir():
            if path.is_file() and path.suffix.lower() in STAGED_SUFFIXES:
                entries.append((path.name, datetime.fromtimestamp(path.stat().st_mtime, UTC)))
        entries.sort(key=lambda entry: (entry[1], entry[0]))
        return entries

    def list_files(self) -> list[str]:
        """List staged file names, oldest first."""
        return [name for name, _ in self._scan()]

    def read_file(self, name: str) -> StagedFile:
        """Read a staged file's bytes."""
        path = self.directory / name
        stat = path.stat()
        return StagedFile(
            name=name,
            content=path.read_bytes(),
            modified_at=datetime.fromtimestamp(stat.st_mtime, UTC),
        )

    def candidate_files(self, session: Session) -> list[str]:
        """Files never seen before, or modified since they were last read.

        Decided from names and mtimes alone; no file content is read.
        """
        entries = self._scan()
        if not entries:
            return []

        last_read = dict(
            session.exec(
                select(StagedFileLog.file_name, func.max(StagedFileLog.file_modified_at))
                .where(StagedFileLog.file_name.in_([name for name, _ in entries]))
                .group_by(StagedFileLog.file_name)
            ).all()
        )

        candidates = []
        for name, modified_at in entries:
            if name not in last_read:
                candidates.append(name)
            elif last_read[name] is None or modified_at > _as_utc(last_read[name]):
                candidates.append(name)
        return candidates

    def list_new_files(self, session: Session) -> list[StagedFile]:
        """Candidate files whose (name, content hash) has not been recorded yet.

        A candidate whose content turns out to be unchanged (the file was only
        touched) gets its recorded mtime refreshed instead, so it stops being a
        candidate.
        """
        names = self.candidate_files(session)
        if not names:
            return []

        recorded = {
            (row.file_name, row.content_hash): row
            for row in session.exec(
                select(StagedFileLog).where(StagedFileLog.file_name.in_(names))
            ).all()
        }

        new_files = []
        for name in names:
            staged = self.read_file(name)
            log = recorded.get((staged.name, staged.content_hash))
            if log is None:
                new_files.append(staged)
                continue

            logger.debug(f"{name} touched but unchanged, not re-ingesting")
            log.file_modified_at = staged.modified_at
            session.add(log)

        return new_files

    def has_new_files(self, session: Session) -> bool:
        return bool(self.candidate_files(session))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
