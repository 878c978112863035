"""Raw ingestion of staged match documents.

This module provides the ingestion step that:
1. Takes newly staged files from the staging area
2. Parses each document and stores it as one ``raw_match`` row (JSON/JSONB)
3. Records per-file ingestion metadata in ``meta_staged_file``

Design principles:
- Append-only: never delete or update raw data
- Partial success: a malformed document is logged and skipped, the batch continues
- Provenance: source file, document position and content hash on every record
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlmodel import Session, select

from cricket_warehouse.errors import RecordParseError
from cricket_warehouse.models.raw import RawMatch, StagedFileLog
from cricket_warehouse.staging.local import StagedFile

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Results from one ingestion batch."""

    files_seen: int = 0
    files_loaded: int = 0
    files_rejected: int = 0
    files_duplicate: int = 0
    records_loaded: int = 0
    raw_ids: list[int] = field(default_factory=list)
    errors: list[RecordParseError] = field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


class RawIngestor:
    """Loads staged files into the raw layer.

    Usage:
        from cricket_warehouse.database import get_session
        from cricket_warehouse.staging import LocalStagingArea

        stage = LocalStagingArea("data/staging")
        ingestor = RawIngestor()

        with get_session() as session:
            result = ingestor.ingest(session, stage.list_new_files(session))
    """

    def ingest(self, session: Session, staged_files: Iterable[StagedFile]) -> IngestionResult:
        """Ingest a batch of staged files.

        Args:
            session: SQLModel session (caller commits)
            staged_files: Files reported as new by the staging area

        Returns:
            IngestionResult with counts and per-record errors
        """
        result = IngestionResult()
        staged_files = list(staged_files)
        batch_hashes = sorted({staged.content_hash for staged in staged_files})
        loaded_hashes = set(
            session.exec(
                select(StagedFileLog.content_hash).where(
                    StagedFileLog.status == "loaded",
                    StagedFileLog.content_hash.in_(batch_hashes),
                )
            ).all()
        )

        for staged in staged_files:
            result.files_seen += 1
            content_hash = staged.content_hash

            if content_hash in loaded_hashes:
                logger.info(f"Skipping {staged.name}: identical content already loaded")
                session.add(
                    StagedFileLog(
                        file_name=staged.name,
                        content_hash=content_hash,
                        status="duplicate",
                        file_modified_at=staged.modified_at,
                    )
                )
                result.files_duplicate += 1
                continue

            records, errors = self._parse(staged)
            result.errors.extend(errors)
            for error in errors:
                logger.error(f"Rejected document: {error}")

            raws = []
            for row_number, document in records:
                raw = RawMatch(
                    meta=document.get("meta") or {},
                    info=document["info"],
                    innings=document.get("innings") or [],
                    source_file=staged.name,
                    row_number=row_number,
                    content_hash=content_hash,
                )
                session.add(raw)
                raws.append(raw)

            session.add(
                StagedFileLog(
                    file_name=staged.name,
                    content_hash=content_hash,
                    status="loaded" if raws else "rejected",
                    records_loaded=len(raws),
                    file_modified_at=staged.modified_at,
                    error="; ".join(e.reason for e in errors) or None,
                )
            )

            if raws:
                session.flush()
                loaded_hashes.add(content_hash)
                result.files_loaded += 1
                result.records_loaded += len(raws)
                result.raw_ids.extend(raw.id for raw in raws)
                logger.info(f"Loaded {len(raws)} record(s) from {staged.name}")
            else:
                result.files_rejected += 1

        return result

    def _parse(self, staged: StagedFile) -> tuple[list[tuple[int, dict[str, Any]]], list[RecordParseError]]:
        """Split a staged file into validated documents.

        Returns:
            Tuple of ([(row_number, document)], [errors])
        """
        try:
            text = staged.content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            return [], [RecordParseError(staged.name, f"not UTF-8: {e}")]

        if staged.name.lower().endswith(".jsonl"):
            chunks = [
                (i, line) for i, line in enumerate(text.splitlines(), start=1) if line.strip()
            ]
        else:
            chunks = [(1, text)]

        documents = []
        errors = []
        for row_number, chunk in chunks:
            document, reason = _load_document(chunk)
            if reason:
                errors.append(RecordParseError(f"{staged.name}#{row_number}", reason))
            else:
                documents.append((row_number, document))

        return documents, errors


def _load_document(chunk: str) -> tuple[Optional[dict[str, Any]], Optional[str]]:
    """Parse one JSON document and check its top-level shape."""
    try:
        document = json.loads(chunk)
    except json.JSONDecodeError as e:
        return None, f"invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})"

    if not isinstance(document, dict):
        return None, f"expected a JSON object, got {type(document).__name__}"

    if not isinstance(document.get("info"), dict):
        return None, "missing 'info' object"

    innings = document.get("innings")
    if innings is not None and not isinstance(innings, list):
        return None, "'innings' must be an array"

    return document, None
