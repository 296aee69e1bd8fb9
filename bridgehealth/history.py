"""
History Ledger - newest-first log of FHIR Bundle and PDF report downloads.

Bundle entries embed the downloaded Bundle so the file can be downloaded
again without re-running synthesis. Report entries only record what was
exported. The whole ledger is the unit of persistence: every append and
clear rewrites the complete stored record. That is fine for the tens of
entries a session accumulates, and would need an incremental log to
scale much further.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from .fhir.bundler import SynthesizedBundle, render_bundle
from .fhir.synthesizer import format_file_size
from .schemas import (
    AuthorContext,
    CodeMapping,
    EntryType,
    HistoryEntry,
    HistorySummary,
    PatientContext,
)

logger = logging.getLogger(__name__)

HISTORY_KEY = "history"
REPORT_FILE_SIZE = "PDF Report"


class HistoryDraft(BaseModel):
    """Fields supplied by the caller; id and timestamp are assigned on append."""
    type: EntryType = EntryType.FHIR_BUNDLE
    actor_label: str
    patient_name: Optional[str] = None
    filename: str
    file_size: str
    search_query: str = "Multiple codes"
    selected_codes: List[CodeMapping] = Field(default_factory=list)
    bundle: Optional[Dict[str, Any]] = None

    @classmethod
    def for_download(
        cls,
        bundle: SynthesizedBundle,
        filename: str,
        user: Optional[AuthorContext],
        patient: Optional[PatientContext],
        selected_codes: List[CodeMapping],
        search_query: Optional[str] = None,
    ) -> "HistoryDraft":
        return cls(
            actor_label=actor_label(user, patient),
            patient_name=patient.name if patient is not None else None,
            filename=filename,
            file_size=format_file_size(render_bundle(bundle)),
            search_query=search_query or "Multiple codes",
            selected_codes=selected_codes,
            bundle=bundle.to_dict(),
        )

    @classmethod
    def for_report(
        cls,
        filename: str,
        user: Optional[AuthorContext],
        patient: Optional[PatientContext],
        selected_codes: List[CodeMapping],
        search_query: Optional[str] = None,
    ) -> "HistoryDraft":
        return cls(
            type=EntryType.PDF_REPORT,
            actor_label=actor_label(user, patient),
            patient_name=patient.name if patient is not None else None,
            filename=filename,
            file_size=REPORT_FILE_SIZE,
            search_query=search_query or "Multiple codes",
            selected_codes=selected_codes,
        )


def actor_label(user: Optional[AuthorContext], patient: Optional[PatientContext]) -> str:
    """Who generated the download, as shown in the history list."""
    if patient is not None:
        name = user.name if user is not None else "Unknown User"
        return f"{name} (for patient: {patient.name})"
    if user is not None:
        return user.name
    return "Unknown User"


class HistoryLedger:
    """
    Append-only, newest-first download history.

    Args:
        store: Optional SessionStore; when given, the ledger is loaded from
            it and rewritten on every mutation
        clock: Source of entry timestamps
    """

    def __init__(self, store=None, clock: Callable[[], datetime] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: List[HistoryEntry] = self._load()

    def _load(self) -> List[HistoryEntry]:
        if self.store is None:
            return []
        raw = self.store.read(HISTORY_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Stored history is not a list; starting with an empty ledger")
            return []
        try:
            return [HistoryEntry.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.warning("Stored history is corrupt (%d errors); starting with an empty ledger",
                           e.error_count())
            return []

    def _save(self) -> None:
        if self.store is None:
            return
        if self._entries:
            self.store.write(HISTORY_KEY, [entry.model_dump(mode="json") for entry in self._entries])
        else:
            self.store.remove(HISTORY_KEY)

    def _next_id(self, millis: int) -> str:
        # Two appends inside the same millisecond still get distinct ids
        if self._entries:
            newest = int(self._entries[0].id)
            if millis <= newest:
                millis = newest + 1
        return str(millis)

    def append(self, draft: HistoryDraft) -> HistoryEntry:
        """
        Record a download.

        Returns:
            The stored entry, now first in `list()`
        """
        millis = int(self.clock().timestamp() * 1000)
        entry = HistoryEntry(
            id=self._next_id(millis),
            timestamp=millis,
            **draft.model_dump(),
        )
        self._entries = [entry] + self._entries
        self._save()
        logger.info("Recorded download %s (%s)", entry.filename, entry.id)
        return entry

    def list(self) -> List[HistoryEntry]:
        """All entries, newest first."""
        return list(self._entries)

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def clear(self) -> None:
        """Remove every entry. Partial clears are not supported."""
        self._entries = []
        self._save()
        logger.info("Cleared download history")

    def replay(self, entry_id: str) -> Optional[Tuple[str, bytes]]:
        """
        Regenerate the downloaded file for an entry.

        Returns:
            (filename, artifact bytes), identical to the original download,
            or None if the entry does not exist or has no stored bundle
        """
        entry = self.get(entry_id)
        if entry is None or entry.bundle is None:
            return None
        return entry.filename, render_bundle(entry.bundle)

    def summary(self) -> HistorySummary:
        return HistorySummary(
            total_downloads=len(self._entries),
            total_codes=sum(entry.code_count() for entry in self._entries),
            latest_timestamp=max((entry.timestamp for entry in self._entries), default=None),
        )

    def __len__(self) -> int:
        return len(self._entries)
