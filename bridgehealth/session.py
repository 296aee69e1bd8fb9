"""
Session context - signed-in user, selected patient and download history.

The three records are persisted independently. They are read when a
SessionContext is loaded and written back on every mutating action.
A missing or unreadable record loads as its default (no user, no patient,
empty history) and never fails startup.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .fhir.bundler import SynthesizedBundle
from .history import HistoryDraft, HistoryLedger
from .models import SessionRecord
from .schemas import AuthorContext, CodeMapping, HistoryEntry, PatientContext

logger = logging.getLogger(__name__)

USER_KEY = "user"
PATIENT_KEY = "selected_patient"


class SessionStore:
    """Key/value persistence for session records, one row per record."""

    def __init__(self, db: Session):
        self.db = db

    def read(self, key: str) -> Optional[Any]:
        """
        Load a record's JSON payload.

        Returns:
            The decoded payload, or None if absent or corrupt
        """
        record = self.db.query(SessionRecord).filter(SessionRecord.key == key).first()
        if record is None:
            return None
        try:
            return json.loads(record.payload)
        except ValueError:
            logger.warning("Ignoring corrupt session record %r", key)
            return None

    def write(self, key: str, value: Any) -> None:
        """Replace a record's payload in a single transaction."""
        payload = json.dumps(value)
        record = self.db.query(SessionRecord).filter(SessionRecord.key == key).first()
        if record is None:
            self.db.add(SessionRecord(key=key, payload=payload))
        else:
            record.payload = payload
        self.db.commit()

    def remove(self, key: str) -> None:
        self.db.query(SessionRecord).filter(SessionRecord.key == key).delete()
        self.db.commit()


class SessionContext:
    """
    Explicit session state handed to the API handlers.

    Usage:
        context = SessionContext.load(SessionStore(db))
        context.login(AuthorContext(name="Dr. Rao", email="rao@example.in"))
        context.select_patient(patient)
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        user: Optional[AuthorContext] = None,
        selected_patient: Optional[PatientContext] = None,
        history: Optional[HistoryLedger] = None,
    ):
        self.store = store
        self.user = user
        self.selected_patient = selected_patient
        self.history = history if history is not None else HistoryLedger()

    @classmethod
    def load(cls, store: SessionStore, clock: Callable[[], datetime] = None) -> "SessionContext":
        """Read all three records; unreadable ones fall back to defaults."""
        return cls(
            store=store,
            user=cls._load_model(store, USER_KEY, AuthorContext),
            selected_patient=cls._load_model(store, PATIENT_KEY, PatientContext),
            history=HistoryLedger(store=store, clock=clock),
        )

    @staticmethod
    def _load_model(store: SessionStore, key: str, model):
        raw = store.read(key)
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except ValidationError:
            logger.warning("Stored %s record is invalid; using default", key)
            return None

    def _write(self, key: str, value) -> None:
        if self.store is None:
            return
        if value is None:
            self.store.remove(key)
        else:
            self.store.write(key, value.model_dump(mode="json"))

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def login(self, user: AuthorContext) -> None:
        """Mock sign-in: the profile is accepted as given."""
        self.user = user
        self._write(USER_KEY, user)
        logger.info("Signed in %s", user.email)

    def logout(self) -> None:
        """Sign out and drop the selected patient. History is kept."""
        self.user = None
        self.selected_patient = None
        self._write(USER_KEY, None)
        self._write(PATIENT_KEY, None)

    def select_patient(self, patient: PatientContext) -> None:
        self.selected_patient = patient
        self._write(PATIENT_KEY, patient)

    def clear_patient(self) -> None:
        self.selected_patient = None
        self._write(PATIENT_KEY, None)

    def record_download(
        self,
        bundle: SynthesizedBundle,
        filename: str,
        selected_codes: List[CodeMapping],
        search_query: Optional[str] = None,
        patient: Optional[PatientContext] = None,
    ) -> HistoryEntry:
        """Append a download to the history ledger."""
        draft = HistoryDraft.for_download(
            bundle,
            filename,
            self.user,
            patient,
            selected_codes,
            search_query,
        )
        return self.history.append(draft)

    def record_report(
        self,
        filename: str,
        selected_codes: List[CodeMapping],
        search_query: Optional[str] = None,
        patient: Optional[PatientContext] = None,
    ) -> HistoryEntry:
        """Append a PDF report export to the history ledger."""
        draft = HistoryDraft.for_report(filename, self.user, patient, selected_codes, search_query)
        return self.history.append(draft)
