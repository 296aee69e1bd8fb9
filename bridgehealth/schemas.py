import re
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Indian mobile numbers, optionally prefixed with +91
PHONE_PATTERN = re.compile(r"^(\+91[\-\s]?)?[6-9]\d{9}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")


def _check_email(value: str) -> str:
    if not value:
        raise ValueError("Email is required")
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please enter a valid email address")
    return value


# Health check schema
class HealthResponse(BaseModel):
    """Health check response"""
    status: str


# ============================================================================
# Terminology
# ============================================================================

class ConsentState(str, Enum):
    GRANTED = "granted"
    PENDING = "pending"


class CodeMapping(BaseModel):
    """
    A normalized NAMASTE -> TM2 -> ICD-11 mapping record.

    `id` is only unique within one catalog result set.
    """
    id: str
    source_code: str
    source_term: str
    secondary_code: str
    secondary_term: str
    target_code: str
    target_term: str
    version: str
    consent_state: ConsentState = ConsentState.GRANTED
    last_updated: date

    model_config = {"frozen": True}


class SearchResponse(BaseModel):
    """Response schema for catalog search"""
    query: str
    count: int
    results: List[CodeMapping]
    error: Optional[str] = None


# ============================================================================
# Session context
# ============================================================================

class PatientContext(BaseModel):
    """
    Patient selected for FHIR generation.

    Validation mirrors the patient management form: errors are reported
    per field and never escape the request boundary.
    """
    id: str = Field(..., min_length=1, max_length=64)
    name: str
    age: int
    phone: str
    email: str
    date_added: date
    last_visit: date

    model_config = {"frozen": True}

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value) if isinstance(value, int) else value

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name is required")
        if len(value.strip()) < 2:
            raise ValueError("Name must be at least 2 characters long")
        if not NAME_PATTERN.match(value):
            raise ValueError("Name should only contain letters and spaces")
        return value

    @field_validator("age")
    @classmethod
    def validate_age(cls, value: int) -> int:
        if value < 1 or value > 120:
            raise ValueError("Please enter a valid age between 1 and 120")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        if not value:
            raise ValueError("Phone number is required")
        if not PHONE_PATTERN.match(re.sub(r"[\s\-]", "", value)):
            raise ValueError(
                "Please enter a valid Indian phone number (10 digits starting with 6-9)"
            )
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _check_email(value)


class AuthorContext(BaseModel):
    """Signed-in practitioner. Only used for provenance display."""
    name: str = Field(..., min_length=1, max_length=255)
    specialty: str = ""
    email: str

    model_config = {"frozen": True}

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _check_email(value)


class SessionResponse(BaseModel):
    """Current session state"""
    user: Optional[AuthorContext] = None
    selected_patient: Optional[PatientContext] = None
    history_count: int = 0


# ============================================================================
# FHIR generation
# ============================================================================

class GenerateBundleRequest(BaseModel):
    """Request schema for Bundle synthesis"""
    selected_codes: List[CodeMapping] = Field(default_factory=list)
    search_query: Optional[str] = None
    include_patient: bool = Field(
        True, description="Attach the session's selected patient, if any"
    )


class GenerateBundleResponse(BaseModel):
    """Response schema for Bundle synthesis"""
    success: bool
    bundle: Dict[str, Any]
    resource_counts: Dict[str, int]
    filename: str
    file_size: str


class CsvUploadResponse(BaseModel):
    """Response schema for CSV ingestion"""
    success: bool
    row_count: int
    bundle: Dict[str, Any]


# ============================================================================
# History
# ============================================================================

class EntryType(str, Enum):
    FHIR_BUNDLE = "FHIR Bundle"
    PDF_REPORT = "PDF Report"


class HistoryEntry(BaseModel):
    """
    One recorded download.

    FHIR Bundle entries embed the downloaded Bundle; PDF report entries
    carry no bundle and cannot be downloaded again.
    """
    id: str = Field(pattern=r"^\d+$")  # epoch milliseconds, bumped on collision
    timestamp: int  # epoch milliseconds
    type: EntryType = EntryType.FHIR_BUNDLE
    actor_label: str
    patient_name: Optional[str] = None
    filename: str
    file_size: str
    search_query: str
    selected_codes: List[CodeMapping] = Field(default_factory=list)
    bundle: Optional[Dict[str, Any]] = None

    model_config = {"frozen": True}

    def code_count(self) -> int:
        """Entries in the embedded bundle, else the number of selected codes."""
        entries = self.bundle.get("entry") if self.bundle else None
        if entries:
            return len(entries)
        return len(self.selected_codes)


class HistorySummary(BaseModel):
    total_downloads: int
    total_codes: int
    latest_timestamp: Optional[int] = None


class HistoryResponse(BaseModel):
    """Response schema for the history page"""
    entries: List[HistoryEntry]
    summary: HistorySummary
