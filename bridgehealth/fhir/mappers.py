"""
FHIR Resource Mappers

Maps session and terminology data to FHIR resources. Each mapper has a
`build()` returning the canonical JSON form (the exact structure written
to the downloaded file) and a `map()` returning the same content as a
validated `fhir.resources` model.

Mappings:
- PatientContext → Patient
- CodeMapping → Condition (three coding tiers)
- CSV row → CodeSystem concept / Condition
"""
from typing import Optional, List, Dict, Any
from datetime import date, datetime, timezone

from fhir.resources.patient import Patient
from fhir.resources.condition import Condition
from fhir.resources.codesystem import CodeSystem

from ..schemas import AuthorContext, CodeMapping, PatientContext

# Coding systems, one per terminology tier
NAMASTE_SYSTEM = "urn:oid:1.2.3.4.5"
TM2_SYSTEM = "http://id.who.int/icd/release/11/2024-01"
ICD11_SYSTEM = "http://id.who.int/icd/release/11/2024-01"

CONDITION_CLINICAL_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-clinical"
PARTICIPANT_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/provenance-participant-type"
UPLOADED_CODES_SYSTEM = "http://namaste-ayush.in/fhir/CodeSystem/uploaded-codes"
CONSENT_EXTENSION_URL = "http://namaste-ayush.in/fhir/extension/consent"

PLACEHOLDER_PATIENT = {"reference": "Patient/example", "display": "Example Patient"}


def format_instant(moment: datetime) -> str:
    """Render a datetime as a UTC FHIR instant with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def midnight_instant(day: date) -> str:
    """Render a calendar date as midnight UTC."""
    return f"{day.isoformat()}T00:00:00Z"


def active_clinical_status() -> Dict[str, Any]:
    return {
        "coding": [{
            "system": CONDITION_CLINICAL_SYSTEM,
            "code": "active",
            "display": "Active"
        }]
    }


class PatientMapper:
    """Maps PatientContext to FHIR Patient resource."""

    @staticmethod
    def split_name(name: str) -> Dict[str, Any]:
        """
        Split a full name into FHIR family/given parts.

        The last whitespace-separated token is the family name and all
        preceding tokens are given names.
        """
        tokens = name.split()
        if not tokens:
            return {"family": "", "given": []}
        return {"family": tokens[-1], "given": tokens[:-1]}

    @staticmethod
    def approximate_birth_date(age: int, today: date) -> str:
        """
        January 1 of (current year - age).

        This is an approximation from the recorded age, not a real birth date.
        """
        return date(today.year - age, 1, 1).isoformat()

    @staticmethod
    def reference(patient: PatientContext) -> Dict[str, str]:
        """Reference used by resources whose subject is this patient."""
        return {
            "reference": f"Patient/{patient.id}",
            "display": f"{patient.name} (Age: {patient.age})"
        }

    @staticmethod
    def build(patient: PatientContext, today: date) -> Dict[str, Any]:
        """
        Convert a patient context to a Patient resource dict.

        Args:
            patient: Selected patient
            today: Date the birth-date approximation is computed from

        Returns:
            Patient resource in its JSON form
        """
        return {
            "resourceType": "Patient",
            "id": str(patient.id),
            "name": [PatientMapper.split_name(patient.name)],
            "birthDate": PatientMapper.approximate_birth_date(patient.age, today),
            "telecom": [
                {
                    "system": "phone",
                    "value": patient.phone,
                    "use": "mobile"
                },
                {
                    "system": "email",
                    "value": patient.email,
                    "use": "home"
                }
            ],
            "meta": {
                "lastUpdated": midnight_instant(patient.last_visit),
                "source": "#patient-management"
            }
        }

    @staticmethod
    def map(patient: PatientContext, today: date = None) -> Patient:
        """Build and validate a FHIR Patient resource."""
        today = today or datetime.now(timezone.utc).date()
        return Patient(**PatientMapper.build(patient, today))


class ConditionMapper:
    """Maps a selected CodeMapping to FHIR Condition resource."""

    @staticmethod
    def codings(mapping: CodeMapping) -> List[Dict[str, str]]:
        """One coding per tier; the system belongs to the tier, not the mapping."""
        return [
            {"system": NAMASTE_SYSTEM, "code": mapping.source_code, "display": mapping.source_term},
            {"system": TM2_SYSTEM, "code": mapping.secondary_code, "display": mapping.secondary_term},
            {"system": ICD11_SYSTEM, "code": mapping.target_code, "display": mapping.target_term},
        ]

    @staticmethod
    def build(
        mapping: CodeMapping,
        subject: Dict[str, str],
        recorded: datetime,
        author: Optional[AuthorContext] = None
    ) -> Dict[str, Any]:
        """
        Convert a code mapping to a Condition resource dict.

        Args:
            mapping: Selected NAMASTE/TM2/ICD-11 mapping
            subject: Patient reference (or the placeholder)
            recorded: Synthesis time, used for recordedDate
            author: Optional signed-in practitioner

        Returns:
            Condition resource in its JSON form
        """
        condition_dict = {
            "resourceType": "Condition",
            "clinicalStatus": active_clinical_status(),
            "code": {
                "coding": ConditionMapper.codings(mapping),
                "text": mapping.source_term
            },
            "subject": dict(subject),
            "recordedDate": format_instant(recorded),
            "meta": {
                "versionId": mapping.version,
                # The mapping's own update date, not the synthesis time
                "lastUpdated": midnight_instant(mapping.last_updated)
            }
        }

        if author is not None:
            condition_dict["participant"] = [ConditionMapper.author_participant(author)]

        return condition_dict

    @staticmethod
    def author_participant(author: AuthorContext) -> Dict[str, Any]:
        """R5 Condition.participant entry naming the practitioner as author."""
        display = f"{author.name} ({author.specialty})" if author.specialty else author.name
        return {
            "function": {
                "coding": [{
                    "system": PARTICIPANT_TYPE_SYSTEM,
                    "code": "author",
                    "display": "Author"
                }]
            },
            "actor": {"display": display}
        }

    @staticmethod
    def map(
        mapping: CodeMapping,
        subject: Dict[str, str] = None,
        recorded: datetime = None,
        author: Optional[AuthorContext] = None
    ) -> Condition:
        """Build and validate a FHIR Condition resource."""
        return Condition(**ConditionMapper.build(
            mapping,
            subject or PLACEHOLDER_PATIENT,
            recorded or datetime.now(timezone.utc),
            author
        ))


class CodeSystemMapper:
    """Maps uploaded CSV rows to a FHIR CodeSystem resource."""

    @staticmethod
    def build(rows: List[Dict[str, str]], created: datetime) -> Dict[str, Any]:
        concepts = []
        for index, row in enumerate(rows, start=1):
            concept = {
                "code": row.get("Code") or f"code-{index}",
                "display": row.get("Term") or f"Term {index}",
            }
            if row.get("Definition"):
                concept["definition"] = row["Definition"]
            concepts.append(concept)

        return {
            "resourceType": "CodeSystem",
            "id": "namaste-uploaded-codes",
            "url": UPLOADED_CODES_SYSTEM,
            "version": "1.0.0",
            "name": "NAMASTEUploadedCodes",
            "title": "NAMASTE Uploaded Medical Codes",
            "status": "active",
            "experimental": False,
            "date": format_instant(created),
            "publisher": "NAMASTE System",
            "description": "Medical codes uploaded via CSV containing NAMASTE terminology",
            "content": "complete",
            "count": len(rows),
            "concept": concepts
        }

    @staticmethod
    def map(rows: List[Dict[str, str]], created: datetime = None) -> CodeSystem:
        return CodeSystem(**CodeSystemMapper.build(rows, created or datetime.now(timezone.utc)))


class UploadedConditionMapper:
    """Maps one uploaded CSV row to a Condition coded in the uploaded CodeSystem."""

    @staticmethod
    def build(row: Dict[str, str], index: int, created: datetime) -> Dict[str, Any]:
        code = row.get("Code") or f"code-{index}"
        term = row.get("Term") or f"Term {index}"
        return {
            "resourceType": "Condition",
            "id": f"condition-{index}",
            "meta": {
                "versionId": "1",
                "lastUpdated": format_instant(created),
                "source": "#csv-upload"
            },
            "clinicalStatus": active_clinical_status(),
            "code": {
                "coding": [{
                    "system": UPLOADED_CODES_SYSTEM,
                    "code": code,
                    "display": term
                }],
                "text": term
            },
            "subject": {
                "reference": "Patient/example",
                "display": "Patient Example"
            },
            "recordedDate": format_instant(created),
            "extension": [{
                "url": CONSENT_EXTENSION_URL,
                "valueCode": "granted"
            }]
        }
