"""
Bundle Synthesizer

Turns a selection of code mappings (plus the optional selected patient and
signed-in practitioner) into a FHIR transaction Bundle:

1. Patient resource, when a patient is selected
2. One Condition resource per selected mapping, in selection order
3. Bundle assembly

Synthesis performs no I/O. With a frozen clock it is a pure function of
its inputs; download naming and serialization are layered on top.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from ..schemas import AuthorContext, CodeMapping, PatientContext
from .bundler import FHIRBundler, SynthesizedBundle, render_bundle
from .mappers import (
    PLACEHOLDER_PATIENT,
    ConditionMapper,
    PatientMapper,
    format_instant,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class EmptySelectionError(ValueError):
    """Raised when synthesis is requested for an empty selection."""

    def __init__(self, message: str = "Select at least one code to generate a FHIR Bundle"):
        super().__init__(message)


class BundleSynthesizer:
    """
    Builds FHIR Bundles from selected code mappings.

    Usage:
        synthesizer = BundleSynthesizer()
        bundle = synthesizer.synthesize(selection, patient, author)
        artifact = render_bundle(bundle)
    """

    def __init__(self, clock: Callable[[], datetime] = None):
        """
        Initialize the synthesizer.

        Args:
            clock: Source of the synthesis time (Bundle timestamp,
                recordedDate and birth-date reference year)
        """
        self.clock = clock or utcnow

    def synthesize(
        self,
        selection: Iterable[CodeMapping],
        patient: Optional[PatientContext] = None,
        author: Optional[AuthorContext] = None,
        moment: Optional[datetime] = None
    ) -> SynthesizedBundle:
        """
        Synthesize a transaction Bundle.

        Args:
            selection: Selected mappings, in selection order
            patient: Optional selected patient
            author: Optional signed-in practitioner
            moment: Synthesis time; read from the clock when omitted

        Returns:
            SynthesizedBundle with 0-1 Patient entries then one Condition
            per mapping

        Raises:
            EmptySelectionError: if `selection` is empty
        """
        mappings = list(selection)
        if not mappings:
            raise EmptySelectionError()

        now = moment or self.clock()
        bundler = FHIRBundler(bundle_type="transaction")

        if patient is not None:
            bundler.add_resource(PatientMapper.build(patient, now.date()), "POST", "Patient")
            subject = PatientMapper.reference(patient)
        else:
            subject = PLACEHOLDER_PATIENT

        for mapping in mappings:
            bundler.add_resource(
                ConditionMapper.build(mapping, subject, now, author),
                "POST",
                "Condition"
            )

        bundle = bundler.build(timestamp=format_instant(now))
        logger.info(
            "Synthesized bundle with %d condition(s)%s",
            len(mappings),
            f" for patient {patient.id}" if patient is not None else ""
        )
        return bundle


def download_filename(patient: Optional[PatientContext], moment: datetime) -> str:
    """BridgeHealth_FHIR[_<Patient_Name>]_<epoch millis>.json"""
    suffix = "_" + re.sub(r"\s+", "_", patient.name) if patient is not None else ""
    millis = int(moment.timestamp() * 1000)
    return f"BridgeHealth_FHIR{suffix}_{millis}.json"


def format_file_size(artifact: bytes) -> str:
    """Size label shown in the download history."""
    return f"{round(len(artifact) / 1024)} KB"


__all__ = [
    "BundleSynthesizer",
    "EmptySelectionError",
    "download_filename",
    "format_file_size",
    "render_bundle",
]
