"""
Conversion Report - PDF summary of the selected mappings.

The report lists report metadata, the patient (or placeholder values),
the attending physician, a clinical assessment line and a table of the
selected codes. Page layout is delegated to fpdf2; this module decides
what is written where.

Usage:
    builder = ReportBuilder()
    report = builder.build(selection, patient, author)
    report.filename, report.content
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Tuple

from fpdf import FPDF

from .fhir.synthesizer import EmptySelectionError, utcnow
from .schemas import AuthorContext, CodeMapping, PatientContext

logger = logging.getLogger(__name__)

TEAL = (26, 188, 156)
CRIMSON = (220, 20, 60)
GREY = (128, 128, 128)
BLACK = (0, 0, 0)
WHITE = (255, 255, 255)

LEFT_COLUMN = 15
RIGHT_COLUMN = 120

# Shown when no patient is selected
PLACEHOLDER_PATIENT_LINES = [
    ("Name: Patient Example", "Patient ID: pat001"),
    ("Date of Birth: 01/01/1980", "Phone: +1234567890"),
    ("Gender: N/A", "Email: patient@example.com"),
]

# (header, x position, max characters)
TABLE_COLUMNS = [
    ("Medical Term", 20, 25),
    ("NAMC Code", 80, 20),
    ("ID", 120, 15),
    ("Description", 140, 25),
]


def _latin1(text: str) -> str:
    """Core PDF fonts only cover Latin-1; anything else becomes '?'."""
    return text.encode("latin-1", "replace").decode("latin-1")


def report_filename(patient: Optional[PatientContext], moment: datetime) -> str:
    """Medical_Diagnosis_Report[_<Patient_Name>]_<dd-mm-yyyy>.pdf"""
    suffix = "_" + re.sub(r"\s+", "_", patient.name) if patient is not None else ""
    return f"Medical_Diagnosis_Report{suffix}_{moment:%d-%m-%Y}.pdf"


def patient_lines(patient: Optional[PatientContext], today: date) -> List[Tuple[str, str]]:
    """Two-column rows of the Patient Information section."""
    if patient is None:
        return list(PLACEHOLDER_PATIENT_LINES)
    birth = date(today.year - patient.age, 1, 1)
    return [
        (f"Name: {patient.name}", f"Patient ID: pat{patient.id}"),
        (f"Date of Birth: {birth:%d/%m/%Y}", "Phone: +" + re.sub(r"\D", "", patient.phone)),
        ("Gender: N/A", f"Email: {patient.email}"),
    ]


def physician_lines(author: Optional[AuthorContext]) -> List[Tuple[str, str]]:
    name = author.name if author is not None else "Dr. System User"
    specialty = (author.specialty if author is not None else "") or "General Medicine"
    return [
        (f"Name: {name}", "Doctor ID: doc001"),
        (f"Specialty: {specialty}", "License: MD12345"),
    ]


def assessment_text(mappings: List[CodeMapping]) -> str:
    return "; ".join(
        f"({m.source_code}) {m.source_term} -> ({m.secondary_code}) {m.secondary_term}"
        for m in mappings
    )


class ReportDocument(FPDF):
    """A4 page with the teal title band on every page and a page counter."""

    def header(self):
        self.set_fill_color(*TEAL)
        self.rect(0, 0, self.w, 30, style="F")
        self.set_text_color(*WHITE)
        self.set_font("Helvetica", size=12)
        self.text(LEFT_COLUMN, 12, "Conversion Report")
        self.set_font("Helvetica", size=8)
        self.text(LEFT_COLUMN, 20, "NAMC + FHIR Integration")

        self.set_fill_color(*WHITE)
        self.rect(self.w - 35, 8, 25, 14, style="F")
        self.set_text_color(*TEAL)
        self.set_font("Helvetica", size=10)
        self.text(self.w - 27, 18, "MED")
        self.set_text_color(*BLACK)
        self.set_y(40)

    def footer(self):
        self.set_font("Helvetica", size=8)
        self.set_text_color(*GREY)
        self.text(LEFT_COLUMN, self.h - 15, "Generated by BridgeHealth")
        self.text(self.w - 35, self.h - 15, f"Page {self.page_no()} of {{nb}}")


@dataclass(frozen=True)
class ClinicalReport:
    filename: str
    content: bytes
    generated_at: datetime


def report_id(moment: datetime) -> str:
    """Short report identifier derived from the generation time."""
    return f"diag_{int(moment.timestamp() * 1000) % 10000:04d}"


class ReportBuilder:
    """
    Renders the selected mappings as a PDF conversion report.

    Args:
        clock: Source of the generation time printed in the report
    """

    def __init__(self, clock: Callable[[], datetime] = None):
        self.clock = clock or utcnow

    def build(
        self,
        selection: Iterable[CodeMapping],
        patient: Optional[PatientContext] = None,
        author: Optional[AuthorContext] = None,
        moment: Optional[datetime] = None
    ) -> ClinicalReport:
        """
        Render the report.

        Raises:
            EmptySelectionError: if `selection` is empty
        """
        mappings = list(selection)
        if not mappings:
            raise EmptySelectionError("Select at least one code to generate a report")

        now = moment or self.clock()
        pdf = ReportDocument(orientation="P", unit="mm", format="A4")
        pdf.set_margins(LEFT_COLUMN, 40, LEFT_COLUMN)
        pdf.set_creation_date(now)
        pdf.set_title("Conversion Report")
        pdf.set_creator("BridgeHealth")
        pdf.set_auto_page_break(auto=True, margin=25)
        pdf.add_page()

        pdf.set_text_color(*TEAL)
        pdf.set_font("Helvetica", style="B", size=16)
        pdf.cell(0, 10, "CONVERSION REPORT (Namaste -> ICD-11(TM2))", align="C")
        pdf.ln(15)

        stamp = f"{now:%d/%m/%Y} at {now:%H:%M:%S}"
        self._section(pdf, "Report Information", BLACK, [
            (f"Report ID: {report_id(now)}", "Status: FHIR Uploaded [OK]"),
            (f"Generated: {stamp}", f"Date: {stamp}"),
        ])
        self._section(pdf, "Patient Information", TEAL, patient_lines(patient, now.date()))
        self._section(pdf, "Attending Physician", TEAL, physician_lines(author))

        self._heading(pdf, "Clinical Assessment", CRIMSON)
        pdf.set_font("Helvetica", size=9)
        pdf.set_text_color(*CRIMSON)
        pdf.multi_cell(0, 5, _latin1(assessment_text(mappings)))
        pdf.ln(8)

        self._heading(pdf, f"Medical Codes ({len(mappings)})", BLACK)
        self._codes_table(pdf, mappings)

        content = bytes(pdf.output())
        logger.info("Rendered PDF report with %d code(s) (%d bytes)", len(mappings), len(content))
        return ClinicalReport(
            filename=report_filename(patient, now),
            content=content,
            generated_at=now,
        )

    @staticmethod
    def _heading(pdf: FPDF, title: str, color: Tuple[int, int, int]) -> None:
        pdf.set_font("Helvetica", style="B", size=12)
        pdf.set_text_color(*color)
        pdf.cell(0, 8, title)
        pdf.ln(10)

    def _section(self, pdf: FPDF, title: str, color, rows: List[Tuple[str, str]]) -> None:
        self._heading(pdf, title, color)
        pdf.set_font("Helvetica", size=9)
        pdf.set_text_color(*BLACK)
        width = RIGHT_COLUMN - LEFT_COLUMN
        for left, right in rows:
            pdf.cell(width, 6, _latin1(left))
            pdf.cell(0, 6, _latin1(right))
            pdf.ln(8)
        pdf.ln(6)

    @staticmethod
    def _codes_table(pdf: FPDF, mappings: List[CodeMapping]) -> None:
        widths = [
            TABLE_COLUMNS[i + 1][1] - x if i + 1 < len(TABLE_COLUMNS) else pdf.w - LEFT_COLUMN - x
            for i, (_, x, _) in enumerate(TABLE_COLUMNS)
        ]

        pdf.set_font("Helvetica", style="B", size=8)
        pdf.set_text_color(*BLACK)
        pdf.set_fill_color(240, 240, 240)
        pdf.set_x(LEFT_COLUMN)
        pdf.cell(TABLE_COLUMNS[0][1] - LEFT_COLUMN, 10, "", fill=True)
        for (header, _, _), width in zip(TABLE_COLUMNS, widths):
            pdf.cell(width, 10, header, fill=True)
        pdf.ln(12)

        pdf.set_font("Helvetica", size=8)
        for mapping in mappings:
            values = [mapping.source_term, mapping.source_code, mapping.target_code, mapping.target_term]
            pdf.set_x(TABLE_COLUMNS[0][1])
            for (_, _, limit), width, value in zip(TABLE_COLUMNS, widths, values):
                pdf.cell(width, 8, _latin1(value[:limit]))
            pdf.ln(10)


__all__ = ["ClinicalReport", "ReportBuilder", "report_filename"]
