"""
FHIR Generation Module

Builds FHIR resources from selected NAMASTE/TM2/ICD-11 code mappings
using the fhir.resources library for validation.

Components:
- mappers: Individual resource mappers (Patient, Condition, CodeSystem)
- bundler: Bundle assembly, rendering and parsing
- synthesizer: Selection → transaction Bundle
- csv_import: Uploaded CSV → collection Bundle
"""
from .bundler import FHIRBundler, SynthesizedBundle, parse_bundle, render_bundle
from .synthesizer import BundleSynthesizer, EmptySelectionError
from .csv_import import CsvBundleConverter, CsvImportError

__all__ = [
    "FHIRBundler",
    "SynthesizedBundle",
    "parse_bundle",
    "render_bundle",
    "BundleSynthesizer",
    "EmptySelectionError",
    "CsvBundleConverter",
    "CsvImportError",
]
