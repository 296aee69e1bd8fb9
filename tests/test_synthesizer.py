"""
FHIR generation tests

Comprehensive tests for:
1. Resource mapper unit tests
2. Bundle assembly, rendering and parsing
3. Bundle synthesis properties
4. FHIR compliance
"""
import json
from datetime import date, datetime, timezone

import pytest

from fhir.resources.bundle import Bundle
from fhir.resources.condition import Condition
from fhir.resources.patient import Patient

from bridgehealth.fhir import (
    BundleSynthesizer,
    EmptySelectionError,
    FHIRBundler,
    parse_bundle,
    render_bundle,
)
from bridgehealth.fhir.mappers import (
    ICD11_SYSTEM,
    NAMASTE_SYSTEM,
    TM2_SYSTEM,
    ConditionMapper,
    PatientMapper,
    format_instant,
)
from bridgehealth.fhir.synthesizer import download_filename, format_file_size
from bridgehealth.schemas import AuthorContext, CodeMapping, PatientContext


# ============================================================================
# Sample Data for Testing
# ============================================================================

FROZEN_NOW = datetime(2026, 10, 17, 9, 30, 15, 250000, tzinfo=timezone.utc)

SHITA_JVARA = CodeMapping(
    id="1",
    source_code="A01",
    source_term="Shita Jvara",
    secondary_code="TM2-001",
    secondary_term="Cold Syndrome",
    target_code="ICD-11-1A00",
    target_term="Common cold",
    version="v2.1",
    last_updated=date(2024, 1, 15),
)

PRAMEHA = CodeMapping(
    id="2",
    source_code="B02",
    source_term="Prameha",
    secondary_code="TM2-002",
    secondary_term="Diabetes Mellitus",
    target_code="ICD-11-5A11",
    target_term="Type 2 diabetes mellitus",
    version="v2.1",
    last_updated=date(2024, 1, 10),
)

SAMPLE_PATIENT = PatientContext(
    id="101",
    name="Asha Devi Sharma",
    age=34,
    phone="9876543210",
    email="asha.sharma@example.in",
    date_added=date(2025, 1, 10),
    last_visit=date(2026, 9, 1),
)

SAMPLE_AUTHOR = AuthorContext(
    name="Dr. Meera Rao",
    specialty="Ayurveda",
    email="meera.rao@example.in",
)


def frozen_synthesizer() -> BundleSynthesizer:
    return BundleSynthesizer(clock=lambda: FROZEN_NOW)


# ============================================================================
# Mapper Unit Tests
# ============================================================================

class TestPatientMapper:

    def test_map_full_patient(self):
        patient = PatientMapper.map(SAMPLE_PATIENT, today=FROZEN_NOW.date())

        assert patient.id == "101"
        assert patient.name[0].family == "Sharma"
        assert patient.name[0].given == ["Asha", "Devi"]
        assert str(patient.birthDate) == "1992-01-01"
        assert [t.system for t in patient.telecom] == ["phone", "email"]
        assert [t.use for t in patient.telecom] == ["mobile", "home"]
        assert patient.telecom[0].value == "9876543210"
        assert patient.telecom[1].value == "asha.sharma@example.in"

    def test_last_updated_is_last_visit_midnight(self):
        resource = PatientMapper.build(SAMPLE_PATIENT, FROZEN_NOW.date())
        assert resource["meta"]["lastUpdated"] == "2026-09-01T00:00:00Z"

    def test_meta_source_is_a_uri(self):
        resource = PatientMapper.build(SAMPLE_PATIENT, FROZEN_NOW.date())

        assert resource["meta"]["source"] == "#patient-management"
        assert Patient(**resource).meta.source == "#patient-management"

    def test_single_token_name(self):
        assert PatientMapper.split_name("Ravi") == {"family": "Ravi", "given": []}

    def test_name_splits_on_any_whitespace(self):
        assert PatientMapper.split_name("  Anil   Kumar\tVerma ") == {
            "family": "Verma",
            "given": ["Anil", "Kumar"],
        }

    def test_birth_date_is_january_first_approximation(self):
        assert PatientMapper.approximate_birth_date(34, date(2026, 12, 31)) == "1992-01-01"
        assert PatientMapper.approximate_birth_date(1, date(2026, 1, 1)) == "2025-01-01"

    def test_reference_display(self):
        assert PatientMapper.reference(SAMPLE_PATIENT) == {
            "reference": "Patient/101",
            "display": "Asha Devi Sharma (Age: 34)",
        }


class TestConditionMapper:

    def test_three_tier_codings(self):
        condition = ConditionMapper.map(SHITA_JVARA, recorded=FROZEN_NOW)

        codings = condition.code.coding
        assert [c.system for c in codings] == [NAMASTE_SYSTEM, TM2_SYSTEM, ICD11_SYSTEM]
        assert [c.code for c in codings] == ["A01", "TM2-001", "ICD-11-1A00"]
        assert [c.display for c in codings] == ["Shita Jvara", "Cold Syndrome", "Common cold"]
        assert condition.code.text == "Shita Jvara"

    def test_system_belongs_to_tier(self):
        first = ConditionMapper.codings(SHITA_JVARA)
        second = ConditionMapper.codings(PRAMEHA)
        assert [c["system"] for c in first] == [c["system"] for c in second]

    def test_clinical_status_active(self):
        condition = ConditionMapper.map(SHITA_JVARA, recorded=FROZEN_NOW)
        assert condition.clinicalStatus.coding[0].code == "active"

    def test_placeholder_subject(self):
        condition = ConditionMapper.map(SHITA_JVARA, recorded=FROZEN_NOW)
        assert condition.subject.reference == "Patient/example"

    def test_meta_uses_mapping_provenance(self):
        resource = ConditionMapper.build(
            SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW
        )

        assert resource["meta"] == {"versionId": "v2.1", "lastUpdated": "2024-01-15T00:00:00Z"}
        assert resource["recordedDate"] == "2026-10-17T09:30:15.250Z"

    def test_author_becomes_participant(self):
        resource = ConditionMapper.build(
            SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW, SAMPLE_AUTHOR
        )

        participant = resource["participant"][0]
        assert participant["function"]["coding"][0]["code"] == "author"
        assert participant["actor"] == {"display": "Dr. Meera Rao (Ayurveda)"}

    def test_author_participant_validates(self):
        condition = ConditionMapper.map(SHITA_JVARA, recorded=FROZEN_NOW, author=SAMPLE_AUTHOR)

        assert condition.participant[0].actor.display == "Dr. Meera Rao (Ayurveda)"
        assert condition.participant[0].function.coding[0].code == "author"

    def test_author_without_specialty(self):
        author = AuthorContext(name="Dr. Meera Rao", email="meera.rao@example.in")
        resource = ConditionMapper.build(SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW, author)
        assert resource["participant"][0]["actor"] == {"display": "Dr. Meera Rao"}

    def test_no_author_no_participant(self):
        resource = ConditionMapper.build(SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW)
        assert "participant" not in resource


def test_format_instant_naive_is_utc():
    assert format_instant(datetime(2024, 3, 5, 7, 8, 9)) == "2024-03-05T07:08:09.000Z"


# ============================================================================
# Bundler Tests
# ============================================================================

class TestFHIRBundler:

    def test_transaction_entries_carry_request(self):
        bundler = FHIRBundler()
        bundler.add_resource(ConditionMapper.build(SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW))

        bundle = bundler.build(timestamp=format_instant(FROZEN_NOW))

        assert bundle.type == "transaction"
        assert bundle.entries[0]["request"] == {"method": "POST", "url": "Condition"}
        assert bundle.resource_count == 1

    def test_collection_entries_carry_full_url(self):
        bundler = FHIRBundler(bundle_type="collection")
        bundler.add_resource(
            ConditionMapper.build(SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW),
            full_url="http://example.org/Condition/1"
        )

        entry = bundler.build(timestamp=format_instant(FROZEN_NOW)).entries[0]

        assert entry["fullUrl"] == "http://example.org/Condition/1"
        assert "request" not in entry

    def test_built_bundle_is_isolated_from_bundler(self):
        bundler = FHIRBundler()
        bundler.add_resource(ConditionMapper.build(SHITA_JVARA, {"reference": "Patient/example"}, FROZEN_NOW))
        bundle = bundler.build(timestamp=format_instant(FROZEN_NOW))

        bundler.add_resource(ConditionMapper.build(PRAMEHA, {"reference": "Patient/example"}, FROZEN_NOW))
        bundle.to_dict()["entry"].clear()

        assert bundle.resource_count == 1

    def test_render_and_parse_round_trip(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA, PRAMEHA], SAMPLE_PATIENT)

        parsed = parse_bundle(render_bundle(bundle))

        assert parsed == bundle
        assert parsed.to_dict() == bundle.to_dict()

    def test_render_is_indented_utf8_json(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA])
        artifact = render_bundle(bundle)

        assert artifact.startswith(b'{\n  "resourceType": "Bundle"')
        assert json.loads(artifact.decode("utf-8")) == bundle.to_dict()

    def test_parse_rejects_non_bundle(self):
        with pytest.raises(ValueError):
            parse_bundle(b'{"resourceType": "Patient"}')


# ============================================================================
# Synthesizer Tests
# ============================================================================

class TestBundleSynthesizer:

    def test_example_scenario_without_patient(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA])
        data = bundle.to_dict()

        assert data["type"] == "transaction"
        assert len(data["entry"]) == 1
        condition = data["entry"][0]["resource"]
        assert condition["code"]["text"] == "Shita Jvara"
        assert condition["subject"]["reference"] == "Patient/example"

    def test_empty_selection_raises(self):
        with pytest.raises(EmptySelectionError):
            frozen_synthesizer().synthesize([])

    def test_empty_iterator_raises(self):
        with pytest.raises(EmptySelectionError):
            frozen_synthesizer().synthesize(iter(()))

    def test_deterministic_with_frozen_clock(self):
        selection = [PRAMEHA, SHITA_JVARA]
        first = render_bundle(frozen_synthesizer().synthesize(selection))
        second = render_bundle(frozen_synthesizer().synthesize(selection))
        assert first == second

    def test_deterministic_with_patient_and_author(self):
        first = frozen_synthesizer().synthesize([SHITA_JVARA], SAMPLE_PATIENT, SAMPLE_AUTHOR)
        second = frozen_synthesizer().synthesize([SHITA_JVARA], SAMPLE_PATIENT, SAMPLE_AUTHOR)
        assert render_bundle(first) == render_bundle(second)

    @pytest.mark.parametrize("selection", [
        [SHITA_JVARA],
        [PRAMEHA, SHITA_JVARA],
        [SHITA_JVARA, PRAMEHA, SHITA_JVARA.model_copy(update={"id": "3", "source_term": "Jvara"})],
    ])
    def test_condition_count_and_order_match_selection(self, selection):
        bundle = frozen_synthesizer().synthesize(selection)

        conditions = [e["resource"] for e in bundle.entries]
        assert [c["resourceType"] for c in conditions] == ["Condition"] * len(selection)
        assert [c["code"]["text"] for c in conditions] == [m.source_term for m in selection]

    def test_patient_entry_precedes_conditions(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA, PRAMEHA], SAMPLE_PATIENT)

        assert bundle.get_resource_types() == ["Patient", "Condition", "Condition"]
        assert bundle.entries[0]["request"] == {"method": "POST", "url": "Patient"}
        for entry in bundle.entries[1:]:
            assert entry["resource"]["subject"]["reference"] == "Patient/101"

    def test_no_patient_uses_placeholder(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA, PRAMEHA])

        assert "Patient" not in bundle.get_resource_types()
        for entry in bundle.entries:
            assert entry["resource"]["subject"] == {
                "reference": "Patient/example",
                "display": "Example Patient",
            }

    def test_timestamps_come_from_clock(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA], SAMPLE_PATIENT)

        assert bundle.timestamp == "2026-10-17T09:30:15.250Z"
        condition = bundle.entries[1]["resource"]
        assert condition["recordedDate"] == "2026-10-17T09:30:15.250Z"
        assert condition["meta"]["lastUpdated"] == "2024-01-15T00:00:00Z"

    def test_birth_date_follows_clock_year(self):
        synthesizer = BundleSynthesizer(clock=lambda: datetime(2030, 6, 1, tzinfo=timezone.utc))
        bundle = synthesizer.synthesize([SHITA_JVARA], SAMPLE_PATIENT)
        assert bundle.entries[0]["resource"]["birthDate"] == "1996-01-01"

    def test_resource_counts(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA, PRAMEHA], SAMPLE_PATIENT)
        assert bundle.resource_counts() == {"Patient": 1, "Condition": 2}

    def test_signed_in_author_passes_validation(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA, PRAMEHA], None, SAMPLE_AUTHOR)

        for entry in bundle.to_fhir().entry:
            assert entry.resource.participant[0].actor.display == "Dr. Meera Rao (Ayurveda)"

    def test_explicit_moment_overrides_clock(self):
        moment = datetime(2025, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA], moment=moment)

        assert bundle.timestamp == "2025-02-03T04:05:06.000Z"
        assert bundle.entries[0]["resource"]["recordedDate"] == "2025-02-03T04:05:06.000Z"


class TestDownloadNaming:

    def test_filename_without_patient(self):
        assert download_filename(None, FROZEN_NOW) == f"BridgeHealth_FHIR_{int(FROZEN_NOW.timestamp() * 1000)}.json"

    def test_filename_with_patient(self):
        name = download_filename(SAMPLE_PATIENT, FROZEN_NOW)
        assert name.startswith("BridgeHealth_FHIR_Asha_Devi_Sharma_")
        assert name.endswith(".json")

    def test_file_size_in_kb(self):
        assert format_file_size(b"x" * 2048) == "2 KB"
        assert format_file_size(b"x" * 100) == "0 KB"


# ============================================================================
# FHIR Compliance Tests
# ============================================================================

class TestFHIRCompliance:

    def test_patient_resource_valid(self):
        patient = Patient(**PatientMapper.build(SAMPLE_PATIENT, FROZEN_NOW.date()))
        assert patient.get_resource_type() == "Patient"

    def test_condition_resource_valid(self):
        condition = Condition(**ConditionMapper.build(
            PRAMEHA, PatientMapper.reference(SAMPLE_PATIENT), FROZEN_NOW, SAMPLE_AUTHOR
        ))
        assert condition.get_resource_type() == "Condition"
        assert condition.participant[0].actor.display == "Dr. Meera Rao (Ayurveda)"

    def test_bundle_resource_valid(self):
        bundle = frozen_synthesizer().synthesize([SHITA_JVARA, PRAMEHA], SAMPLE_PATIENT, SAMPLE_AUTHOR)

        fhir_bundle = bundle.to_fhir()

        assert isinstance(fhir_bundle, Bundle)
        assert fhir_bundle.type == "transaction"
        assert len(fhir_bundle.entry) == 3
