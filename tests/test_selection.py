"""
Selection set tests
"""
from datetime import date

from bridgehealth.schemas import CodeMapping
from bridgehealth.selection import SelectionSet


def make_mapping(id: str, term: str = None) -> CodeMapping:
    term = term or f"Term {id}"
    return CodeMapping(
        id=id, source_code=f"N{id}", source_term=term,
        secondary_code=f"TM2-{id}", secondary_term=term,
        target_code=f"ICD-{id}", target_term=term,
        version="v2.1", last_updated=date(2024, 1, 15)
    )


def test_toggle_adds_then_removes():
    selection = SelectionSet()
    mapping = make_mapping("1")

    assert selection.toggle(mapping) is True
    assert selection.contains(mapping)
    assert selection.toggle(mapping) is False
    assert not selection.contains(mapping)
    assert selection.all() == []


def test_insertion_order_is_kept():
    selection = SelectionSet()
    for id in ["3", "1", "2"]:
        selection.toggle(make_mapping(id))

    assert [m.id for m in selection.all()] == ["3", "1", "2"]


def test_removal_does_not_reorder():
    selection = SelectionSet()
    for id in ["a", "b", "c", "d"]:
        selection.toggle(make_mapping(id))

    selection.toggle(make_mapping("b"))

    assert [m.id for m in selection.all()] == ["a", "c", "d"]


def test_identity_is_id_only():
    """Distinct terms sharing an id occupy one slot."""
    selection = SelectionSet()
    selection.toggle(make_mapping("1", "Shita Jvara"))

    assert selection.contains(make_mapping("1", "Prameha"))
    assert selection.toggle(make_mapping("1", "Prameha")) is False
    assert len(selection) == 0


def test_clear_is_total():
    selection = SelectionSet([make_mapping("1"), make_mapping("2")])
    selection.clear()

    assert len(selection) == 0
    assert selection.all() == []


def test_constructor_collapses_repeated_ids():
    selection = SelectionSet([make_mapping("1"), make_mapping("2"), make_mapping("1", "Other")])

    assert [m.source_term for m in selection] == ["Term 1", "Term 2"]


def test_all_returns_a_copy():
    selection = SelectionSet([make_mapping("1")])
    snapshot = selection.all()
    snapshot.append(make_mapping("2"))

    assert len(selection) == 1
