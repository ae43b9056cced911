import pytest

from studygroups.errors import ImportParseError, ImportValidationError
from studygroups.models import Color, Semester
from studygroups.utils.yaml_import import parse_study_groups

RECORD = """
  - name: Alpha
    coordinatesId: 4
    expelledStudents: 2
    transferredStudents: 1
    shouldBeExpelled: 1
    semesterEnum: fourth
"""


def test_groups_mapping_and_bare_list_are_both_accepted():
    wrapped = parse_study_groups(("groups:" + RECORD).encode())
    bare = parse_study_groups(RECORD.encode())
    assert wrapped == bare
    assert wrapped[0].semester_enum == Semester.FOURTH
    assert wrapped[0].coordinates_id == 4


def test_nested_person_is_validated_like_the_api():
    doc = """
groups:
  - name: Alpha
    coordinates: {x: 1, y: 2}
    expelledStudents: 2
    transferredStudents: 1
    shouldBeExpelled: 1
    semesterEnum: FIRST
    groupAdmin: {name: Ann, hairColor: orange, height: 150, weight: 40, locationId: 2}
"""
    (group,) = parse_study_groups(doc.encode())
    assert group.group_admin.hair_color == Color.ORANGE
    assert group.group_admin.location_id == 2


@pytest.mark.parametrize("doc", [b"groups: [oops", b"\xff\xfe\x00", b"just text", b"other: []"])
def test_unparseable_documents(doc):
    with pytest.raises(ImportParseError):
        parse_study_groups(doc)


def test_empty_group_list_is_a_validation_error():
    with pytest.raises(ImportValidationError):
        parse_study_groups(b"groups: []")


def test_errors_name_the_record():
    doc = ("groups:" + RECORD + "  - 42\n").encode()
    with pytest.raises(ImportValidationError, match="record 2"):
        parse_study_groups(doc)

    bad_enum = ("groups:" + RECORD.replace("fourth", "third")).encode()
    with pytest.raises(ImportValidationError, match="record 1: semesterEnum"):
        parse_study_groups(bad_enum)
