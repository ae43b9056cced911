from fastapi.testclient import TestClient

from studygroups.main import app


client = TestClient(app)


def _group(name="G1", **extra):
    body = {
        "name": name,
        "coordinates": {"x": 1, "y": 2.0},
        "studentsCount": 25,
        "expelledStudents": 1,
        "transferredStudents": 2,
        "formOfEducation": "FULL_TIME_EDUCATION",
        "shouldBeExpelled": 1,
        "averageMark": 4,
        "semesterEnum": "FIRST",
    }
    body.update(extra)
    res = client.post("/study-groups", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def test_create_with_inline_admin_and_location():
    group = _group(
        semesterEnum="second",
        groupAdmin={
            "name": "Ann",
            "hairColor": "black",
            "height": 170,
            "weight": 60.5,
            "nationality": "india",
            "location": {"name": "Hall", "x": 1, "y": 2.0, "z": 3.0},
        },
    )
    assert group["semesterEnum"] == "SECOND"
    assert group["creationDate"]
    admin = group["groupAdmin"]
    assert admin["hairColor"] == "BLACK"
    assert admin["nationality"] == "INDIA"
    assert admin["location"]["name"] == "Hall"
    assert client.get("/persons").json()["totalElements"] == 1
    assert client.get("/locations").json()["totalElements"] == 1


def test_create_reuses_existing_coordinates():
    coords = client.post("/coordinates", json={"x": 5, "y": 6.0}).json()
    group = _group(coordinates=None, coordinatesId=coords["id"])
    assert group["coordinates"] == coords
    assert client.get("/coordinates").json()["totalElements"] == 1


def test_create_rejects_bad_payloads():
    base = {"name": "G", "expelledStudents": 1, "transferredStudents": 1, "shouldBeExpelled": 1,
            "semesterEnum": "FIRST"}
    # coordinates missing
    assert client.post("/study-groups", json=base).status_code == 422
    # both reference forms
    both = {**base, "coordinatesId": 1, "coordinates": {"x": 1, "y": 1.0}}
    assert client.post("/study-groups", json=both).status_code == 422
    # non-positive counter
    zero = {**base, "coordinates": {"x": 1, "y": 1.0}, "expelledStudents": 0}
    assert client.post("/study-groups", json=zero).status_code == 422
    # client-supplied id
    with_id = {**base, "coordinates": {"x": 1, "y": 1.0}, "id": 7}
    assert client.post("/study-groups", json=with_id).status_code == 422
    # blank name
    blank = {**base, "coordinates": {"x": 1, "y": 1.0}, "name": "   "}
    assert client.post("/study-groups", json=blank).status_code == 422


def test_create_with_unknown_reference_is_not_found_and_creates_nothing():
    res = client.post("/study-groups", json={
        "name": "G", "coordinates": {"x": 1, "y": 1.0}, "expelledStudents": 1, "transferredStudents": 1,
        "shouldBeExpelled": 1, "semesterEnum": "FIRST", "groupAdminId": 999,
    })
    assert res.status_code == 404
    assert client.get("/coordinates").json()["totalElements"] == 0


def test_partial_update_keeps_unsent_fields():
    group = _group()
    res = client.patch(f"/study-groups/{group['id']}", json={"name": "Renamed"})
    assert res.status_code == 200
    body = res.json()
    assert body["name"] == "Renamed"
    assert body["averageMark"] == 4
    assert body["studentsCount"] == 25


def test_clear_flags_remove_optional_values():
    group = _group(groupAdmin={"name": "Ann", "hairColor": "YELLOW", "height": 160, "weight": 50.0})
    res = client.patch(f"/study-groups/{group['id']}", json={
        "clearAverageMark": True,
        "clearFormOfEducation": True,
        "removeGroupAdmin": True,
    })
    assert res.status_code == 200
    body = res.json()
    assert body["averageMark"] is None
    assert body["formOfEducation"] is None
    assert body["groupAdmin"] is None
    # the person itself survives
    assert client.get("/persons").json()["totalElements"] == 1


def test_null_on_optional_field_means_unchanged():
    group = _group()
    res = client.patch(f"/study-groups/{group['id']}", json={"averageMark": None, "name": "X"})
    assert res.status_code == 200
    assert res.json()["averageMark"] == 4


def test_invalid_updates_are_rejected():
    group = _group()
    gid = group["id"]
    assert client.patch(f"/study-groups/{gid}", json={}).status_code == 400
    assert client.patch(f"/study-groups/{gid}", json={"name": None}).status_code == 400
    both = client.patch(f"/study-groups/{gid}", json={"averageMark": 3, "clearAverageMark": True})
    assert both.status_code == 400
    assert client.patch(f"/study-groups/{gid}", json={"averageMark": 0}).status_code == 422
    assert client.patch("/study-groups/9999", json={"name": "X"}).status_code == 404


def test_update_replaces_coordinates_inline():
    group = _group()
    res = client.patch(f"/study-groups/{group['id']}", json={"coordinates": {"x": 10, "y": 11.0}})
    assert res.status_code == 200
    assert res.json()["coordinates"]["x"] == 10
    assert client.get("/coordinates").json()["totalElements"] == 2


def test_delete_all_by_semester():
    _group("A", semesterEnum="FIRST")
    _group("B", semesterEnum="FIRST")
    keep = _group("C", semesterEnum="SIXTH")
    res = client.delete("/study-groups/by-semester", params={"semesterEnum": "first"})
    assert res.status_code == 200
    assert res.json() == {"deleted": 2}
    remaining = client.get("/study-groups").json()["content"]
    assert [g["id"] for g in remaining] == [keep["id"]]

    missing = client.delete("/study-groups/by-semester", params={"semesterEnum": "FIRST"})
    assert missing.status_code == 404
    assert client.delete("/study-groups/by-semester", params={"semesterEnum": "THIRD"}).status_code == 400


def test_delete_one_by_semester_removes_lowest_id():
    first = _group("A", semesterEnum="FOURTH")
    second = _group("B", semesterEnum="FOURTH")
    res = client.delete("/study-groups/by-semester/one", params={"semesterEnum": "FOURTH"})
    assert res.status_code == 200
    assert res.json()["id"] == first["id"]
    assert client.get(f"/study-groups/{second['id']}").status_code == 200
    client.delete("/study-groups/by-semester/one", params={"semesterEnum": "FOURTH"})
    res = client.delete("/study-groups/by-semester/one", params={"semesterEnum": "FOURTH"})
    assert res.status_code == 404


def test_statistics():
    _group("A", expelledStudents=3, shouldBeExpelled=2)
    _group("B", expelledStudents=5, shouldBeExpelled=2)
    _group("C", expelledStudents=2, shouldBeExpelled=1)
    stats = client.get("/study-groups/stats/should-be-expelled").json()
    assert stats == [{"shouldBeExpelled": 1, "count": 1}, {"shouldBeExpelled": 2, "count": 2}]
    total = client.get("/study-groups/stats/expelled-total").json()
    assert total == {"totalExpelledStudents": 10}


def test_statistics_on_empty_table():
    assert client.get("/study-groups/stats/should-be-expelled").json() == []
    assert client.get("/study-groups/stats/expelled-total").json() == {"totalExpelledStudents": 0}


def test_bulk_update_and_delete_are_all_or_nothing():
    a = _group("A")
    b = _group("B")
    res = client.patch("/study-groups", params={"ids": [a["id"], b["id"]]}, json={"semesterEnum": "SEVENTH"})
    assert res.status_code == 200
    assert {g["semesterEnum"] for g in res.json()} == {"SEVENTH"}

    res = client.delete("/study-groups", params={"ids": [a["id"], 9999]})
    assert res.status_code == 404
    assert client.get("/study-groups").json()["totalElements"] == 2

    res = client.delete("/study-groups", params={"ids": [a["id"], b["id"]]})
    assert res.json() == {"deleted": 2}
    assert client.get("/study-groups").json()["totalElements"] == 0


def test_study_group_delete_removes_unused_coordinates():
    group = _group()
    assert client.delete(f"/study-groups/{group['id']}").status_code == 200
    assert client.get(f"/study-groups/{group['id']}").status_code == 404
    assert client.get("/coordinates").json()["totalElements"] == 0


def test_shared_coordinates_survive_until_the_last_group_goes():
    first = _group("A")
    coords_id = first["coordinates"]["id"]
    second = _group("B", coordinates=None, coordinatesId=coords_id)
    third = _group("C", coordinates=None, coordinatesId=coords_id, semesterEnum="SIXTH")

    client.delete(f"/study-groups/{first['id']}")
    assert client.get(f"/coordinates/{coords_id}").status_code == 200

    client.delete("/study-groups/by-semester/one", params={"semesterEnum": "FIRST"})
    assert client.get(f"/study-groups/{second['id']}").status_code == 404
    assert client.get(f"/coordinates/{coords_id}").status_code == 200

    client.delete("/study-groups/by-semester", params={"semesterEnum": "SIXTH"})
    assert client.get(f"/study-groups/{third['id']}").status_code == 404
    assert client.get(f"/coordinates/{coords_id}").status_code == 404


def test_bulk_delete_removes_coordinates_of_every_group():
    a, b = _group("A"), _group("B")
    other = client.post("/coordinates", json={"x": 5, "y": 5.0}).json()
    client.delete("/study-groups", params={"ids": [a["id"], b["id"]]})
    remaining = client.get("/coordinates").json()["content"]
    assert [row["id"] for row in remaining] == [other["id"]]


def test_request_id_is_echoed():
    res = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert res.status_code == 200
    assert res.headers["X-Request-ID"] == "abc123"
    assert res.json()["status"] == "ok"
