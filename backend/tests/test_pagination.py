import time

from fastapi.testclient import TestClient

from studygroups import models
from studygroups.database import begin_write
from studygroups.main import app


client = TestClient(app)


def _make_locations(names):
    ids = []
    for i, name in enumerate(names):
        res = client.post("/locations", json={"name": name, "x": i, "y": 1.5, "z": 2.5})
        assert res.status_code == 201
        ids.append(res.json()["id"])
    return ids


def test_default_listing_is_ordered_by_id():
    ids = _make_locations(["c", "a", "b"])
    res = client.get("/locations")
    assert res.status_code == 200
    body = res.json()
    assert [row["id"] for row in body["content"]] == ids
    assert body["page"] == 0
    assert body["size"] == 20
    assert body["totalElements"] == 3
    assert body["totalPages"] == 1


def test_desc_is_exact_reverse_of_asc_with_ties():
    _make_locations(["b", "a", "b", "a", "c"])
    asc = client.get("/locations", params={"sortBy": "name", "direction": "asc", "size": 10}).json()
    desc = client.get("/locations", params={"sortBy": "name", "direction": "DESC", "size": 10}).json()
    asc_ids = [row["id"] for row in asc["content"]]
    desc_ids = [row["id"] for row in desc["content"]]
    assert desc_ids == list(reversed(asc_ids))
    assert [row["name"] for row in asc["content"]] == ["a", "a", "b", "b", "c"]


def test_numeric_sort_desc_is_exact_reverse_with_ties():
    for x, y in [(3, 1.0), (1, 2.0), (3, 3.0), (2, 4.0), (1, 5.0)]:
        assert client.post("/coordinates", json={"x": x, "y": y}).status_code == 201
    asc = client.get("/coordinates", params={"sortBy": "x", "direction": "asc"}).json()["content"]
    desc = client.get("/coordinates", params={"sortBy": "x", "direction": "desc"}).json()["content"]
    assert [row["x"] for row in asc] == [1, 1, 2, 3, 3]
    assert [row["id"] for row in desc] == [row["id"] for row in reversed(asc)]
    # ties fall back to id order
    assert [row["y"] for row in asc] == [2.0, 5.0, 4.0, 1.0, 3.0]


def test_pages_never_skip_or_repeat_rows():
    ids = _make_locations(["x"] * 7)
    seen = []
    for page in range(3):
        body = client.get("/locations", params={"sortBy": "name", "page": page, "size": 3}).json()
        assert body["totalPages"] == 3
        seen.extend(row["id"] for row in body["content"])
    assert seen == ids


def test_page_past_the_end_is_empty_with_totals():
    _make_locations(["a", "b"])
    body = client.get("/locations", params={"page": 5, "size": 2}).json()
    assert body["content"] == []
    assert body["totalElements"] == 2
    assert body["totalPages"] == 1


def test_empty_table_has_zero_pages():
    body = client.get("/coordinates").json()
    assert body["content"] == []
    assert body["totalElements"] == 0
    assert body["totalPages"] == 0


def test_camel_case_sort_key_is_accepted():
    client.post("/coordinates", json={"x": 3, "y": 1.0})
    client.post("/coordinates", json={"x": 1, "y": 2.0})
    res = client.get("/persons", params={"sortBy": "hairColor"})
    assert res.status_code == 200
    res = client.get("/coordinates", params={"sortBy": "x"})
    assert [row["x"] for row in res.json()["content"]] == [1, 3]


def test_unknown_sort_field_is_rejected():
    res = client.get("/study-groups", params={"sortBy": "password"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "InvalidSortFieldError"
    assert "password" in body["message"]


def test_invalid_window_is_rejected():
    assert client.get("/locations", params={"size": 0}).status_code == 400
    assert client.get("/locations", params={"page": -1}).status_code == 400
    assert client.get("/locations", params={"size": 101}).status_code == 400
    assert client.get("/locations", params={"direction": "sideways"}).status_code == 400


def test_by_ids_returns_existing_rows_only():
    ids = _make_locations(["a", "b", "c"])
    res = client.get("/locations/by-ids", params={"ids": [ids[2], ids[0], 9999]})
    assert res.status_code == 200
    assert [row["id"] for row in res.json()] == [ids[0], ids[2]]


def test_sort_keys_must_start_lowercase():
    for key in ("ID", "Name", "_name"):
        res = client.get("/locations", params={"sortBy": key})
        assert res.status_code == 400
        body = res.json()
        assert body["error"] == "InvalidSortFieldError"
        assert body["message"] == f"sort field '{key}' must be camelCase or snake_case"


def test_reads_do_not_wait_for_an_open_write(session):
    client.post("/coordinates", json={"x": 1, "y": 1.0})
    begin_write(session)
    session.add(models.Coordinates(x=2, y=2.0))
    session.flush()
    try:
        started = time.time()
        res = client.get("/coordinates")
        assert res.status_code == 200
        assert res.json()["totalElements"] == 1
        assert time.time() - started < 5
    finally:
        session.rollback()
