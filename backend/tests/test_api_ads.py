from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from classifieds.main import app
from classifieds.photo_store import resolve_ref
from conftest import ad_form, png_bytes, png_header_only, register_and_login, truncated_jpeg


def _photos(n: int, name: str = "pic.png"):
    return [("photos", (f"{i}-{name}", png_bytes(), "image/png")) for i in range(n)]


def _stored_files(uploads) -> list[str]:
    ads_dir = uploads / "ads"
    return sorted(os.listdir(ads_dir)) if ads_dir.exists() else []


def test_end_to_end(client, uploads):
    headers = register_and_login(client, "alice")

    r = client.post("/ads", data=ad_form(), files=_photos(2), headers=headers)
    assert r.status_code == 200, r.text
    created = r.json()
    assert created["message"] == "Ad created"
    ad_id = created["ad_id"]
    assert len(created["photos"]) == 2
    assert len(_stored_files(uploads)) == 2

    r = client.get("/ads", params={"keyword": "SOFA"})
    items = r.json()["items"]
    assert [a["id"] for a in items] == [ad_id]
    assert items[0]["photos"] == created["photos"]
    assert items[0]["city"] == "Kazan"
    assert items[0]["price"] == 150

    photo = client.get(created["photos"][0])
    assert photo.status_code == 200
    assert photo.content == open(resolve_ref(created["photos"][0], str(uploads)), "rb").read()

    r = client.patch(f"/ads/{ad_id}/mark-sold", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"message": "Ad marked as sold"}
    assert client.get(f"/ads/{ad_id}").json()["is_sold"] is True

    r = client.delete(f"/ads/{ad_id}", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"message": "Ad deleted"}

    assert client.get("/ads").json()["items"] == []
    assert client.get(f"/ads/{ad_id}").status_code == 404
    assert _stored_files(uploads) == []
    assert client.get(created["photos"][0]).status_code == 204


def test_create_requires_auth(client):
    r = client.post("/ads", data=ad_form())
    assert r.status_code == 401


@pytest.mark.parametrize(
    "overrides,status",
    [
        ({"price": "-1"}, 400),
        ({"price": "abc"}, 400),
        ({"title": None}, 400),
        ({"ad_type": "lease"}, 400),
        ({"location": "Atlantis"}, 400),
        ({"category_id": "x"}, 400),
    ],
)
def test_create_validation(client, uploads, overrides, status):
    headers = register_and_login(client, "alice")
    r = client.post("/ads", data=ad_form(**overrides), files=_photos(1), headers=headers)
    assert r.status_code == status
    assert r.json()["error"]
    assert _stored_files(uploads) == []
    assert client.get("/ads").json()["items"] == []


def test_price_zero_is_allowed(client):
    headers = register_and_login(client, "alice")
    r = client.post("/ads", data=ad_form(price="0"), headers=headers)
    assert r.status_code == 200
    assert client.get(f"/ads/{r.json()['ad_id']}").json()["price"] == 0


def test_eleven_photos_fail_before_anything_is_stored(client, uploads):
    headers = register_and_login(client, "alice")
    r = client.post("/ads", data=ad_form(), files=_photos(11), headers=headers)
    assert r.status_code == 400
    assert _stored_files(uploads) == []
    assert client.get("/ads").json()["items"] == []


def test_non_image_upload_is_rejected(client, uploads):
    headers = register_and_login(client, "alice")
    files = [("photos", ("notes.png", b"plain text pretending to be a picture", "image/png"))]
    r = client.post("/ads", data=ad_form(), files=files, headers=headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Only image uploads are allowed"}
    assert _stored_files(uploads) == []


def test_failed_photo_attach_rolls_back_ad(client, uploads, monkeypatch):
    from classifieds.repository import AdRepository

    def boom(self, ad_id, photos):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(AdRepository, "attach_photos", boom)
    headers = register_and_login(client, "alice")

    quiet = TestClient(app, raise_server_exceptions=False)
    r = quiet.post("/ads", data=ad_form(), files=_photos(2), headers=headers)
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}

    assert _stored_files(uploads) == []
    assert client.get("/ads").json()["items"] == []


def test_only_owner_can_modify(client):
    alice = register_and_login(client, "alice")
    bob = register_and_login(client, "bob")
    ad_id = client.post("/ads", data=ad_form(), headers=alice).json()["ad_id"]

    for call in (
        lambda h: client.put(f"/ads/{ad_id}", json={"title": "Hijacked"}, headers=h),
        lambda h: client.patch(f"/ads/{ad_id}/mark-sold", headers=h),
        lambda h: client.delete(f"/ads/{ad_id}", headers=h),
    ):
        r = call(bob)
        assert r.status_code == 403
        assert r.json() == {"error": "No access to this ad or ad not found"}

    ad = client.get(f"/ads/{ad_id}").json()
    assert ad["title"] == "Old sofa"
    assert ad["is_sold"] is False

    r = client.put(f"/ads/{ad_id}", json={"title": "Blue sofa", "price": 99.99, "ad_type": "exchange"}, headers=alice)
    assert r.status_code == 200
    updated = r.json()["ad"]
    assert updated["title"] == "Blue sofa"
    assert updated["price"] == 99.99
    assert updated["ad_type"] == "exchange"
    assert updated["description"] == "Comfortable three-seat sofa"


def test_update_validation(client):
    headers = register_and_login(client, "alice")
    ad_id = client.post("/ads", data=ad_form(), headers=headers).json()["ad_id"]
    assert client.put(f"/ads/{ad_id}", json={"price": -5}, headers=headers).status_code == 400
    assert client.put(f"/ads/{ad_id}", json={"title": " "}, headers=headers).status_code == 400
    assert client.put(f"/ads/{ad_id}", json={"category_id": "many"}, headers=headers).status_code == 400
    assert client.get(f"/ads/{ad_id}").json()["price"] == 150


def test_mark_sold_twice(client):
    headers = register_and_login(client, "alice")
    ad_id = client.post("/ads", data=ad_form(), headers=headers).json()["ad_id"]
    assert client.patch(f"/ads/{ad_id}/mark-sold", headers=headers).status_code == 200
    assert client.patch(f"/ads/{ad_id}/mark-sold", headers=headers).status_code == 200
    assert client.get("/ads", params={"sold": "true"}).json()["items"][0]["id"] == ad_id
    assert client.get("/ads", params={"sold": "false"}).json()["items"] == []


def test_search_price_range_and_keyword(client):
    headers = register_and_login(client, "alice")
    for title, price in (("Red sofa", "150"), ("Green sofa", "250"), ("Oak table", "120"), ("Tiny sofa", "99")):
        client.post("/ads", data=ad_form(title=title, description="Used", price=price), headers=headers)

    items = client.get("/ads", params={"price_min": 100, "price_max": 200}).json()["items"]
    assert sorted(a["title"] for a in items) == ["Oak table", "Red sofa"]

    items = client.get("/ads", params={"price_min": 100, "price_max": 200, "keyword": "sofa"}).json()["items"]
    assert [a["title"] for a in items] == ["Red sofa"]

    items = client.get("/ads", params={"sort_by": "price", "order": "DESC"}).json()["items"]
    assert [a["price"] for a in items] == [250, 150, 120, 99]


def test_malicious_sort_is_ignored(client):
    headers = register_and_login(client, "alice")
    ids = [client.post("/ads", data=ad_form(), headers=headers).json()["ad_id"] for _ in range(2)]

    r = client.get("/ads", params={"sort_by": "id; DROP TABLE ads; --", "order": "DESC"})
    assert r.status_code == 200
    assert [a["id"] for a in r.json()["items"]] == ids
    assert len(client.get("/ads").json()["items"]) == 2


def test_bad_query_params(client):
    assert client.get("/ads", params={"price_min": "cheap"}).status_code == 400
    assert client.get("/ads", params={"limit": 0}).status_code == 400


def test_uploads_never_escape_the_directory(client):
    r = client.get("/uploads/..%2F..%2Fclassifieds%2Fmain.py")
    assert r.status_code == 204


def _failing_commit(self):
    raise RuntimeError("database went away")


def test_failed_commit_is_not_reported_as_success(client, monkeypatch):
    headers = register_and_login(client, "alice")
    ad_id = client.post("/ads", data=ad_form(), headers=headers).json()["ad_id"]
    quiet = TestClient(app, raise_server_exceptions=False)

    with monkeypatch.context() as m:
        m.setattr(Session, "commit", _failing_commit)
        r = quiet.patch(f"/ads/{ad_id}/mark-sold", headers=headers)
        assert r.status_code == 500
        assert r.json() == {"error": "Internal server error"}
        r = quiet.put(f"/ads/{ad_id}", json={"title": "Lost edit"}, headers=headers)
        assert r.status_code == 500
        r = quiet.post("/auth/register", json={"username": "bob", "email": "bob@example.com", "password": "pw"})
        assert r.status_code == 500

    ad = client.get(f"/ads/{ad_id}").json()
    assert ad["is_sold"] is False
    assert ad["title"] == "Old sofa"
    assert client.post("/auth/login", json={"login": "bob", "password": "pw"}).status_code == 400


def test_registration_is_visible_once_answered(client):
    r = client.post("/auth/register", json={"username": "alice", "email": "alice@example.com", "password": "pw"})
    assert r.status_code == 200
    assert client.post("/auth/login", json={"login": "alice", "password": "pw"}).status_code == 200


def test_search_wildcards_are_literal(client):
    headers = register_and_login(client, "alice")
    for title in ("abc lamp", "50% off"):
        client.post("/ads", data=ad_form(title=title, description="Used"), headers=headers)

    assert [a["title"] for a in client.get("/ads", params={"keyword": "a_c"}).json()["items"]] == []
    assert [a["title"] for a in client.get("/ads", params={"keyword": "%"}).json()["items"]] == ["50% off"]


def test_search_reports_total(client):
    headers = register_and_login(client, "alice")
    for _ in range(3):
        client.post("/ads", data=ad_form(), headers=headers)
    body = client.get("/ads", params={"limit": 2}).json()
    assert len(body["items"]) == 2
    assert body["total"] == 3
    assert (body["limit"], body["offset"]) == (2, 0)


@pytest.mark.parametrize("max_dim", ["64", "4096"])
def test_truncated_jpeg_is_a_bad_request(client, uploads, monkeypatch, max_dim):
    monkeypatch.setenv("MAX_PHOTO_DIM", max_dim)
    headers = register_and_login(client, "alice")
    files = [("photos", ("half.jpg", truncated_jpeg(), "image/jpeg"))]
    r = client.post("/ads", data=ad_form(), files=files, headers=headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Only image uploads are allowed"}
    assert _stored_files(uploads) == []
    assert client.get("/ads").json()["total"] == 0


def test_decompression_bomb_is_a_bad_request(client, uploads):
    headers = register_and_login(client, "alice")
    files = [("photos", ("bomb.png", png_header_only(20000, 20000), "image/png"))]
    r = client.post("/ads", data=ad_form(), files=files, headers=headers)
    assert r.status_code == 400
    assert _stored_files(uploads) == []
