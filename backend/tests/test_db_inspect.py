from __future__ import annotations

import csv
import importlib.util
import json
import os
from pathlib import Path

from classifieds.db import ENGINE
from conftest import ad_form, png_bytes, register_and_login


def _load(name: str, path: Path):
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


ROOT = Path(__file__).resolve().parents[2]
db_inspect = _load("db_inspect", ROOT / "tools" / "db_inspect.py")
clear_ads = _load("clear_ads", ROOT / "backend" / "scripts" / "clear_ads.py")


def _populate(client):
    headers = register_and_login(client, "alice")
    client.post("/ads", data=ad_form(title="Sofa"), files=[("photos", ("a.png", png_bytes(), "image/png"))], headers=headers)
    ad_id = client.post("/ads", data=ad_form(title="Bike", ad_type="rent"), headers=headers).json()["ad_id"]
    client.patch(f"/ads/{ad_id}/mark-sold", headers=headers)


def test_db_inspect_writes_summaries(client, tmp_path):
    _populate(client)
    out = tmp_path / "report"
    (out / "stale.txt").parent.mkdir(parents=True)
    (out / "stale.txt").write_text("old")

    assert db_inspect.main(["--database-url", str(ENGINE.url), "--out-dir", str(out)]) == 0

    assert not (out / "stale.txt").exists()
    with open(out / "users.csv", encoding="utf-8") as f:
        users = list(csv.DictReader(f))
    assert [u["username"] for u in users] == ["alice"]
    assert "password_hash" not in users[0]

    with open(out / "ads.csv", encoding="utf-8") as f:
        assert sorted(r["title"] for r in csv.DictReader(f)) == ["Bike", "Sofa"]

    dashboard = json.loads((out / "dashboard.json").read_text(encoding="utf-8"))
    assert dashboard["users_total"] == 1
    assert dashboard["ads_total"] == 2
    assert dashboard["photos_total"] == 1
    assert dashboard["ads_sold"] == 1
    assert dashboard["ads_by_type"]["sale"] == 1
    assert dashboard["ads_by_type"]["rent"] == 1
    assert dashboard["ads_by_city"]["Kazan"] == 2

    meta = json.loads((out / "meta.json").read_text(encoding="utf-8"))
    assert meta["ads_rows"] == 2
    assert "photos" in meta["tables"]


def test_clear_ads_wipes_rows_and_optionally_files(client, uploads, monkeypatch, capsys):
    _populate(client)
    monkeypatch.setenv("DATABASE_URL", str(ENGINE.url))
    monkeypatch.setenv("UPLOADS_DIR", str(uploads))

    clear_ads.main(["--purge-files"])

    assert "Cleared 2 ad(s) and 1 photo record(s)." in capsys.readouterr().out
    assert client.get("/ads").json()["items"] == []
    assert not os.path.exists(uploads / "ads")
    # Users survive.
    assert client.post("/auth/login", json={"login": "alice", "password": "secret123"}).status_code == 200
