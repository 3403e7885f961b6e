from __future__ import annotations

import argparse
import csv
import datetime as dt
import json
import os
import shutil
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url


# table -> (csv file, columns listed first)
EXPORTS: dict[str, tuple[str, list[str]]] = {
    "users": ("users.csv", ["id", "username", "email", "first_name", "last_name", "phone", "created_at"]),
    "ads": (
        "ads.csv",
        ["id", "owner_id", "title", "category_id", "ad_type_id", "price", "city_id", "is_sold", "created_at", "updated_at"],
    ),
    "photos": ("photos.csv", ["id", "ad_id", "photo_url", "original_filename", "content_type", "size_bytes", "created_at"]),
}

# Never written out.
HIDDEN_COLUMNS = {"password_hash"}


def _default_database_url() -> str:
    env = (os.environ.get("DATABASE_URL") or "").strip()
    if env:
        return env
    db_path = Path(__file__).resolve().parents[1] / "backend" / "local.db"
    return f"sqlite:///{db_path}"


def _safe_url_for_logs(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return "<unparsed DATABASE_URL>"


def _ensure_empty_dir(out_dir: Path) -> None:
    if out_dir.exists():
        shutil.rmtree(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)


def _pick_cols(preferred: list[str], available: set[str]) -> list[str]:
    out = [c for c in preferred if c in available]
    for c in sorted(available):
        if c not in out:
            out.append(c)
    return [c for c in out if c not in HIDDEN_COLUMNS]


def _write_csv(path: Path, rows: list[dict[str, Any]], cols: list[str]) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=list(cols), extrasaction="ignore")
        w.writeheader()
        for r in rows:
            w.writerow({k: r.get(k) for k in cols})


def _utc_day_window(now: dt.datetime | None = None) -> tuple[dt.datetime, dt.datetime]:
    n = now or dt.datetime.now(dt.timezone.utc)
    start = dt.datetime(n.year, n.month, n.day, tzinfo=dt.timezone.utc)
    return start, start + dt.timedelta(days=1)


def _count(engine: Engine, sql: str, params: dict[str, Any] | None = None) -> int:
    with engine.connect() as conn:
        return int(conn.execute(text(sql), params or {}).scalar() or 0)


def _dashboard(engine: Engine, tables: set[str], today: dict[str, Any] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for table in ("users", "ads", "photos"):
        if table in tables:
            out[f"{table}_total"] = _count(engine, f'SELECT COUNT(*) FROM "{table}"')
            if today is not None:
                out[f"{table}_today"] = _count(
                    engine, f'SELECT COUNT(*) FROM "{table}" WHERE "created_at" >= :start AND "created_at" < :end', today
                )
    if "ads" in tables:
        out["ads_sold"] = _count(engine, 'SELECT COUNT(*) FROM "ads" WHERE "is_sold" = :sold', {"sold": True})
        if "ad_types" in tables:
            sql = (
                'SELECT t."type_name" AS name, COUNT(a."id") AS n FROM "ad_types" t '
                'LEFT JOIN "ads" a ON a."ad_type_id" = t."id" GROUP BY t."type_name" ORDER BY n DESC, name'
            )
            with engine.connect() as conn:
                out["ads_by_type"] = {str(r["name"]): int(r["n"]) for r in conn.execute(text(sql)).mappings()}
        if "cities" in tables:
            sql = (
                'SELECT ci."name" AS name, COUNT(a."id") AS n FROM "cities" ci '
                'LEFT JOIN "ads" a ON a."city_id" = ci."id" GROUP BY ci."name" ORDER BY n DESC, name'
            )
            with engine.connect() as conn:
                out["ads_by_city"] = {str(r["name"]): int(r["n"]) for r in conn.execute(text(sql)).mappings()}
    return out


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Inspect the classifieds DB and write CSV/JSON summaries into a folder.")
    ap.add_argument("--database-url", default="", help="SQLAlchemy URL (defaults to env DATABASE_URL or backend/local.db).")
    ap.add_argument("--out-dir", required=True, help="Output directory to overwrite.")
    ap.add_argument("--today-only", action="store_true", help="Only rows created today (UTC).")
    args = ap.parse_args(argv)

    url = (args.database_url or "").strip() or _default_database_url()
    out_dir = Path(args.out_dir)
    _ensure_empty_dir(out_dir)

    engine = create_engine(url, pool_pre_ping=True, future=True)
    insp = inspect(engine)
    tables = set(insp.get_table_names())

    start_utc, end_utc = _utc_day_window()
    today = {"start": start_utc, "end": end_utc} if args.today_only else None

    meta: dict[str, Any] = {
        "inspected_at_utc": dt.datetime.now(dt.timezone.utc).isoformat(),
        "database_url": _safe_url_for_logs(url),
        "today_only": bool(args.today_only),
        "today_window_utc": {"start": start_utc.isoformat(), "end": end_utc.isoformat()},
        "tables": sorted(tables),
    }

    for table, (filename, preferred) in EXPORTS.items():
        if table not in tables:
            meta[f"{table}_rows"] = 0
            continue
        cols = _pick_cols(preferred, {c["name"] for c in insp.get_columns(table)})
        where = 'WHERE "created_at" >= :start AND "created_at" < :end' if today is not None else ""
        col_sql = ", ".join(f'"{c}"' for c in cols)
        with engine.connect() as conn:
            rows = [dict(r) for r in conn.execute(text(f'SELECT {col_sql} FROM "{table}" {where} ORDER BY "id" DESC'), today or {}).mappings()]
        _write_csv(out_dir / filename, rows, cols)
        meta[f"{table}_rows"] = len(rows)

    dashboard = _dashboard(engine, tables, today)
    engine.dispose()

    (out_dir / "dashboard.json").write_text(json.dumps(dashboard, indent=2, default=str) + "\n", encoding="utf-8")
    (out_dir / "meta.json").write_text(json.dumps(meta, indent=2) + "\n", encoding="utf-8")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
