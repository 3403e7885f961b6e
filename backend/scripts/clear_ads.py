from __future__ import annotations

import argparse
import os
import shutil

from sqlalchemy import create_engine, text


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description="Delete every ad and its photo records.")
    ap.add_argument("--purge-files", action="store_true", help="Also remove <UPLOADS_DIR>/ads from disk.")
    args = ap.parse_args(argv)

    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise SystemExit("DATABASE_URL is required")

    engine = create_engine(db_url, future=True)
    with engine.begin() as conn:
        photos = conn.execute(text("DELETE FROM photos")).rowcount
        ads = conn.execute(text("DELETE FROM ads")).rowcount
    engine.dispose()

    print(f"Cleared {ads} ad(s) and {photos} photo record(s).")

    if args.purge_files:
        uploads = (os.environ.get("UPLOADS_DIR") or "").strip()
        if not uploads:
            raise SystemExit("UPLOADS_DIR is required with --purge-files")
        target = os.path.join(uploads, "ads")
        if os.path.isdir(target):
            shutil.rmtree(target)
            print(f"Removed {target}")


if __name__ == "__main__":
    main()
