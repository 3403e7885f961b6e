"""
Photo attachment store.

Uploaded files live under ``<UPLOADS_DIR>/ads/`` and are referenced by their
public URL (``/uploads/ads/<name>``), which the static-file route resolves.
File names are ``<ms timestamp>-<random token>-<sanitized original name>`` so
concurrent uploads never collide and need no coordination.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import re
import secrets
import time
from dataclasses import dataclass
from typing import Iterable

from classifieds.config import max_photo_dim, max_photos_per_ad, max_upload_image_bytes, uploads_dir
from classifieds.errors import InternalError, TooManyFilesError, UploadTooLargeError, ValidationError
from classifieds.utils.images import DECODE_ERRORS, IMAGE_EXTENSIONS, downscale, sniff_content_type


logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"
ADS_SUBDIR = "ads"


@dataclass(frozen=True)
class PendingPhoto:
    raw: bytes
    original_name: str
    content_type: str


@dataclass(frozen=True)
class StoredPhoto:
    ref: str
    original_name: str
    content_type: str
    size_bytes: int


def _safe_name(original_name: str) -> str:
    base = os.path.basename((original_name or "").replace("\\", "/")).strip()
    base = re.sub(r"[^A-Za-z0-9._-]+", "_", base).strip("._")
    return base[-100:] or "photo"


def resolve_ref(ref: str, base_dir: str | None = None) -> str | None:
    """
    Map a public photo reference back to its path on disk, or None when the
    reference does not point inside the uploads directory.
    """
    ref = (ref or "").strip().replace("\\", "/")
    if not ref.startswith(PUBLIC_PREFIX):
        return None
    base = os.path.abspath(base_dir or uploads_dir())
    path = os.path.abspath(os.path.join(base, ref[len(PUBLIC_PREFIX):]))
    if os.path.commonpath([path, base]) != base or path == base:
        return None
    return path


class PhotoStore:
    def __init__(self, base_dir: str | None = None, *, max_files: int | None = None) -> None:
        self.base_dir = os.path.abspath(base_dir or uploads_dir())
        self.max_files = max_photos_per_ad() if max_files is None else int(max_files)

    def _check_count(self, n: int) -> None:
        if n > self.max_files:
            raise TooManyFilesError(f"At most {self.max_files} photos are allowed per ad")

    def prepare(self, files: Iterable[tuple[bytes, str, str]]) -> list[PendingPhoto]:
        """
        Validate a batch of (raw bytes, original name, declared content type)
        before anything is written.
        """
        files = list(files)
        self._check_count(len(files))
        max_bytes = max_upload_image_bytes()
        out: list[PendingPhoto] = []
        for raw, name, declared in files:
            if not raw:
                raise ValidationError(f"Empty upload: {name or 'photo'}")
            if len(raw) > max_bytes:
                raise UploadTooLargeError(f"Upload too large (max {max_bytes} bytes)")
            content_type = sniff_content_type(raw)
            if not content_type:
                logger.info("Rejected non-image upload name=%r declared=%r size=%s", name, declared, len(raw))
                raise ValidationError("Only image uploads are allowed")
            out.append(PendingPhoto(raw=raw, original_name=(name or "").strip(), content_type=content_type))
        return out

    def store(self, ad_id: int, raw: bytes, original_name: str, content_type: str = "") -> StoredPhoto:
        name = _safe_name(original_name)
        if os.path.splitext(name)[1].lower() not in IMAGE_EXTENSIONS:
            name = f"{name}{mimetypes.guess_extension(content_type or '') or '.jpg'}"
        stored_name = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{name}"
        target_dir = os.path.join(self.base_dir, ADS_SUBDIR)
        os.makedirs(target_dir, exist_ok=True)
        try:
            data = downscale(raw, max_dim=max_photo_dim()) if content_type else raw
        except DECODE_ERRORS:
            logger.info("Could not decode photo ad_id=%s name=%r", ad_id, original_name)
            raise ValidationError("Only image uploads are allowed")
        try:
            with open(os.path.join(target_dir, stored_name), "xb") as out:
                out.write(data)
        except OSError:
            logger.exception("Failed to store photo ad_id=%s name=%r", ad_id, original_name)
            raise InternalError("Failed to save upload")
        return StoredPhoto(
            ref=f"{PUBLIC_PREFIX}{ADS_SUBDIR}/{stored_name}",
            original_name=(original_name or "").strip(),
            content_type=content_type,
            size_bytes=len(data),
        )

    def store_many(self, ad_id: int, photos: list[PendingPhoto]) -> list[StoredPhoto]:
        self._check_count(len(photos))
        stored: list[StoredPhoto] = []
        try:
            for p in photos:
                stored.append(self.store(ad_id, p.raw, p.original_name, p.content_type))
        except Exception:
            self.discard([s.ref for s in stored])
            raise
        return stored

    def discard(self, refs: Iterable[str]) -> int:
        """
        Best-effort bulk removal; returns how many files were removed.
        """
        removed = 0
        for ref in refs:
            path = resolve_ref(ref, self.base_dir)
            if not path:
                continue
            try:
                os.remove(path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not remove photo file %s", path, exc_info=True)
        return removed
