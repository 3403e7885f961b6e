from __future__ import annotations

import warnings
from io import BytesIO

from PIL import Image, ImageOps


IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif"}

_FORMAT_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

# Everything Pillow raises for unreadable, truncated or oversized input.
# UnidentifiedImageError is an OSError.
DECODE_ERRORS = (
    OSError,
    SyntaxError,
    ValueError,
    Image.DecompressionBombError,
    Image.DecompressionBombWarning,
)


def looks_like_image(raw: bytes) -> bool:
    if not raw or len(raw) < 16:
        return False

    sig = raw[:16]

    return (
        sig.startswith(b"\xFF\xD8\xFF") or          # JPEG
        sig.startswith(b"\x89PNG\r\n\x1a\n") or     # PNG
        (sig.startswith(b"RIFF") and sig[8:12] == b"WEBP") or
        sig.startswith((b"GIF87a", b"GIF89a"))
    )


def _open(raw: bytes) -> Image.Image:
    # Oversized headers fail here instead of allocating pixels later.
    with warnings.catch_warnings():
        warnings.simplefilter("error", Image.DecompressionBombWarning)
        return Image.open(BytesIO(raw))


def sniff_content_type(raw: bytes) -> str:
    """
    Decode the whole image with Pillow and return the real content type, or ""
    when the bytes are not an image we accept (wrong format, truncated or
    corrupt data, pixel count over Pillow's bomb limit).
    """
    if not looks_like_image(raw):
        return ""
    try:
        with _open(raw) as img:
            img.verify()
            fmt = (img.format or "").upper()
        # verify() leaves JPEG scan data unchecked; load() reads every byte.
        with _open(raw) as img:
            img.load()
    except DECODE_ERRORS:
        return ""
    return _FORMAT_CONTENT_TYPES.get(fmt, "")


def downscale(raw: bytes, *, max_dim: int) -> bytes:
    """
    Keep aspect ratio and format; return the input unchanged when it already fits.
    Animated GIFs are never touched. Raises one of DECODE_ERRORS on bad input.
    """
    with _open(raw) as img:
        fmt = img.format or "PNG"
        if max(img.size) <= max_dim or getattr(img, "is_animated", False):
            return raw
        img = ImageOps.exif_transpose(img)
        if fmt == "JPEG" and img.mode not in {"RGB", "L"}:
            img = img.convert("RGB")
        img.thumbnail((max_dim, max_dim), Image.LANCZOS)
        out = BytesIO()
        save_kwargs = {"quality": 85, "optimize": True} if fmt == "JPEG" else {}
        img.save(out, format=fmt, **save_kwargs)
        return out.getvalue()
