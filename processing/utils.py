import os, mimetypes, re
from pathlib import Path
from uuid import uuid4

from .models import MediaKind

_SAFE_EXT = re.compile(r"^\.[A-Za-z0-9]{1,10}$")
_GENERIC_MIMES = {"", "application/octet-stream"}


def assigned_filename(original_name: str) -> str:
    """Collision-free storage name: <uuid hex><original extension>."""
    ext = os.path.splitext(os.path.basename(original_name or ""))[1]
    if not _SAFE_EXT.match(ext):
        ext = ""
    return f"{uuid4().hex}{ext.lower()}"


def save_uploaded_file(djangofile, uploads_dir: Path) -> Path:
    """Save to <uploads_dir>/<uuid><ext> and return the absolute path."""
    uploads_dir = Path(uploads_dir)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    dest = uploads_dir / assigned_filename(djangofile.name)
    with open(dest, "wb") as f:
        for chunk in djangofile.chunks():
            f.write(chunk)
    return dest


def declared_mime(content_type: str, original_name: str) -> str:
    """The client's declared type; falls back to the file name when generic."""
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in _GENERIC_MIMES:
        guessed, _ = mimetypes.guess_type(original_name or "")
        mime = guessed or "application/octet-stream"
    return mime


def kind_for_mime(mime: str) -> MediaKind:
    """Return image | video | other from a declared mimetype."""
    if not mime:
        return MediaKind.OTHER
    if mime.startswith("image/"):
        return MediaKind.IMAGE
    if mime.startswith("video/"):
        return MediaKind.VIDEO
    return MediaKind.OTHER
