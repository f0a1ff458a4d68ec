# app/services/storage_service.py
import time
from pathlib import Path
from werkzeug.utils import secure_filename
from flask import current_app

DEFAULT_EXTENSIONS = {"pdf","doc","docx","xls","xlsx","ppt","pptx","txt","zip","png","jpg","jpeg","psd","ai","svg","mp4"}

def _ensure_base() -> Path:
    # Fallback to <instance>/uploads if UPLOAD_FOLDER not configured yet
    base = current_app.config.get("UPLOAD_FOLDER")
    if not base:
        base = Path(current_app.instance_path) / "uploads"
    else:
        base = Path(base)
    base.mkdir(parents=True, exist_ok=True)
    return base

def allowed_ext(filename: str) -> bool:
    exts = current_app.config.get("ALLOWED_EXTENSIONS") or DEFAULT_EXTENSIONS
    suffix = Path(filename).suffix.lower().lstrip(".")
    return bool(suffix) and suffix in exts

def save_upload(file_storage, subdir: str = "") -> str:
    """
    Saves file to UPLOAD_FOLDER / subdir / <millis>-<safe_name>, returns relative path from base.
    """
    base = _ensure_base()
    safe_name = secure_filename(file_storage.filename or "")
    if not safe_name:
        raise ValueError("Empty filename")

    target_dir = base / subdir if subdir else base
    target_dir.mkdir(parents=True, exist_ok=True)

    # repeated deliveries of the same file name must not overwrite each other
    dest = target_dir / f"{int(time.time() * 1000)}-{safe_name}"
    file_storage.save(dest)

    return str(dest.relative_to(base))

def delete_upload(rel_path: str) -> bool:
    """Remove a file saved by save_upload. False if it was already gone."""
    base = _ensure_base().resolve()
    target = (base / rel_path).resolve()
    if base not in target.parents:
        raise ValueError(f"{rel_path!r} is outside the upload folder")
    if not target.is_file():
        return False
    target.unlink()
    return True
