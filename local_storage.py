import io
import logging
import os
import uuid
from typing import Iterable, List, Optional, Tuple

import aiofiles
from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

STAGED_SUFFIX = ".deleting"


def absolute_path(relative_path: str) -> str:
    """Resolve a stored path (relative to UPLOAD_DIR) without leaving the upload root"""
    root = os.path.realpath(config.UPLOAD_DIR)
    full = os.path.realpath(os.path.join(root, relative_path))
    if os.path.commonpath([root, full]) != root:
        raise ValueError(f"Path escapes upload directory: {relative_path}")
    return full


def upload_url(relative_path: Optional[str]) -> Optional[str]:
    if not relative_path:
        return None
    return f"/uploads/{relative_path}"


def is_image(data: bytes) -> bool:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False


def has_file(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)


# File upload handler
async def save_file(file_data: bytes, file_name: str, subdir: str = "") -> str:
    """Save a file locally and return its path relative to UPLOAD_DIR"""
    # Generate a unique filename to prevent collisions
    file_ext = os.path.splitext(file_name)[1].lower()
    unique_filename = f"{uuid.uuid4()}{file_ext}"
    relative_path = os.path.join(subdir, unique_filename) if subdir else unique_filename

    file_path = absolute_path(relative_path)
    os.makedirs(os.path.dirname(file_path), exist_ok=True)

    async with aiofiles.open(file_path, "wb") as f:
        await f.write(file_data)

    return relative_path.replace(os.sep, "/")


async def save_upload(
    upload: UploadFile,
    subdir: str,
    label: str,
    allowed_types: Iterable[str] = config.ALLOWED_IMAGE_TYPES,
    require_image: bool = False,
) -> str:
    """Validate an uploaded file and store it under `subdir`"""
    data = await upload.read()
    if not data:
        raise ValidationError(f"{label} is empty")
    if len(data) > config.MAX_FILE_SIZE:
        limit_mb = config.MAX_FILE_SIZE // (1024 * 1024)
        raise ValidationError(f"{label} must be less than {limit_mb}MB")
    if upload.content_type not in allowed_types:
        raise ValidationError(f"{label} has an unsupported file type")
    if require_image and not is_image(data):
        raise ValidationError(f"{label} must be a valid image")

    return await save_file(data, upload.filename, subdir)


def delete_file(relative_path: Optional[str]) -> None:
    """Remove a single stored file if it exists"""
    if not relative_path:
        return
    path = absolute_path(relative_path)
    if os.path.exists(path):
        os.remove(path)


# Staged removal: rename first, purge after the database commit, restore on failure

def stage_removal(relative_paths: Iterable[Optional[str]]) -> List[Tuple[str, str]]:
    staged = []
    try:
        for relative_path in relative_paths:
            if not relative_path:
                continue
            path = absolute_path(relative_path)
            if not os.path.exists(path):
                continue
            os.replace(path, path + STAGED_SUFFIX)
            staged.append((path, path + STAGED_SUFFIX))
    except OSError:
        restore_staged(staged)
        raise
    return staged


def restore_staged(staged: List[Tuple[str, str]]) -> None:
    for original, moved in reversed(staged):
        try:
            os.replace(moved, original)
        except OSError:
            logger.exception("Failed to restore staged file %s", original)


def purge_staged(staged: List[Tuple[str, str]]) -> None:
    directories = set()
    for original, moved in staged:
        try:
            os.remove(moved)
        except OSError:
            logger.exception("Failed to remove staged file %s", moved)
        directories.add(os.path.dirname(original))

    # Delete directories left empty, never the upload root itself
    root = os.path.realpath(config.UPLOAD_DIR)
    for directory in directories:
        if os.path.realpath(directory) != root and os.path.isdir(directory) and not os.listdir(directory):
            os.rmdir(directory)


def remove_files(relative_paths: Iterable[Optional[str]]) -> None:
    """Best-effort cleanup of files whose rows are already gone"""
    for relative_path in relative_paths:
        try:
            delete_file(relative_path)
        except (OSError, ValueError):
            logger.exception("Failed to remove file %s", relative_path)
