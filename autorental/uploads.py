"""Storage of uploaded images and documents on local disk.

Paths stored in the database are relative to ``UPLOAD_FOLDER`` and served by
the ``uploaded_file`` route.
"""

import logging
import os
from datetime import datetime

from flask import current_app
from werkzeug.utils import secure_filename

from .errors import ValidationError


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}
DOCUMENT_EXTENSIONS = IMAGE_EXTENSIONS | {'pdf'}


def allowed_file(filename: str, allowed=IMAGE_EXTENSIONS) -> bool:
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed


def upload_root() -> str:
    return current_app.config['UPLOAD_FOLDER']


def save_upload(upload, subdir: str, allowed=IMAGE_EXTENSIONS, field='file') -> str:
    """Save a ``FileStorage`` below ``subdir`` and return its relative path."""
    if not allowed_file(upload.filename, allowed):
        raise ValidationError({field: f"The {field.replace('_', ' ')} must be a file of type: "
                                      f"{', '.join(sorted(allowed))}."})
    safe_name = secure_filename(upload.filename)
    timestamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
    filename = f"{timestamp}_{safe_name}"
    target_dir = os.path.join(upload_root(), subdir)
    os.makedirs(target_dir, exist_ok=True)
    upload.save(os.path.join(target_dir, filename))
    return f"{subdir}/{filename}"


def delete_upload(relative_path: str) -> None:
    if not relative_path:
        return
    path = os.path.join(upload_root(), relative_path)
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning("Upload %s was already removed", relative_path)


def has_file(upload) -> bool:
    return upload is not None and bool(upload.filename)
