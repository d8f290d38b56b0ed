import os
import shutil
import time

from fastapi import UploadFile
from werkzeug.utils import secure_filename

from config import UPLOAD_DIR

UPLOAD_URL_PREFIX = "/uploads"


def save_upload(upload: UploadFile, kind: str) -> str:
    """Сохраняет файл в UPLOAD_DIR/<kind>/ и возвращает URL для статики"""
    folder = os.path.join(UPLOAD_DIR, kind)
    os.makedirs(folder, exist_ok=True)

    filename = f"{int(time.time() * 1000)}-{secure_filename(upload.filename or '') or 'upload'}"
    with open(os.path.join(folder, filename), "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return f"{UPLOAD_URL_PREFIX}/{kind}/{filename}"
