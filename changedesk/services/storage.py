"""Attachment storage - uploads land in UPLOAD_FOLDER and are served back by URL."""
import logging
import os
import uuid

from flask import url_for
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


class AttachmentStorage:

    def __init__(self, folder):
        self.folder = folder

    def save(self, file):
        """Store an uploaded FileStorage and return its public URL, or None if nothing was sent."""
        if not file or not file.filename:
            return None
        filename = secure_filename(file.filename) or 'attachment'
        name = f'{uuid.uuid4().hex}_{filename}'
        os.makedirs(self.folder, exist_ok=True)
        file.save(os.path.join(self.folder, name))
        logger.info('Stored attachment %s', name)
        return url_for('requests.attachment', name=name, _external=True)
