import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from negotiation.utils.exceptions import NotFound, ValidationError

URL_PREFIX = "/api/v1/files"
SCOPES = ("chats", "orders")


class LocalAttachmentStore:
    """Attachment store on local disk: ``<root>/<scope>/<owner_id>/<file>``.

    URLs handed out look like ``/api/v1/files/<scope>/<owner_id>/<file>``
    and are served by ``routes/file_routes.py``.
    """

    def __init__(self, root):
        self.root = root

    def put(self, file, scope, owner_id):
        if scope not in SCOPES:
            raise ValueError(f"unknown attachment scope {scope!r}")

        name = secure_filename(file.filename or "")
        if not name:
            raise ValidationError("Attachment has no usable filename", {"field": "attachments"})

        dest_dir = os.path.join(self.root, scope, secure_filename(owner_id))
        os.makedirs(dest_dir, exist_ok=True)

        filename = f"{uuid.uuid4().hex}_{name}"
        file.save(os.path.join(dest_dir, filename))
        return f"{URL_PREFIX}/{scope}/{owner_id}/{filename}"

    def path_for(self, url):
        if not url.startswith(URL_PREFIX + "/"):
            raise NotFound("File not found")

        parts = url[len(URL_PREFIX) + 1:].split("/")
        if len(parts) != 3 or parts[0] not in SCOPES:
            raise NotFound("File not found")

        scope, owner_id, filename = parts
        path = os.path.join(self.root, scope, secure_filename(owner_id), secure_filename(filename))
        if not os.path.isfile(path):
            raise NotFound("File not found")
        return path

    def get(self, url):
        with open(self.path_for(url), "rb") as fh:
            return fh.read()


def init_app(app):
    app.extensions["attachment_store"] = LocalAttachmentStore(app.config["ATTACHMENTS_FOLDER"])


def get_store():
    return current_app.extensions["attachment_store"]


def save_uploads(files, scope, owner_id):
    store = get_store()
    return [store.put(f, scope, owner_id) for f in files if f and f.filename]
