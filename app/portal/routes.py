from flask import Blueprint, abort, current_app, g, send_file

from app.portal.rbac import is_staff, require_login
from app.portal.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancers. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/files/<path:key>")
@require_login
def download_file(key: str):
    """Serve a locally stored upload. S3 deployments hand out presigned URLs instead."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    if not is_staff(g.current_user):
        abort(403)
    try:
        if not storage.exists(key):
            abort(404)
        fobj = storage.open(key)
    except StorageError:
        abort(404)
    return send_file(fobj, download_name=key.rsplit("/", 1)[-1], as_attachment=False)
