"""Flask blueprint implementing the polish APIs."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, Response, current_app, jsonify, request, session
from markupsafe import escape
from werkzeug.utils import secure_filename

from .chunker import estimate_tokens
from .config import ALLOWED_MODELS, DATA_DIR, DEFAULT_DIALECT, DEFAULT_MODEL, DIALECTS, MAX_ATTEMPTS
from .diff import diff, improvement_percent, render, word_count, word_presence_ops
from .errors import CompletionError, PolishError, StorageError, ValidationError
from .export import EXPORT_FORMATS, export_bytes, export_to_path
from .models import ExportMetadata, RevisionRequest
from .revision import RevisionService
from .session import PolishSession

logger = logging.getLogger(__name__)

polish_bp = Blueprint("polish", __name__, url_prefix="/api/polish")

ALLOWED_TEXT_EXTENSIONS = {"txt", "md"}
SETTINGS_FIELDS = {
    "dark_mode",
    "diff_highlight",
    "latex_protect",
    "stream",
    "selected_model",
    "selected_mode",
    "selected_dialect",
}


def _polish_session() -> PolishSession:
    return current_app.extensions["polish_session"]


def _revision_service() -> RevisionService:
    return current_app.extensions["polish_service"]


def _require_auth() -> Optional[Response]:
    if request.endpoint == "polish.health":
        return None
    if not current_app.config.get("ACCESS_PASSWORD"):
        return None
    if not session.get("authenticated", False):
        return jsonify({"error": "Unauthorized"}), 401
    return None


@polish_bp.before_request
def before_request():
    auth_error = _require_auth()
    if auth_error:
        return auth_error


@polish_bp.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    return jsonify({"error": str(exc)}), 400


@polish_bp.errorhandler(StorageError)
def handle_storage_error(exc: StorageError):
    return jsonify({"success": False, "error": str(exc)}), 500


def _parse_model(value: Optional[str]) -> str:
    if value and value.lower() in ALLOWED_MODELS:
        return value.lower()
    return DEFAULT_MODEL


def _parse_dialect(value: Optional[str]) -> str:
    if value in DIALECTS:
        return value
    return DEFAULT_DIALECT


def _allowed_text_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_TEXT_EXTENSIONS


@polish_bp.route("/health")
def health():
    return jsonify({"status": "ok"})


# Modes
@polish_bp.route("/modes")
def list_modes():
    polish_session = _polish_session()
    modes = [
        {
            "id": mode.id,
            "label": mode.label,
            "description": mode.describe(),
            "temperature": mode.temperature,
            "custom": mode.custom,
        }
        for mode in polish_session.modes.all()
    ]
    return jsonify({"modes": modes, "selected": polish_session.settings.selected_mode})


@polish_bp.route("/modes", methods=["POST"])
def save_custom_mode():
    payload = request.get_json(silent=True) or {}
    mode = _polish_session().save_custom_mode(payload)
    return jsonify({"success": True, "mode": mode.to_dict()})


@polish_bp.route("/modes/<mode_id>", methods=["DELETE"])
def delete_custom_mode(mode_id: str):
    if not _polish_session().delete_custom_mode(mode_id):
        return jsonify({"error": "Custom mode not found"}), 404
    return jsonify({"success": True})


# Settings
@polish_bp.route("/settings")
def get_settings():
    return jsonify(_polish_session().settings.to_dict())


@polish_bp.route("/settings", methods=["PUT"])
def update_settings():
    polish_session = _polish_session()
    payload = request.get_json(silent=True) or {}
    changes: Dict[str, Any] = {key: value for key, value in payload.items() if key in SETTINGS_FIELDS}
    if "selected_model" in changes:
        changes["selected_model"] = _parse_model(changes["selected_model"])
    if "selected_dialect" in changes:
        changes["selected_dialect"] = _parse_dialect(changes["selected_dialect"])
    if "selected_mode" in changes and polish_session.modes.get(changes["selected_mode"]) is None:
        raise ValidationError(f"Unknown mode: {changes['selected_mode']}")
    saved = polish_session.update_settings(**changes)
    return jsonify({"success": saved, "settings": polish_session.settings.to_dict()})


@polish_bp.route("/settings/reset-stats", methods=["POST"])
def reset_stats():
    polish_session = _polish_session()
    saved = polish_session.reset_stats()
    return jsonify({"success": saved, "total_polishes": 0, "total_spent": 0.0})


# API key
@polish_bp.route("/api-key")
def api_key_status():
    polish_session = _polish_session()
    return jsonify(
        {
            "configured": polish_session.has_api_key(),
            "encrypted": polish_session.credentials.is_encrypted(),
            "encryption_available": polish_session.credentials.encryption_available,
        }
    )


@polish_bp.route("/api-key", methods=["PUT"])
def set_api_key():
    payload = request.get_json(silent=True) or {}
    success = _polish_session().set_api_key(payload.get("key", ""))
    return jsonify({"success": success})


@polish_bp.route("/api-key", methods=["DELETE"])
def delete_api_key():
    return jsonify({"success": _polish_session().delete_api_key()})


@polish_bp.route("/api-key/test", methods=["POST"])
def test_api_key():
    payload = request.get_json(silent=True) or {}
    client = _polish_session().completion_client(payload.get("key") or None)
    try:
        valid = client.check_key()
    except CompletionError as exc:
        return jsonify({"valid": False, "error": f"Connection failed: {exc}"}), 502
    return jsonify({"valid": valid})


# Dictionary
@polish_bp.route("/dictionary")
def list_dictionary():
    entries = _polish_session().dictionary()
    return jsonify({"entries": [{"term": e.term, "replacement": e.replacement} for e in entries]})


@polish_bp.route("/dictionary", methods=["POST"])
def add_dictionary_term():
    payload = request.get_json(silent=True) or {}
    entry = _polish_session().add_term(payload.get("term", ""), payload.get("replacement"))
    return jsonify({"success": True, "entry": {"term": entry.term, "replacement": entry.replacement}})


@polish_bp.route("/dictionary", methods=["DELETE"])
def remove_dictionary_term():
    term = request.args.get("term", "")
    if not _polish_session().remove_term(term):
        return jsonify({"error": "Term not found"}), 404
    return jsonify({"success": True})


# Cost
@polish_bp.route("/estimate", methods=["POST"])
def estimate():
    polish_session = _polish_session()
    payload = request.get_json(silent=True) or {}
    text = payload.get("text", "")
    model = _parse_model(payload.get("model") or polish_session.settings.selected_model)
    return jsonify(
        {
        "model": model,
            "estimate": polish_session.cost.pre_submission(text, model),
            "tokens": estimate_tokens(text),
            "words": word_count(text),
        }
    )


# Revisions
def _run_revision(polish_session: PolishSession, service: RevisionService, revision_request: RevisionRequest) -> None:
    document_id = polish_session.document_id
    storage = polish_session.storage

    def on_progress(message: str) -> None:
        storage.update_revision(document_id, {"status": "POLISHING", "progress": message})

    def on_delta(partial: str) -> None:
        storage.update_revision(document_id, {"streaming_output": partial})

    def on_attempt(attempt: int, max_attempts: int) -> None:
        storage.update_revision(
            document_id,
            {"attempt": attempt, "max_attempts": max_attempts, "streaming_output": ""},
        )

    try:
        result = service.revise(
            revision_request, on_progress=on_progress, on_delta=on_delta, on_attempt=on_attempt
        )
    except Exception as exc:
        if not isinstance(exc, PolishError):
            logger.exception("Revision crashed")
        storage.update_revision(
            document_id,
            {"status": "ERROR", "error": str(exc), "progress": f"Failed: {exc}"},
        )
        return

    storage.update_revision(
        document_id,
        {
        "status": "DONE",
        "progress": "Completed",
        "polished": result.polished_text,
        "streaming_output": result.polished_text,
            "cost": result.cost,
            "timestamp": result.timestamp,
            "improvement": improvement_percent(revision_request.source_text, result.polished_text),
            "word_count": word_count(result.polished_text),
            "completion_time": result.timestamp,
        },
    )


@polish_bp.route("/revisions", methods=["POST"])
def start_revision():
    polish_session = _polish_session()
    service = _revision_service()
    payload = request.get_json(silent=True) or {}

    revision_request = service.build_request(
        payload.get("text", ""),
        mode_id=payload.get("mode"),
        dialect=_parse_dialect(payload["dialect"]) if payload.get("dialect") else None,
        model=_parse_model(payload["model"]) if payload.get("model") else None,
        latex_protect=payload.get("latex_protect"),
        stream=payload.get("stream"),
    )
    service.validate(revision_request)

    document_id = polish_session.document_id
    initial_state = {
        "document_id": document_id,
        "status": "STARTING",
        "progress": "Analyzing your text...",
        "attempt": 1,
        "max_attempts": MAX_ATTEMPTS,
        "mode": revision_request.mode_id,
        "model": revision_request.model,
        "dialect": revision_request.dialect,
        "streaming_output": "",
        "polished": "",
        "error": None,
    }
    future = polish_session.worker_pool.submit_revision(
        document_id,
        _run_revision,
        polish_session,
        service,
        revision_request,
        on_accept=lambda: polish_session.storage.create_revision(document_id, initial_state),
    )
    if future is None:
        return jsonify({"error": "A revision is already in progress"}), 409
    return jsonify({"success": True, "document_id": document_id}), 202


@polish_bp.route("/revisions/current")
def get_revision_status():
    polish_session = _polish_session()
    state = polish_session.storage.get_revision(polish_session.document_id)
    if not state:
        return jsonify({"error": "No revision found"}), 404
    state["busy"] = polish_session.worker_pool.is_busy(polish_session.document_id)
    return jsonify(state)


@polish_bp.route("/revisions/current/diff")
def get_revision_diff():
    polish_session = _polish_session()
    entry = polish_session.history.current_entry()
    if entry:
        original, polished = entry.original, entry.polished
    else:
        original, polished = polish_session.original_input, polish_session.polished
    if not polished:
        return jsonify({"error": "No polished text"}), 404

    if not polish_session.settings.diff_highlight:
        return jsonify({"html": str(escape(polished)), "mode": "plain"})

    if original:
        ops, mode = diff(original, polished), "aligned"
    else:
        backup = polish_session.storage.load_draft_backup() or {}
        ops, mode = word_presence_ops(backup.get("text", ""), polished), "word_presence"
    return jsonify(
        {
            "html": str(render(ops)),
        "mode": mode,
            "ops": [{"tag": op.tag.value, "text": op.text} for op in ops],
            "improvement": improvement_percent(original, polished) if original else None,
        }
    )


# History
@polish_bp.route("/history")
def list_history():
    polish_session = _polish_session()
    return jsonify(
        {
            "current": polish_session.history.current,
            "versions": [
                {
                    "index": entry.index,
                    "timestamp": entry.timestamp,
                    "original": entry.original,
                    "polished": entry.polished,
                }
                for entry in polish_session.history.entries()
            ],
        }
    )


@polish_bp.route("/history/<int:index>/restore", methods=["POST"])
def restore_version(index: int):
    polish_session = _polish_session()
    entry = polish_session.history.restore(index)
    if entry is None:
        return jsonify({"success": False, "current": polish_session.history.current})
    polish_session.original_input = entry.original
    polish_session.polished = entry.polished
    return jsonify({"success": True, "current": entry.index, "polished": entry.polished})


@polish_bp.route("/accept", methods=["POST"])
def accept_changes():
    text = _polish_session().accept_changes()
    return jsonify({"success": True, "text": text})


# Draft backup
@polish_bp.route("/draft")
def load_draft():
    data = _polish_session().storage.load_draft_backup()
    if data is None:
        return jsonify({"success": False, "error": "No backup found"}), 404
    return jsonify({"success": True, "data": data})


@polish_bp.route("/draft", methods=["PUT"])
def save_draft():
    payload = request.get_json(silent=True) or {}
    saved = _polish_session().storage.save_draft_backup(payload)
    if not saved:
        raise StorageError("Could not save draft backup")
    return jsonify({"success": True})


@polish_bp.route("/draft", methods=["DELETE"])
def delete_draft():
    return jsonify({"success": _polish_session().storage.delete_draft_backup()})


# Files
@polish_bp.route("/files/open", methods=["POST"])
def open_file():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400
    file = request.files["file"]
    if file.filename == "":
        return jsonify({"success": False, "canceled": True})
    if not _allowed_text_file(file.filename):
        return jsonify({"error": "Invalid file format. Please upload a .txt or .md file"}), 400
    try:
        content = file.read().decode("utf-8")
    except UnicodeDecodeError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400
    _polish_session().new_document(content)
    return jsonify({"success": True, "content": content, "path": secure_filename(file.filename)})


@polish_bp.route("/files/save", methods=["POST"])
def save_file():
    payload = request.get_json(silent=True) or {}
    text = payload.get("text", "")
    if not text.strip():
        raise ValidationError("No content to save")
    filename = secure_filename(payload.get("filename") or "") or "draft.txt"
    return Response(
        text.encode("utf-8"),
        mimetype="text/plain; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# Export
@polish_bp.route("/export/<fmt>", methods=["POST"])
def export(fmt: str):
    polish_session = _polish_session()
    fmt = fmt.lower()
    payload = request.get_json(silent=True) or {}
    polished = payload.get("text") or polish_session.polished
    metadata = ExportMetadata.from_dict(payload.get("metadata"))
    settings = polish_session.settings
    details = {
        "mode": settings.selected_mode,
        "model": settings.selected_model,
        "dialect": settings.selected_dialect,
    }

    try:
        data = export_bytes(
            fmt,
            polished or "",
            original=polish_session.original_input,
            metadata=metadata,
            details=details,
            history=polish_session.history.entries(),
        )
    except ValidationError:
        raise
    except Exception as exc:
        logger.exception("Export as %s failed", fmt)
        return jsonify({"success": False, "error": str(exc)}), 500

    filename = secure_filename(payload.get("filename") or "") or f"polished-text.{fmt}"
    if payload.get("save"):
        exports_dir = current_app.config.get("POLISH_DATA_DIR", DATA_DIR) / "exports"
        result = export_to_path(exports_dir / filename, data)
        status = 200 if result.success else 500
        return jsonify({"success": result.success, "path": result.path, "error": result.error}), status

    return Response(
        data,
        mimetype=EXPORT_FORMATS[fmt],
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
