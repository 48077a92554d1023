from __future__ import annotations
import io
from pathlib import Path
from flask import Blueprint, current_app, request, send_file, abort, jsonify
from markupsafe import escape

from .errors import LibraryImportError, RecordNotLaunchable
from .importer import import_bundle, remove_bundle
from .launch import OutputBuffer, StreamTag, launch_profiles_for

bp = Blueprint("wyne", __name__)

def _ctx():
    return current_app.config["WYNE_CONTEXT"]

def _record_or_404(game_id):
    ctx = _ctx()
    ctx.catalog.refresh_if_requested()
    record = ctx.catalog.select(game_id)
    if record is None:
        abort(404)
    return record

def _game_json(record):
    data = record.to_dict()
    data["profiles"] = list(launch_profiles_for(record, _ctx().environment).keys())
    return data

@bp.get("/")
def index():
    ctx = _ctx()
    ctx.catalog.refresh_if_requested()
    games = ctx.catalog.sorted_by_name() if request.args.get("sort") == "name" else list(ctx.catalog)
    return jsonify({
        "title": current_app.config["APP_TITLE"],
        "root": str(ctx.layout.games),
        "games": [_game_json(g) for g in games],
        "skipped": [str(r.record.install_path) for r in ctx.catalog.rejected],
    })

@bp.get("/rescan")
def rescan():
    ctx = _ctx()
    ctx.catalog.scan()
    return jsonify({"ok": True, "count": len(ctx.catalog)})

@bp.get("/games/<game_id>")
def game(game_id):
    return jsonify(_game_json(_record_or_404(game_id)))

@bp.get("/environment")
def environment():
    return jsonify(_ctx().environment.to_dict())

@bp.get("/settings")
def settings():
    return jsonify(_ctx().settings.to_dict())

@bp.post("/settings")
def settings_post():
    store = _ctx().settings
    payload = request.get_json(silent=True) or {}
    known = {d.key for d in store.definitions}
    unknown = [k for k in payload if k not in known]
    if unknown:
        return jsonify({"ok": False, "error": f"Unknown setting(s): {', '.join(unknown)}"}), 400
    for key, value in payload.items():
        store.set(key, value)
    return jsonify({"ok": True, "values": store.values})

@bp.post("/import")
def import_game():
    ctx = _ctx()
    payload = request.get_json(silent=True) or {}
    source = payload.get("path") or request.form.get("path", "")
    if not source:
        return jsonify({"ok": False, "error": "Pick a folder to import."}), 400
    try:
        record = import_bundle(source, ctx.layout, rescan=ctx.rescan)
    except LibraryImportError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    ctx.catalog.refresh_if_requested()
    return jsonify({"ok": True, "game": record.to_dict()})

@bp.post("/remove/<game_id>")
def remove_game(game_id):
    ctx = _ctx()
    record = _record_or_404(game_id)
    try:
        remove_bundle(record, ctx.layout, rescan=ctx.rescan)
    except (LibraryImportError, OSError) as e:
        return jsonify({"ok": False, "error": str(e)}), 500
    ctx.catalog.refresh_if_requested()
    return jsonify({"ok": True})

@bp.post("/launch/<game_id>")
def launch(game_id):
    ctx = _ctx()
    record = _record_or_404(game_id)
    payload = request.get_json(silent=True) or {}
    profile = payload.get("profile") or request.form.get("profile") or None

    output = OutputBuffer()
    try:
        session = ctx.launcher.launch_record(record, output, profile, echo=True)
    except RecordNotLaunchable as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    if session is None:
        lines = [{"stream": t.value, "line": l} for t, l in output.since(0)]
        errors = output.stream(StreamTag.STDERR)
        return jsonify({"ok": False, "error": errors[0] if errors else "Launch failed.", "lines": lines}), 500

    ctx.track(session, output)
    return jsonify({"ok": True, "session": session.to_dict()})

@bp.get("/sessions/<session_id>")
def session_output(session_id):
    since = request.args.get("since", 0, type=int)
    polled = _ctx().poll(session_id, since, current_app.config["OUTPUT_PAGE_SIZE"])
    if polled is None:
        abort(404)
    session, chunk = polled
    return jsonify({
        "session": session.to_dict(),
        "next": since + len(chunk),
        "lines": [{"stream": t.value, "line": l} for t, l in chunk],
    })

@bp.post("/sessions/<session_id>/stop")
def session_stop(session_id):
    session = _ctx().sessions.get(session_id)
    if session is None:
        abort(404)
    code = session.terminate()
    return jsonify({"ok": True, "returncode": code})

@bp.get("/cover/<game_id>")
def cover(game_id):
    record = _record_or_404(game_id)
    if record.cover_image_path:
        p = Path(record.cover_image_path)
        if p.is_file():
            return send_file(p)
    svg = f"""
    <svg xmlns="http://www.w3.org/2000/svg" width="600" height="800">
      <rect width="100%" height="100%" fill="#1f2630"/>
      <text x="50%" y="50%" fill="#e0e6ee" font-size="28" text-anchor="middle" dominant-baseline="middle">
        {escape(record.name[:32])}
      </text>
    </svg>
    """
    return send_file(io.BytesIO(svg.encode("utf-8")), mimetype="image/svg+xml")

@bp.get("/favicon.ico")
def favicon():
    return ("", 204)
