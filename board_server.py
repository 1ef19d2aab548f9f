#!/usr/bin/env python3
"""
PromptBoard Server
------------------
JSON API for the kanban board, snapshot backups and prompt generation,
backed by the SQLite store in promptboard/.

Usage:
    python board_server.py --port 3000
    python board_server.py --config ./promptboard.yaml --db ./board.db

API:
    GET  /api/backup?token=SECRET               → trigger a backup
    GET  /api/backup?token=SECRET&action=list   → { backups, count }
    POST /api/generate-prompt                   → { questions } | { prompt }
    GET  /api/columns                           → board columns in display order
    GET|POST /api/projects                      → list / create projects
    GET|PUT|DELETE /api/projects/<id>           → read / rename / delete (cascades)
    GET|POST|PUT /api/projects/<id>/tasks       → list / add / save reordered list
    POST /api/projects/<id>/tasks/move          → drag-and-drop move
    PUT|DELETE /api/tasks/<id>                  → edit / delete a task
    POST /api/tasks/<id>/start                  → move a task to In Progress
    GET  /health
"""

import argparse
import hmac
import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from promptboard.backup import BackupService
from promptboard.blobstore import LocalBlobStore
from promptboard.board import Board
from promptboard.config import Config, setup_logging
from promptboard.errors import (
    ConfigError,
    PromptBoardError,
    RecordIntegrityError,
    RecordNotFound,
    RecordValidationError,
)
from promptboard.llm import build_chain
from promptboard.prompt_generator import ClarifyingQuestion, PromptGenerator, PromptParameters
from promptboard.schema import COLUMNS, Attachment, ColumnId, Project, Task, make_id, utc_now
from promptboard.store import BoardStore

logger = logging.getLogger("promptboard.server")


def error_response(e: Exception):
    """Map an exception onto a JSON error envelope and status code."""
    if isinstance(e, RecordNotFound):
        code = 404
    elif isinstance(e, (RecordValidationError, ValueError)):
        code = 400
    elif isinstance(e, RecordIntegrityError):
        code = 409
    else:
        code = 500
        logger.error(f"{request.method} {request.path} failed: {e}")
    return jsonify({"error": str(e)}), code


def create_app(cfg: Config = None, store: BoardStore = None, blobs: LocalBlobStore = None,
               generator: PromptGenerator = None) -> Flask:
    """Build the app around explicitly constructed collaborators."""
    cfg = cfg or Config.load()
    store = store or BoardStore(cfg.db_path)
    blobs = blobs or LocalBlobStore(cfg.backup_dir)
    generator = generator or PromptGenerator(build_chain(cfg))
    backups = BackupService(store, blobs, max_backups=cfg.max_backups)

    app = Flask(__name__)

    @app.errorhandler(Exception)
    def unhandled(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({"error": str(e) or "Internal server error"}), 500

    def backup_authorized() -> bool:
        if not cfg.backup_secret:
            return False
        token = request.args.get("token", "")
        return hmac.compare_digest(token.encode(), cfg.backup_secret.encode())

    def json_body() -> dict:
        data = request.get_json(force=True, silent=True)
        return data if isinstance(data, dict) else {}

    # ── Backup ───────────────────────────────────────────────────────────────

    @app.route("/api/backup", methods=["GET"])
    def api_backup():
        if not backup_authorized():
            return jsonify({"error": "Unauthorized"}), 401

        try:
            if request.args.get("action") == "list":
                items = [b.to_dict() for b in backups.list_backups()]
                return jsonify({"backups": items, "count": len(items)})

            metadata = backups.create_backup()
            if metadata.skipped:
                return jsonify({"success": True, "skipped": True, "reason": metadata.reason})
            return jsonify({"success": True, "backup": metadata.to_dict()})
        except PromptBoardError as e:
            logger.error(f"Backup error: {e}")
            return jsonify({"error": str(e)}), 500

    # ── Prompt generation ────────────────────────────────────────────────────

    @app.route("/api/generate-prompt", methods=["POST"])
    def api_generate_prompt():
        data = json_body()
        title = data.get("title") or ""
        if not isinstance(title, str) or not title.strip():
            return jsonify({"error": "Title is required"}), 400
        mode = data.get("mode")
        if mode not in ("questions", "generate"):
            return jsonify({"error": "Invalid mode"}), 400

        try:
            attachments = [Attachment.from_dict(a) for a in data.get("attachments") or []]
        except RecordValidationError as e:
            return jsonify({"error": str(e)}), 400
        description = data.get("description") or ""

        try:
            if mode == "questions":
                questions = generator.generate_questions(title, description, attachments)
                return jsonify({"questions": [q.to_dict() for q in questions]})

            questions = [ClarifyingQuestion.from_dict(q) for q in data.get("questions") or []
                         if isinstance(q, dict)]
            prompt = generator.generate_prompt(
                title, description, attachments,
                PromptParameters.from_dict(data.get("parameters")), questions,
            )
            task_id = data.get("taskId")
            if task_id:
                task = store.get_task(task_id)
                if task is None:
                    raise RecordNotFound(f"Task not found: {task_id}")
                Board(store, task.project_id).set_prompt(task_id, prompt)
            return jsonify({"prompt": prompt})
        except ConfigError as e:
            logger.error(f"Prompt generation unavailable: {e}")
            return jsonify({"error": str(e)}), 500
        except PromptBoardError as e:
            return error_response(e)

    # ── Board ────────────────────────────────────────────────────────────────

    @app.route("/api/columns")
    def api_columns():
        return jsonify({"columns": [{"id": c.id.value, "title": c.title} for c in COLUMNS]})

    @app.route("/api/projects", methods=["GET"])
    def api_list_projects():
        try:
            projects = store.list_projects()
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"projects": [p.to_dict() for p in projects], "count": len(projects)})

    @app.route("/api/projects", methods=["POST"])
    def api_create_project():
        name = json_body().get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            return jsonify({"error": "name is required"}), 400
        now = utc_now()
        project = Project(id=make_id("project"), name=name, created_at=now, updated_at=now)
        try:
            store.upsert_project(project)
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"project": project.to_dict()}), 201

    @app.route("/api/projects/<project_id>", methods=["GET"])
    def api_get_project(project_id):
        try:
            board = Board(store, project_id)
            tasks = board.tasks()
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"project": board.project.to_dict(), "taskCount": len(tasks)})

    @app.route("/api/projects/<project_id>", methods=["PUT"])
    def api_rename_project(project_id):
        name = json_body().get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            return jsonify({"error": "name is required"}), 400
        try:
            project = store.rename_project(project_id, name)
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"project": project.to_dict()})

    @app.route("/api/projects/<project_id>", methods=["DELETE"])
    def api_delete_project(project_id):
        try:
            deleted = store.delete_project(project_id)
        except PromptBoardError as e:
            return error_response(e)
        if not deleted:
            return jsonify({"error": "Project not found"}), 404
        return jsonify({"deleted": project_id})

    @app.route("/api/projects/<project_id>/tasks", methods=["GET"])
    def api_list_tasks(project_id):
        status = request.args.get("status")
        try:
            board = Board(store, project_id)
            tasks = board.column(ColumnId.parse(status)) if status else board.tasks()
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"tasks": [t.to_dict() for t in tasks], "count": len(tasks)})

    @app.route("/api/projects/<project_id>/tasks", methods=["POST"])
    def api_add_task(project_id):
        data = json_body()
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            return jsonify({"error": "title is required"}), 400
        try:
            task = Board(store, project_id).add_task(data)
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"task": task.to_dict()}), 201

    @app.route("/api/projects/<project_id>/tasks", methods=["PUT"])
    def api_save_tasks(project_id):
        """Persist a reordered board: body { tasks: [...] } in display order."""
        raw = json_body().get("tasks")
        if not isinstance(raw, list):
            return jsonify({"error": "tasks must be a list"}), 400
        try:
            board = Board(store, project_id)
            plan = board.save([Task.from_dict(t) for t in raw])
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({
            "upserted": [t.id for t in plan.upserts],
            "deleted": plan.deletes,
            "warning": plan.warning,
        })

    @app.route("/api/projects/<project_id>/tasks/move", methods=["POST"])
    def api_move_task(project_id):
        data = json_body()
        try:
            dest = data.get("destination")
            plan = Board(store, project_id).move(
                task_id=data["taskId"],
                source_column=ColumnId.parse(data["sourceColumn"]),
                source_index=int(data["sourceIndex"]),
                dest_column=ColumnId.parse(dest["column"]) if dest else None,
                dest_index=int(dest["index"]) if dest else 0,
            )
        except (KeyError, TypeError) as e:
            return jsonify({"error": f"Invalid move payload: {e}"}), 400
        except (PromptBoardError, ValueError) as e:
            return error_response(e)
        return jsonify({
            "upserted": [t.id for t in plan.upserts],
            "deleted": plan.deletes,
        })

    def _board_for_task(task_id: str) -> Board:
        task = store.get_task(task_id)
        if task is None:
            raise RecordNotFound(f"Task not found: {task_id}")
        return Board(store, task.project_id)

    @app.route("/api/tasks/<task_id>", methods=["PUT"])
    def api_update_task(task_id):
        try:
            task = _board_for_task(task_id).update_task(task_id, json_body())
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    def api_delete_task(task_id):
        try:
            _board_for_task(task_id).delete_task(task_id)
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"deleted": task_id})

    @app.route("/api/tasks/<task_id>/start", methods=["POST"])
    def api_start_task(task_id):
        try:
            task = _board_for_task(task_id).start_task(task_id)
        except PromptBoardError as e:
            return error_response(e)
        return jsonify({"task": task.to_dict()})

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": store.db_path})

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="PromptBoard Server")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to board.db (overrides PROMPTBOARD_DB)")
    parser.add_argument("--config", help="Path to promptboard.yaml")
    args = parser.parse_args()

    setup_logging()
    cfg = Config.load(args.config)
    if args.db:
        cfg.db_path = args.db
    host = args.host or cfg.host
    port = args.port or cfg.port

    if not cfg.backup_secret:
        logger.warning("BACKUP_SECRET not set: /api/backup will reject every request")

    print(f"""
╔═══════════════════════════════════════╗
║  PromptBoard Server                   ║
╠═══════════════════════════════════════╣
║  URL:     http://{host}:{port:<17}║
║  DB:      {cfg.db_path:<28}║
║  Backups: {cfg.backup_dir:<28}║
╚═══════════════════════════════════════╝
""")

    app = create_app(cfg)
    app.run(host=host, port=port, debug=False, threaded=True)
