"""Flask app serving the snapshot to the dashboard front end.

GET /data returns the whole snapshot as JSON. It always answers 200: when
the snapshot is missing or unreadable the empty default snapshot is served.
Reads never quarantine a file; that is left to the reconciler's own load.
Everything else is served from the static directory (index.html, charts).
"""

from __future__ import annotations

from pathlib import Path

from flask import Flask, abort, jsonify, send_from_directory

from prpulse_store.base import BaseStore
from prpulse_store.errors import StoreError
from prpulse_store.models import HistorySnapshot


def create_app(store: BaseStore, static_dir: str | Path = "public") -> Flask:
    static_root = Path(static_dir).resolve()
    app = Flask(__name__, static_folder=str(static_root), static_url_path="")
    app.json.sort_keys = False

    @app.get("/data")
    def data():
        try:
            snapshot = store.load(quarantine=False)
        except StoreError as e:
            app.logger.error("Could not read snapshot: %s", e)
            snapshot = HistorySnapshot()
        return jsonify(snapshot.to_dict())

    @app.get("/")
    def index():
        if not (static_root / "index.html").is_file():
            abort(404)
        return send_from_directory(static_root, "index.html")

    return app
