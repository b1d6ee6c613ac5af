# app.py
from __future__ import annotations

import os
import time
from flask import Flask, jsonify, request, Response
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from flask_cors import CORS
from sqlalchemy import event

from config import CONFIGS, Config
from db import db, migrate, connect_with_retry, database_ok
from realtime import socketio

# Ensure models are imported so Flask-Migrate sees them
from models.user import User
from models.train import Train
from models.location import Location
from models.schedule import Schedule

# Blueprints
from routes.auth import auth_bp
from routes.schedules import schedules_bp
from routes.trains import trains_bp
from routes.locations import locations_bp
from routes.analytics import analytics_bp
from routes.admin import admin_bp

from services.schedule_rules import MalformedInput
from services.status_flow import InvalidTransition


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)

    # Respect reverse proxy headers (scheme / host) for correct URL generation
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # type: ignore[arg-type]

    # Load config + init extensions
    if config_object is None:
        config_object = CONFIGS.get(os.environ.get("APP_CONFIG", "development"), Config)
    app.config.from_object(config_object)

    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(app, cors_allowed_origins=app.config["CORS_ORIGINS"])

    with app.app_context():
        # Naive DATETIME columns hold UTC
        if db.engine.dialect.name == "mysql":
            @event.listens_for(db.engine, "connect")
            def _set_utc(dbapi_conn, _):
                cur = dbapi_conn.cursor()
                try:
                    cur.execute("SET time_zone = '+00:00'")
                finally:
                    cur.close()

        # Touch models so Alembic/Flask-Migrate registers them
        _ = (User, Train, Location, Schedule)

    if app.config.get("DB_CONNECT_ON_START"):
        connect_with_retry(app)

    # Health check
    @app.route("/api/health")
    def health_check():
        if database_ok():
            return jsonify(status="healthy", database="connected"), 200
        return jsonify(status="unhealthy", database="disconnected"), 503

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify(error="Not Found", path=request.path), 404

    @app.errorhandler(MalformedInput)
    def handle_malformed(e: MalformedInput):
        app.logger.warning("[app] malformed input on %s: %s", request.path, e)
        return jsonify(error="Malformed input", details=str(e)), 400

    @app.errorhandler(InvalidTransition)
    def handle_transition(e: InvalidTransition):
        db.session.rollback()
        return jsonify(e.to_dict()), 409

    # Global error handler
    @app.errorhandler(Exception)
    def handle_any_error(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify(error=e.description), e.code
        db.session.rollback()
        app.logger.exception("[app] unhandled error on %s %s", request.method, request.path)
        return jsonify(error=str(e)), 500

    # --- Debug: list routes ---
    @app.route("/__routes")
    def __routes():
        lines = []
        for rule in app.url_map.iter_rules():
            methods = ",".join(sorted(m for m in rule.methods if m not in {"HEAD", "OPTIONS"}))
            lines.append(f"{methods:10s} {rule.rule}")
        lines.sort()
        return Response("\n".join(lines), mimetype="text/plain")

    @app.route("/__whoami")
    def __whoami():
        return jsonify(
            name="railway-ops backend",
            pid=os.getpid(),
            started_at=int(time.time())
        )

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(schedules_bp)
    app.register_blueprint(trains_bp)
    app.register_blueprint(locations_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(admin_bp)

    # CLI: create tables and the initial admin account
    @app.cli.command("init-db")
    def init_db_cmd():
        from seed import seed_admin
        db.create_all()
        seed_admin()
        print("Database initialised.")

    return app


# Optional local entrypoint (useful for quick dev runs)
if __name__ == "__main__":
    app = create_app()
    # Socket.IO server (falls back to Werkzeug in dev)
    socketio.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
        allow_unsafe_werkzeug=True,  # dev convenience
        debug=bool(os.environ.get("FLASK_DEBUG", "")),
    )
