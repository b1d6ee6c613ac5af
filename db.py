# db.py
from __future__ import annotations

import time

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

# one shared instance each, bound to the app in create_app()
db = SQLAlchemy()
migrate = Migrate()


def connect_with_retry(app, retries: int | None = None, delay: float | None = None) -> None:
    """
    Verify the database is reachable, retrying a few times before giving up.
    Raises the last OperationalError once the attempts are exhausted.
    """
    retries = app.config.get("DB_CONNECT_RETRIES", 5) if retries is None else retries
    delay = app.config.get("DB_CONNECT_RETRY_DELAY", 5) if delay is None else delay

    with app.app_context():
        attempt = 0
        while True:
            try:
                db.session.execute(text("SELECT 1"))
                app.logger.info("[db] connection established")
                return
            except OperationalError as e:
                db.session.rollback()
                db.session.remove()
                db.engine.dispose()
                if attempt >= retries:
                    app.logger.error("[db] giving up after %d attempts: %s", attempt + 1, e)
                    raise
                attempt += 1
                app.logger.warning(
                    "[db] connection failed, retrying in %ss (%d attempts remaining)",
                    delay, retries - attempt + 1,
                )
                time.sleep(delay)


def database_ok() -> bool:
    try:
        db.session.execute(text("SELECT 1"))
        return True
    except OperationalError:
        db.session.rollback()
        return False
