#!/usr/bin/env python3
# seed.py

from flask import current_app
from db import db
from models.user import User


def seed_admin(username: str | None = None, password: str | None = None) -> bool:
    """
    Creates the initial admin user if it does not exist yet.

    Credentials come from SEED_ADMIN_USERNAME / SEED_ADMIN_PASSWORD. Safe to
    run repeatedly; an existing account is left untouched. Must run inside an
    app context. Returns True when a user was created.
    """
    username = username or current_app.config["SEED_ADMIN_USERNAME"]
    password = password or current_app.config["SEED_ADMIN_PASSWORD"]

    if User.query.filter_by(username=username).first():
        current_app.logger.info("[seed] admin `%s` already present", username)
        return False

    user = User(username=username, role="admin")
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("[seed] created admin `%s`", username)
    return True


if __name__ == "__main__":
    from app import create_app

    app = create_app()
    with app.app_context():
        db.create_all()
        created = seed_admin()
        print("✅ Seeded the admin account." if created else "ℹ️ Admin account already exists.")
