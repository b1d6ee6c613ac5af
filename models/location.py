from __future__ import annotations
from db import db

class Location(db.Model):
    __tablename__ = "locations"

    id   = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(10), nullable=False, unique=True, index=True)
