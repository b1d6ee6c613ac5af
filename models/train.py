from __future__ import annotations
from db import db

class Train(db.Model):
    __tablename__ = "trains"

    id                  = db.Column(db.Integer, primary_key=True)
    train_number        = db.Column(db.String(32), nullable=False, unique=True, index=True)
    description         = db.Column(db.String(255), nullable=True)
    type                = db.Column(db.String(32), nullable=False, default="local")
    max_speed           = db.Column(db.Integer, nullable=True)
    passenger_capacity  = db.Column(db.Integer, nullable=True)
    cargo_capacity_tons = db.Column(db.Integer, nullable=True)
    priority_level      = db.Column(db.Integer, nullable=True)
    features            = db.Column(db.JSON, nullable=False, default=list)

    schedules = db.relationship("Schedule", back_populates="train")
