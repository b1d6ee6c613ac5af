# models/schedule.py
from datetime import date

from db import db


def _every_day():
    return [True] * 7


class Schedule(db.Model):
    __tablename__ = 'schedules'

    id                     = db.Column(db.Integer,  primary_key=True)
    train_id               = db.Column(db.Integer,  db.ForeignKey('trains.id'), nullable=False, index=True)
    departure_location_id  = db.Column(db.Integer,  db.ForeignKey('locations.id'), nullable=False)
    arrival_location_id    = db.Column(db.Integer,  db.ForeignKey('locations.id'), nullable=False)

    scheduled_departure    = db.Column(db.DateTime, nullable=False, index=True)
    scheduled_arrival      = db.Column(db.DateTime, nullable=False)
    actual_departure       = db.Column(db.DateTime, nullable=True)
    actual_arrival         = db.Column(db.DateTime, nullable=True)

    status                 = db.Column(db.String(16), nullable=False, default='scheduled', index=True)
    is_cancelled           = db.Column(db.Boolean,  nullable=False, default=False)

    # 7 booleans, Monday first
    running_days           = db.Column(db.JSON,     nullable=False, default=_every_day)
    effective_start_date   = db.Column(db.Date,     nullable=False, default=date.today)
    effective_end_date     = db.Column(db.Date,     nullable=True)

    # SALOON / FTR only
    short_route_location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=True)
    attach_location_id     = db.Column(db.Integer,  db.ForeignKey('locations.id'), nullable=True)
    attach_train_number    = db.Column(db.String(32), nullable=True)
    attach_time            = db.Column(db.DateTime, nullable=True)
    attach_status          = db.Column(db.String(16), nullable=True)
    detach_location_id     = db.Column(db.Integer,  db.ForeignKey('locations.id'), nullable=True)
    detach_time            = db.Column(db.DateTime, nullable=True)

    # SPIC hand-over window
    taking_over_time       = db.Column(db.DateTime, nullable=True)
    handing_over_time      = db.Column(db.DateTime, nullable=True)

    important_stations     = db.Column(db.JSON,     nullable=False, default=list)
    remarks                = db.Column(db.Text,     nullable=True)

    train              = db.relationship('Train', back_populates='schedules')
    departure_location = db.relationship('Location', foreign_keys=[departure_location_id])
    arrival_location   = db.relationship('Location', foreign_keys=[arrival_location_id])
    attach_location    = db.relationship('Location', foreign_keys=[attach_location_id])
    detach_location    = db.relationship('Location', foreign_keys=[detach_location_id])
