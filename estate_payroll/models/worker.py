from datetime import datetime
from estate_payroll.extensions import db
from estate_payroll.services.deductions.rate_table import nationality_class


class Worker(db.Model):
    __tablename__ = "workers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    identity_number = db.Column(db.String(40))
    nationality = db.Column(db.String(40))          # free text: "Malaysian", "Indonesian", "local"...
    worker_type = db.Column(db.String(30))          # e.g. harvester, sprayer
    gender = db.Column(db.String(10))
    hired_date = db.Column(db.Date)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_workers_identity", "identity_number"),
    )

    @property
    def nationality_class(self) -> str:
        return nationality_class(self.nationality)
