import json
from datetime import datetime
from models.db import db

class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # null for gateway callbacks and CLI jobs
    action = db.Column(db.String(80), nullable=False)  # e.g. BOOKING_SELECT, CLICK_COMPLETE_PAID
    entity = db.Column(db.String(80), nullable=True)   # booking, transaction
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def details(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}

    @classmethod
    def for_entity(cls, entity: str, entity_id):
        return (
            cls.query
            .filter_by(entity=entity, entity_id=str(entity_id))
            .order_by(cls.id.asc())
            .all()
        )
