# behavioral_auth/models/database.py
"""
SQLAlchemy models backing the profile store
"""
import json
from datetime import datetime, timezone
from sqlalchemy.ext.hybrid import hybrid_property
from behavioral_auth import db


def _utcnow():
    return datetime.now(timezone.utc)


class BiometricTemplate(db.Model):
    """Reference feature vector for one user and modality"""
    __tablename__ = 'biometric_templates'
    __table_args__ = (db.UniqueConstraint('user_id', 'modality', name='uq_template_user_modality'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    modality = db.Column(db.String(32), nullable=False)
    vector = db.Column(db.Text, nullable=False)  # JSON
    dimension = db.Column(db.Integer, nullable=False)
    update_count = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @hybrid_property
    def vector_data(self):
        """Parse template vector JSON"""
        if self.vector:
            return json.loads(self.vector)
        return []

    @vector_data.setter
    def vector_data(self, value):
        """Set template vector as JSON"""
        values = [float(v) for v in value]
        self.vector = json.dumps(values)
        self.dimension = len(values)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'modality': self.modality,
            'dimension': self.dimension,
            'update_count': self.update_count,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


class ContextProfileRecord(db.Model):
    """Persisted habits used by the sampling controller"""
    __tablename__ = 'context_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    profile = db.Column(db.Text, nullable=False)  # JSON
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @hybrid_property
    def profile_data(self):
        if self.profile:
            return json.loads(self.profile)
        return {}

    @profile_data.setter
    def profile_data(self, value):
        self.profile = json.dumps(value) if value else '{}'


class PatternLog(db.Model):
    """Audit trail of scored patterns"""
    __tablename__ = 'pattern_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    modality = db.Column(db.String(32), nullable=False)
    pattern_type = db.Column(db.String(32), nullable=False)
    pattern = db.Column(db.Text, nullable=True)  # JSON
    score = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    @hybrid_property
    def pattern_data(self):
        if self.pattern:
            return json.loads(self.pattern)
        return {}

    @pattern_data.setter
    def pattern_data(self, value):
        self.pattern = json.dumps(value) if value else None

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'modality': self.modality,
            'pattern_type': self.pattern_type,
            'score': self.score,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


def init_db():
    """Initialize database with tables"""
    db.create_all()
