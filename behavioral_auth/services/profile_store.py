# behavioral_auth/services/profile_store.py
"""
Profile store contract and its in-memory and SQLAlchemy implementations
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Tuple

import numpy as np

from behavioral_auth.core.sampling_controller import UserContextProfile
from behavioral_auth.models.patterns import Modality, Pattern, pattern_type
from behavioral_auth.utils.helpers import to_serializable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateRecord:
    vector: np.ndarray
    updated_at: Optional[datetime] = None
    update_count: int = 0


class ProfileStore(ABC):
    """Persistence collaborator for templates, context profiles and pattern audit logs"""

    @abstractmethod
    def load_template(self, user_id: str, modality: Modality) -> Optional[TemplateRecord]:
        ...

    @abstractmethod
    def save_template(self, user_id: str, modality: Modality, vector: np.ndarray,
                      updated_at: Optional[datetime] = None, update_count: Optional[int] = None):
        ...

    @abstractmethod
    def append_pattern_log(self, user_id: str, modality: Modality, pattern: Pattern, score: float):
        """Fire-and-forget: implementations log failures instead of raising"""

    def append_pattern_logs(self, user_id: str, modality: Modality, patterns: List[Pattern], score: float):
        for pattern in patterns:
            self.append_pattern_log(user_id, modality, pattern, score)

    @abstractmethod
    def load_context_profile(self, user_id: str) -> Optional[UserContextProfile]:
        ...

    @abstractmethod
    def save_context_profile(self, user_id: str, profile: UserContextProfile):
        ...


class InMemoryProfileStore(ProfileStore):
    """Process-local store, mostly for tests and single-node deployments"""

    def __init__(self, max_pattern_logs: int = 10000):
        self._lock = threading.Lock()
        self._templates: Dict[Tuple[str, Modality], TemplateRecord] = {}
        self._profiles: Dict[str, Dict[str, Any]] = {}
        self.pattern_logs = deque(maxlen=max_pattern_logs)

    def load_template(self, user_id, modality):
        with self._lock:
            record = self._templates.get((user_id, Modality(modality)))
        if record is None:
            return None
        return TemplateRecord(record.vector.copy(), record.updated_at, record.update_count)

    def save_template(self, user_id, modality, vector, updated_at=None, update_count=None):
        key = (user_id, Modality(modality))
        with self._lock:
            previous = self._templates.get(key)
            count = update_count if update_count is not None else (previous.update_count + 1 if previous else 1)
            self._templates[key] = TemplateRecord(
                vector=np.array(vector, dtype=float),
                updated_at=updated_at or datetime.now(timezone.utc),
                update_count=count
            )

    def append_pattern_log(self, user_id, modality, pattern, score):
        try:
            self.pattern_logs.append({
                'user_id': user_id,
                'modality': Modality(modality).value,
                'pattern_type': pattern_type(pattern),
                'pattern': to_serializable(pattern),
                'score': float(score),
                'created_at': datetime.now(timezone.utc)
            })
        except Exception as e:
            logger.error(f"Failed to log pattern for user {user_id}: {e}")

    def load_context_profile(self, user_id):
        with self._lock:
            data = self._profiles.get(user_id)
        return UserContextProfile.from_dict(data) if data is not None else None

    def save_context_profile(self, user_id, profile):
        with self._lock:
            self._profiles[user_id] = profile.to_dict()

    def logs_for(self, user_id: str) -> List[Dict[str, Any]]:
        return [entry for entry in list(self.pattern_logs) if entry['user_id'] == user_id]


class SQLAlchemyProfileStore(ProfileStore):
    """Flask-SQLAlchemy backed store; usable from worker threads through the app context"""

    def __init__(self, app=None):
        self.app = app

    def _context(self):
        return self.app.app_context() if self.app is not None else nullcontext()

    def load_template(self, user_id, modality):
        from behavioral_auth.models.database import BiometricTemplate

        with self._context():
            row = BiometricTemplate.query.filter_by(user_id=user_id, modality=Modality(modality).value).first()
            if row is None:
                return None
            return TemplateRecord(
                vector=np.array(row.vector_data, dtype=float),
                updated_at=row.updated_at,
                update_count=row.update_count or 0
            )

    def save_template(self, user_id, modality, vector, updated_at=None, update_count=None):
        from behavioral_auth import db
        from behavioral_auth.models.database import BiometricTemplate

        modality = Modality(modality).value
        with self._context():
            try:
                row = BiometricTemplate.query.filter_by(user_id=user_id, modality=modality).first()
                if row is None:
                    row = BiometricTemplate(user_id=user_id, modality=modality, update_count=0)
                    db.session.add(row)
                row.vector_data = np.asarray(vector, dtype=float).tolist()
                row.updated_at = updated_at or datetime.now(timezone.utc)
                row.update_count = update_count if update_count is not None else (row.update_count or 0) + 1
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to save template for user {user_id}/{modality}: {e}")
                raise

    def append_pattern_log(self, user_id, modality, pattern, score):
        self.append_pattern_logs(user_id, modality, [pattern], score)

    def append_pattern_logs(self, user_id, modality, patterns, score):
        """Write one modality's patterns in a single transaction"""
        from behavioral_auth import db
        from behavioral_auth.models.database import PatternLog

        if not patterns:
            return
        modality = Modality(modality).value
        with self._context():
            try:
                for pattern in patterns:
                    entry = PatternLog(
                        user_id=user_id,
                        modality=modality,
                        pattern_type=pattern_type(pattern),
                        score=float(score)
                    )
                    entry.pattern_data = to_serializable(pattern)
                    db.session.add(entry)
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to log {len(patterns)} {modality} patterns for user {user_id}: {e}")

    def load_context_profile(self, user_id):
        from behavioral_auth.models.database import ContextProfileRecord

        with self._context():
            row = ContextProfileRecord.query.filter_by(user_id=user_id).first()
            if row is None:
                return None
            return UserContextProfile.from_dict(row.profile_data)

    def save_context_profile(self, user_id, profile):
        from behavioral_auth import db
        from behavioral_auth.models.database import ContextProfileRecord

        with self._context():
            try:
                row = ContextProfileRecord.query.filter_by(user_id=user_id).first()
                if row is None:
                    row = ContextProfileRecord(user_id=user_id)
                    db.session.add(row)
                row.profile_data = profile.to_dict()
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to save context profile for user {user_id}: {e}")
                raise
