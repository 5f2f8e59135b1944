"""
Services package initialization
"""
from .auth_service import ContinuousAuthenticationService, AuthDecision, SessionHandle
from .profile_store import ProfileStore, InMemoryProfileStore, SQLAlchemyProfileStore

__all__ = [
    'ContinuousAuthenticationService', 'AuthDecision', 'SessionHandle',
    'ProfileStore', 'InMemoryProfileStore', 'SQLAlchemyProfileStore'
]
