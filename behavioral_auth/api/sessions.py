# behavioral_auth/api/sessions.py
"""
Capture session API endpoints
"""
from flask import Blueprint, request, jsonify, current_app
from pydantic import ValidationError
import logging

from behavioral_auth.core.errors import SessionNotFound
from behavioral_auth.models.schemas import BeginCaptureRequest, EventBatchSubmission, RecommendationRequest
from behavioral_auth.utils.helpers import get_user_agent

logger = logging.getLogger(__name__)
sessions_bp = Blueprint('sessions', __name__)


def _service():
    return current_app.extensions['auth_service']


def _validation_error(e: ValidationError):
    details = [{'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']} for err in e.errors()]
    return jsonify({'error': 'Invalid request', 'details': details}), 400


@sessions_bp.route('/sessions', methods=['POST'])
def begin_capture():
    """Start a capture session for a user"""
    try:
        payload = BeginCaptureRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return _validation_error(e)

    try:
        context = payload.context.to_context() if payload.context else None
        user_agent = get_user_agent(request) if request.headers.get('User-Agent') else None
        handle = _service().begin_capture(payload.user_id, context=context, user_agent=user_agent)

        return jsonify({
            'session_id': handle.session_id,
            'modalities': [m.value for m in handle.modalities],
            'duration_ms': handle.plan.base_duration_ms,
            'risk_score': handle.plan.risk_score,
            'analysis_depth': handle.depth.analysis_depth.value
        }), 201

    except Exception as e:
        logger.error(f"Capture start error: {e}")
        return jsonify({'error': 'Failed to start capture'}), 500


@sessions_bp.route('/sessions/<session_id>/events', methods=['POST'])
def submit_events(session_id):
    """Feed a batch of raw samples into a running session"""
    try:
        handle = _service().get_session(session_id)
    except SessionNotFound:
        return jsonify({'error': 'Session not found'}), 404

    try:
        batch = EventBatchSubmission(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return _validation_error(e)

    accepted = handle.publish_many(event.to_sample() for event in batch.events)
    return jsonify({'accepted': accepted, 'rejected': len(batch.events) - accepted}), 202


@sessions_bp.route('/sessions/<session_id>/authenticate', methods=['POST'])
def authenticate(session_id):
    """Finish capture and return the decision"""
    try:
        handle = _service().get_session(session_id)
    except SessionNotFound:
        return jsonify({'error': 'Session not found'}), 404

    decision = _service().end_capture_and_authenticate(handle)
    return jsonify(decision.to_dict()), 200


@sessions_bp.route('/sessions/<session_id>', methods=['DELETE'])
def cancel_capture(session_id):
    try:
        handle = _service().get_session(session_id)
    except SessionNotFound:
        return jsonify({'error': 'Session not found'}), 404

    _service().cancel(handle)
    return jsonify({'session_id': session_id, 'status': 'cancelled'}), 200


@sessions_bp.route('/recommendations', methods=['POST'])
def recommendations():
    """Advisory sampling recommendations for the UI"""
    try:
        payload = RecommendationRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return _validation_error(e)

    context = payload.context.to_context() if payload.context else None
    result = _service().get_recommendations(payload.user_id, context)
    return jsonify(result.to_dict()), 200
