# behavioral_auth/utils/helpers.py
"""
General helper utilities
"""
import uuid
import logging
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict

import numpy as np
from user_agents import parse as parse_user_agent

logger = logging.getLogger(__name__)


def get_user_agent(request_obj) -> str:
    """Get user agent string from request"""
    try:
        return request_obj.headers.get('User-Agent', 'unknown')
    except Exception as e:
        logger.error(f"Error getting user agent: {e}")
        return 'unknown'


def parse_user_agent_details(user_agent_string: str) -> Dict[str, Any]:
    """Parse user agent string into components"""
    try:
        user_agent = parse_user_agent(user_agent_string)

        return {
            'browser': str(user_agent.browser.family),
            'os': str(user_agent.os.family),
            'device': str(user_agent.device.family),
            'is_mobile': user_agent.is_mobile,
            'is_tablet': user_agent.is_tablet,
            'is_pc': user_agent.is_pc,
            'is_touch_capable': user_agent.is_touch_capable,
            'is_bot': user_agent.is_bot
        }
    except Exception as e:
        logger.error(f"User agent parsing error: {e}")
        return {
            'browser': 'unknown',
            'os': 'unknown',
            'device': 'unknown',
            'is_mobile': False,
            'is_tablet': False,
            'is_pc': True,
            'is_touch_capable': False,
            'is_bot': False
        }


def generate_session_id() -> str:
    return uuid.uuid4().hex


def to_serializable(value: Any) -> Any:
    """Convert dataclasses, enums and numpy values into JSON-friendly types"""
    if is_dataclass(value) and not isinstance(value, type):
        data = asdict(value)
        data['type'] = type(value).__name__.lower()
        return to_serializable(data)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(to_serializable(k)): to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_serializable(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value
