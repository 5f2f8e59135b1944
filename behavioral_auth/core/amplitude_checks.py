# behavioral_auth/core/amplitude_checks.py
"""
Amplitude heuristics flagging input that does not look hand-made
"""
import logging
from typing import Dict, List, Sequence, Any

import numpy as np

from behavioral_auth.models.patterns import KeystrokePattern, Pattern

logger = logging.getLogger(__name__)

MACHINE_TYPING = "machine_typing"
PASTE_BURST = "paste_burst"


def _timings(patterns: Sequence[Pattern]):
    timings = []
    for pattern in patterns:
        if isinstance(pattern, KeystrokePattern):
            timings.extend(pattern.timings)
    return sorted(timings, key=lambda t: t.press_time)


def is_machine_typing(patterns: Sequence[Pattern], config: Dict[str, Any] = None) -> bool:
    """Near-constant dwell times across most consecutive keys"""
    config = config or {}
    min_keys = config.get('min_keys', 10)
    max_diff_ms = config.get('machine_dwell_diff_ms', 15)
    ratio = config.get('machine_uniform_ratio', 0.8)

    timings = _timings(patterns)
    if len(timings) < min_keys:
        return False
    durations = np.array([t.duration for t in timings], dtype=float)
    diffs = np.abs(np.diff(durations))
    return bool(np.mean(diffs < max_diff_ms) > ratio)


def is_paste_burst(patterns: Sequence[Pattern], config: Dict[str, Any] = None) -> bool:
    """Typing faster than a human plausibly can"""
    config = config or {}
    min_keys = config.get('min_keys', 10)
    max_wpm = config.get('max_human_wpm', 300)

    timings = _timings(patterns)
    if len(timings) < min_keys:
        return False
    span_ms = timings[-1].press_time - timings[0].press_time
    if span_ms <= 0:
        return True
    wpm = (len(timings) / 5.0) / (span_ms / 60000.0)
    return wpm > max_wpm


def amplitude_flags(patterns: Sequence[Pattern], config: Dict[str, Any] = None) -> List[str]:
    flags = []
    if is_machine_typing(patterns, config):
        flags.append(MACHINE_TYPING)
    if is_paste_burst(patterns, config):
        flags.append(PASTE_BURST)
    if flags:
        logger.warning(f"Amplitude heuristics flagged input: {', '.join(flags)}")
    return flags
