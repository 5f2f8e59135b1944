"""
Models package initialization
"""
from .patterns import (
    Modality, SampleKind, RawSample, Point, KeyTiming, KeystrokePattern,
    Movement, Click, Scroll, Drag, Tap, Swipe, Pinch, Pattern
)
from .weights import ModelWeights

__all__ = [
    'Modality', 'SampleKind', 'RawSample', 'Point', 'KeyTiming', 'KeystrokePattern',
    'Movement', 'Click', 'Scroll', 'Drag', 'Tap', 'Swipe', 'Pinch', 'Pattern', 'ModelWeights'
]
