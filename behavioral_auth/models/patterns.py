# behavioral_auth/models/patterns.py
"""
Raw interaction samples and the segmented behavioral patterns built from them
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class Modality(str, Enum):
    KEYSTROKE = "keystroke"
    POINTER = "pointer"
    TOUCH = "touch"
    BEHAVIORAL = "behavioral"


CAPTURE_MODALITIES = (Modality.KEYSTROKE, Modality.POINTER, Modality.TOUCH)


class SampleKind(str, Enum):
    KEYDOWN = "keydown"
    KEYUP = "keyup"
    MOVE = "move"
    DOWN = "down"
    UP = "up"
    SCROLL = "scroll"
    TOUCHSTART = "touchstart"
    TOUCHMOVE = "touchmove"
    TOUCHEND = "touchend"
    TOUCHCANCEL = "touchcancel"


@dataclass(frozen=True)
class RawSample:
    """One hardware event, timestamps in milliseconds"""
    modality: Modality
    kind: SampleKind
    timestamp: float
    key: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    pressure: Optional[float] = None
    button: Optional[int] = None
    touch_id: Optional[int] = None
    delta_x: float = 0.0
    delta_y: float = 0.0
    radius_x: float = 0.0
    radius_y: float = 0.0


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    t: float
    pressure: float = 0.0
    area: float = 0.0

    def distance_to(self, other: 'Point') -> float:
        return math.hypot(other.x - self.x, other.y - self.y)


# Keystroke

@dataclass(frozen=True)
class KeyTiming:
    key: str
    press_time: float
    release_time: float

    @property
    def duration(self) -> float:
        return self.release_time - self.press_time


@dataclass(frozen=True)
class KeystrokePattern:
    start_time: float
    end_time: float
    timings: Tuple[KeyTiming, ...] = ()

    modality = Modality.KEYSTROKE


# Pointer

@dataclass(frozen=True)
class Movement:
    start_time: float
    end_time: float
    points: Tuple[Point, ...]
    velocities: Tuple[float, ...]
    accelerations: Tuple[float, ...]
    jerks: Tuple[float, ...]
    total_distance: float
    curvature: float
    straightness: float
    direction_changes: int
    pauses: int

    modality = Modality.POINTER


@dataclass(frozen=True)
class Click:
    start_time: float
    end_time: float
    x: float
    y: float
    button: int
    dwell: float
    click_count: int = 1
    pre_movement: Tuple[Point, ...] = ()
    post_movement: Tuple[Point, ...] = ()

    modality = Modality.POINTER


@dataclass(frozen=True)
class Scroll:
    start_time: float
    end_time: float
    direction: str
    delta: float
    speed: float

    modality = Modality.POINTER


@dataclass(frozen=True)
class Drag:
    start_time: float
    end_time: float
    start: Point
    end: Point
    distance: float
    velocity: float
    button: int = 0

    modality = Modality.POINTER


# Touch

@dataclass(frozen=True)
class Tap:
    start_time: float
    end_time: float
    x: float
    y: float
    dwell: float
    pressure_max: float
    pressure_mean: float
    contact_area: float

    modality = Modality.TOUCH


@dataclass(frozen=True)
class Swipe:
    start_time: float
    end_time: float
    direction: str
    distance: float
    velocity: float
    curvature: float
    acceleration: float

    modality = Modality.TOUCH


@dataclass(frozen=True)
class Pinch:
    start_time: float
    end_time: float
    scale_change: float
    rotation: float

    modality = Modality.TOUCH


Pattern = Union[KeystrokePattern, Movement, Click, Scroll, Drag, Tap, Swipe, Pinch]


def pattern_type(pattern: Pattern) -> str:
    """Lower-case variant tag used in logs and pattern records"""
    return type(pattern).__name__.lower()
