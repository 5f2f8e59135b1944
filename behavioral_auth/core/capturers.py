# behavioral_auth/core/capturers.py
"""
Modality capturers that drain a bounded input channel and segment raw samples
into keystroke, pointer and touch patterns
"""
import math
import queue
import threading
import time
import logging
from enum import Enum
from typing import Dict, List, Optional, Any

import numpy as np

from behavioral_auth.models.patterns import (
    Modality, SampleKind, RawSample, Point, KeyTiming, KeystrokePattern,
    Movement, Click, Scroll, Drag, Tap, Swipe, Pinch, Pattern
)

logger = logging.getLogger(__name__)

_CLOSED = object()


class CaptureState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    STOPPED = "stopped"


class InputChannel:
    """Bounded producer/consumer channel of raw samples for one modality"""

    def __init__(self, modality: Modality, maxsize: int = 2048):
        self.modality = modality
        self._queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, sample: RawSample) -> bool:
        """Enqueue a sample without blocking; False if full or closed"""
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(sample)
            return True
        except queue.Full:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"{self.modality.value} channel full, {self.dropped} samples dropped")
            return False

    def close(self):
        """Mark the channel closed and wake the consumer"""
        if self._closed.is_set():
            return
        self._closed.set()
        while True:
            try:
                self._queue.put(_CLOSED, timeout=0.05)
                return
            except queue.Full:
                # Make room for the sentinel; the consumer is gone or slow
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float):
        """Next sample, None on timeout, or the close sentinel"""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class BaseCapturer:
    """Common capture loop and state machine"""

    modality: Modality = None

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.state = CaptureState.IDLE
        self.samples_seen = 0
        self._patterns: List[Pattern] = []
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def start(self):
        """Reset buffers and begin capturing"""
        with self._lock:
            self._patterns = []
            self.samples_seen = 0
            self._cancelled.clear()
            self._reset()
            self.state = CaptureState.CAPTURING

    def run(self, channel: InputChannel, duration_ms: float,
            cancel_event: Optional[threading.Event] = None) -> CaptureState:
        """Drain the channel until the timer elapses, it closes, or capture is cancelled"""
        if self.state != CaptureState.CAPTURING:
            self.start()

        deadline = time.monotonic() + duration_ms / 1000.0
        poll = self.config.get('poll_interval_s', 0.05)

        while not self._cancelled.is_set():
            if cancel_event is not None and cancel_event.is_set():
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"{self.modality.value} capture timer elapsed")
                break

            item = channel.get(timeout=min(poll, remaining))
            if item is None:
                continue
            if item is _CLOSED:
                break
            self.feed(item)

        with self._lock:
            if self.state == CaptureState.CAPTURING:
                self.state = CaptureState.STOPPED
        return self.state

    def feed(self, sample: RawSample):
        """Process one sample"""
        if sample.modality != self.modality:
            logger.debug(f"Ignoring {sample.modality} sample in {self.modality.value} capturer")
            return
        with self._lock:
            if self.state != CaptureState.CAPTURING:
                return
            self.samples_seen += 1
            self._handle(sample)

    def stop(self) -> List[Pattern]:
        """Flush in-flight patterns and return everything captured, ordered by start time"""
        with self._lock:
            if self.state == CaptureState.IDLE:
                return []
            self._flush()
            patterns = sorted(self._patterns, key=lambda p: (p.start_time, p.end_time))
            self._patterns = []
            self._reset()
            self.state = CaptureState.IDLE
        return patterns

    def cancel(self):
        """Stop immediately and discard every buffer"""
        self._cancelled.set()
        with self._lock:
            self._patterns = []
            self._reset()
            self.state = CaptureState.IDLE

    def _emit(self, pattern: Pattern):
        if pattern.end_time < pattern.start_time:
            logger.warning(f"Dropping {type(pattern).__name__} with end before start")
            return
        self._patterns.append(pattern)

    def _reset(self):
        raise NotImplementedError

    def _handle(self, sample: RawSample):
        raise NotImplementedError

    def _flush(self):
        raise NotImplementedError


class KeystrokeCapturer(BaseCapturer):
    """Pairs key presses with releases and groups them into typing windows"""

    modality = Modality.KEYSTROKE

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.window_gap_ms = self.config.get('keystroke_window_gap_ms', 2000)
        self.min_keystrokes = self.config.get('min_keystrokes_per_window', 5)
        self._reset()

    def _reset(self):
        self._pressed: Dict[str, float] = {}
        self._window: List[KeyTiming] = []
        self._last_event_time: Optional[float] = None

    def _handle(self, sample: RawSample):
        key = sample.key or 'Unidentified'

        if (self._last_event_time is not None and not self._pressed
                and sample.timestamp - self._last_event_time > self.window_gap_ms):
            self._close_window(final=False)
        self._last_event_time = sample.timestamp

        if sample.kind == SampleKind.KEYDOWN:
            # Auto-repeat keeps the first press time
            self._pressed.setdefault(key, sample.timestamp)
        elif sample.kind == SampleKind.KEYUP:
            press_time = self._pressed.pop(key, None)
            if press_time is None:
                return
            self._window.append(KeyTiming(key=key, press_time=press_time,
                                          release_time=max(press_time, sample.timestamp)))

    def _close_window(self, final: bool):
        """Emit the current window, or carry it forward when it is too short"""
        if not self._window:
            return
        if len(self._window) < self.min_keystrokes and not final:
            return
        timings = tuple(sorted(self._window, key=lambda t: t.press_time))
        self._emit(KeystrokePattern(
            start_time=timings[0].press_time,
            end_time=max(t.release_time for t in timings),
            timings=timings
        ))
        self._window = []

    def _flush(self):
        if self._pressed:
            logger.debug(f"Dropping {len(self._pressed)} unreleased keys at stop")
            self._pressed = {}
        self._close_window(final=True)


def build_movement(points: List[Point]) -> Movement:
    """Kinematics for a pointer path"""
    velocities = []
    for i in range(1, len(points)):
        dt = points[i].t - points[i - 1].t
        if dt > 0:
            velocities.append(points[i - 1].distance_to(points[i]) / dt)

    accelerations = []
    for i in range(1, len(velocities)):
        dt = points[i + 1].t - points[i].t
        if dt > 0:
            accelerations.append((velocities[i] - velocities[i - 1]) / dt)

    jerks = []
    for i in range(1, len(accelerations)):
        dt = points[i + 2].t - points[i + 1].t
        if dt > 0:
            jerks.append((accelerations[i] - accelerations[i - 1]) / dt)

    total_distance = sum(points[i - 1].distance_to(points[i]) for i in range(1, len(points)))
    straight_distance = points[0].distance_to(points[-1])

    avg_velocity = float(np.mean(velocities)) if velocities else 0.0
    pauses = sum(1 for v in velocities if v < 0.1 * avg_velocity)

    direction_changes = 0
    for i in range(2, len(points)):
        a1 = math.atan2(points[i - 1].y - points[i - 2].y, points[i - 1].x - points[i - 2].x)
        a2 = math.atan2(points[i].y - points[i - 1].y, points[i].x - points[i - 1].x)
        diff = abs(a2 - a1)
        if diff > math.pi:
            diff = 2 * math.pi - diff
        if diff > math.pi / 4:
            direction_changes += 1

    return Movement(
        start_time=points[0].t,
        end_time=points[-1].t,
        points=tuple(points),
        velocities=tuple(velocities),
        accelerations=tuple(accelerations),
        jerks=tuple(jerks),
        total_distance=total_distance,
        curvature=total_distance / max(straight_distance, 1.0),
        straightness=straight_distance / max(total_distance, 1.0),
        direction_changes=direction_changes,
        pauses=pauses
    )


class PointerCapturer(BaseCapturer):
    """Segments pointer samples into movements, clicks, drags and scrolls"""

    modality = Modality.POINTER

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.min_points = self.config.get('min_movement_points', 5)
        self.min_duration_ms = self.config.get('min_movement_duration_ms', 50)
        self.movement_gap_ms = self.config.get('movement_gap_ms', 150)
        self.max_points = self.config.get('max_movement_points', 1000)
        self.tap_max_distance = self.config.get('tap_max_distance', 10)
        self.tap_max_duration_ms = self.config.get('tap_max_duration_ms', 300)
        self.drag_min_distance = self.config.get('drag_min_distance', 20)
        self.click_context_points = self.config.get('click_context_points', 10)
        self.multi_click_window_ms = self.config.get('multi_click_window_ms', 500)
        self._reset()

    def _reset(self):
        self._path: List[Point] = []
        self._fragments: List[List[Point]] = []
        self._recent: List[Point] = []
        self._press: Optional[Point] = None
        self._press_button = 0
        self._press_context: List[Point] = []
        self._press_path: List[Point] = []
        self._pending_click: Optional[Dict[str, Any]] = None
        self._last_click_end: Optional[float] = None
        self._click_count = 0
        self._last_scroll_time: Optional[float] = None

    def _handle(self, sample: RawSample):
        if sample.kind == SampleKind.SCROLL:
            self._handle_scroll(sample)
            return
        if sample.x is None or sample.y is None:
            return

        point = Point(sample.x, sample.y, sample.timestamp, sample.pressure or 0.0)
        self._recent.append(point)
        if len(self._recent) > self.click_context_points:
            self._recent.pop(0)

        if sample.kind == SampleKind.MOVE:
            if self._press is not None:
                self._press_path.append(point)
                return
            if self._pending_click is not None:
                self._pending_click['post'].append(point)
                if len(self._pending_click['post']) >= self.click_context_points:
                    self._emit_pending_click()
            if self._path and point.t - self._path[-1].t > self.movement_gap_ms:
                self._close_path()
            self._path.append(point)
            if len(self._path) >= self.max_points:
                self._close_path()
        elif sample.kind == SampleKind.DOWN:
            self._emit_pending_click()
            self._close_path()
            self._press = point
            self._press_button = sample.button or 0
            self._press_context = list(self._recent[:-1])
            self._press_path = [point]
        elif sample.kind == SampleKind.UP:
            self._handle_release(point)

    def _handle_release(self, point: Point):
        if self._press is None:
            return
        press = self._press
        self._press = None
        self._press_path.append(point)

        distance = press.distance_to(point)
        duration = max(0.0, point.t - press.t)

        if distance > self.drag_min_distance:
            self._emit(Drag(
                start_time=press.t,
                end_time=point.t,
                start=press,
                end=point,
                distance=distance,
                velocity=distance / duration if duration > 0 else 0.0,
                button=self._press_button
            ))
            self._press_path = []
            return

        # Short travel is a click; slow or slightly-moving presses are long clicks
        if self._last_click_end is not None and press.t - self._last_click_end <= self.multi_click_window_ms:
            self._click_count += 1
        else:
            self._click_count = 1
        self._last_click_end = point.t

        self._pending_click = {
            'press': press,
            'release': point,
            'button': self._press_button,
            'count': self._click_count,
            'pre': self._press_context[-self.click_context_points:],
            'post': []
        }
        self._press_path = []

    def _emit_pending_click(self):
        pending = self._pending_click
        if pending is None:
            return
        self._pending_click = None
        press, release = pending['press'], pending['release']
        self._emit(Click(
            start_time=press.t,
            end_time=release.t,
            x=press.x,
            y=press.y,
            button=pending['button'],
            dwell=release.t - press.t,
            click_count=pending['count'],
            pre_movement=tuple(pending['pre']),
            post_movement=tuple(pending['post'])
        ))

    def _handle_scroll(self, sample: RawSample):
        dx, dy = sample.delta_x, sample.delta_y
        if dx == 0 and dy == 0:
            return
        if abs(dy) >= abs(dx):
            direction = 'down' if dy > 0 else 'up'
            delta = abs(dy)
        else:
            direction = 'right' if dx > 0 else 'left'
            delta = abs(dx)

        start = self._last_scroll_time if self._last_scroll_time is not None else sample.timestamp
        elapsed = sample.timestamp - start
        self._last_scroll_time = sample.timestamp

        self._emit(Scroll(
            start_time=min(start, sample.timestamp),
            end_time=sample.timestamp,
            direction=direction,
            delta=delta,
            speed=delta / elapsed if elapsed > 0 else delta
        ))

    def _is_viable(self, points: List[Point]) -> bool:
        return (len(points) >= self.min_points
                and points[-1].t - points[0].t >= self.min_duration_ms)

    def _close_path(self):
        path = self._path
        self._path = []
        if not path:
            return
        if self._is_viable(path):
            self._emit(build_movement(path))
        else:
            self._fragments.append(path)

    def _flush(self):
        self._emit_pending_click()
        if self._press is not None:
            # Release never arrived; the press is finalized as a click at its last known point
            last = self._press_path[-1] if self._press_path else self._press
            self._handle_release(last)
            self._emit_pending_click()
        self._close_path()

        if self._fragments:
            merged = [p for fragment in self._fragments for p in fragment]
            merged.sort(key=lambda p: p.t)
            if self._is_viable(merged):
                self._emit(build_movement(merged))
            else:
                logger.debug(f"Discarding {len(merged)} pointer samples below the movement minimum")
            self._fragments = []


class TouchCapturer(BaseCapturer):
    """Tracks each touch identifier and classifies gestures on release"""

    modality = Modality.TOUCH

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.tap_max_distance = self.config.get('tap_max_distance', 10)
        self.tap_max_duration_ms = self.config.get('tap_max_duration_ms', 300)
        self.swipe_min_distance = self.config.get('drag_min_distance', 20)
        self._reset()

    def _reset(self):
        self._active: Dict[int, List[Point]] = {}
        self._pinch_partner: Dict[int, int] = {}
        self._consumed: set = set()

    def _handle(self, sample: RawSample):
        touch_id = sample.touch_id if sample.touch_id is not None else 0

        if sample.kind == SampleKind.TOUCHCANCEL:
            self._active.pop(touch_id, None)
            self._pinch_partner.pop(touch_id, None)
            self._consumed.discard(touch_id)
            return
        if sample.x is None or sample.y is None:
            return

        area = math.pi * sample.radius_x * sample.radius_y
        point = Point(sample.x, sample.y, sample.timestamp, sample.pressure or 0.0, area)

        if sample.kind == SampleKind.TOUCHSTART:
            for other in self._active:
                if other not in self._pinch_partner and other != touch_id:
                    self._pinch_partner[touch_id] = other
                    self._pinch_partner[other] = touch_id
                    break
            self._active[touch_id] = [point]
        elif sample.kind == SampleKind.TOUCHMOVE:
            if touch_id in self._active:
                self._active[touch_id].append(point)
        elif sample.kind == SampleKind.TOUCHEND:
            history = self._active.pop(touch_id, None)
            if history is None:
                return
            history.append(point)
            self._release(touch_id, history)

    def _release(self, touch_id: int, history: List[Point]):
        partner = self._pinch_partner.pop(touch_id, None)
        if touch_id in self._consumed:
            self._consumed.discard(touch_id)
            return

        if partner is not None:
            self._pinch_partner.pop(partner, None)
            partner_history = self._active.get(partner)
            if partner_history and len(partner_history) >= 2 and len(history) >= 3:
                self._emit(self._build_pinch(history, partner_history))
                self._consumed.add(partner)
                return

        pattern = self._classify(history)
        if pattern is not None:
            self._emit(pattern)

    def _classify(self, history: List[Point]) -> Optional[Pattern]:
        if len(history) < 2:
            return None
        start, end = history[0], history[-1]
        distance = start.distance_to(end)
        duration = end.t - start.t

        if distance > self.swipe_min_distance:
            return self._build_swipe(history, distance, duration)
        # Short taps and long presses both land here
        return self._build_tap(history, duration)

    def _build_tap(self, history: List[Point], duration: float) -> Tap:
        pressures = [p.pressure for p in history if p.pressure > 0]
        areas = [p.area for p in history if p.area > 0]
        return Tap(
            start_time=history[0].t,
            end_time=history[-1].t,
            x=history[0].x,
            y=history[0].y,
            dwell=duration,
            pressure_max=max(pressures) if pressures else 0.0,
            pressure_mean=float(np.mean(pressures)) if pressures else 0.0,
            contact_area=float(np.mean(areas)) if areas else 0.0
        )

    def _build_swipe(self, history: List[Point], distance: float, duration: float) -> Swipe:
        start, end = history[0], history[-1]
        angle = math.atan2(end.y - start.y, end.x - start.x)
        if abs(angle) < math.pi / 4:
            direction = 'right'
        elif abs(angle) > 3 * math.pi / 4:
            direction = 'left'
        elif angle > 0:
            direction = 'down'
        else:
            direction = 'up'

        path = sum(history[i - 1].distance_to(history[i]) for i in range(1, len(history)))
        velocity = distance / duration if duration > 0 else 0.0

        acceleration = 0.0
        mid = len(history) // 2
        if 0 < mid < len(history) - 1:
            first, second = history[:mid + 1], history[mid:]
            t1 = first[-1].t - first[0].t
            t2 = second[-1].t - second[0].t
            if t1 > 0 and t2 > 0 and duration > 0:
                v1 = first[0].distance_to(first[-1]) / t1
                v2 = second[0].distance_to(second[-1]) / t2
                acceleration = (v2 - v1) / duration

        return Swipe(
            start_time=start.t,
            end_time=end.t,
            direction=direction,
            distance=distance,
            velocity=velocity,
            curvature=path / max(distance, 1.0),
            acceleration=acceleration
        )

    def _build_pinch(self, history: List[Point], partner: List[Point]) -> Pinch:
        first_a = history[0] if history[0].t >= partner[0].t else _position_at(history, partner[0].t)
        first_b = partner[0] if partner[0].t >= history[0].t else _position_at(partner, history[0].t)
        last_a, last_b = history[-1], partner[-1]

        initial = max(first_a.distance_to(first_b), 1.0)
        final = last_a.distance_to(last_b)
        initial_angle = math.atan2(first_b.y - first_a.y, first_b.x - first_a.x)
        final_angle = math.atan2(last_b.y - last_a.y, last_b.x - last_a.x)
        rotation = final_angle - initial_angle
        if rotation > math.pi:
            rotation -= 2 * math.pi
        elif rotation < -math.pi:
            rotation += 2 * math.pi

        return Pinch(
            start_time=min(history[0].t, partner[0].t),
            end_time=max(last_a.t, last_b.t),
            scale_change=final / initial,
            rotation=rotation
        )

    def _flush(self):
        # Touches still down at stop are finalized as if released
        for touch_id in sorted(self._active):
            if touch_id in self._consumed:
                continue
            history = self._active.get(touch_id)
            if history is None:
                continue
            self._active.pop(touch_id)
            self._release(touch_id, history)
        self._active = {}
        self._consumed = set()


def _position_at(history: List[Point], t: float) -> Point:
    """Last recorded point at or before t"""
    current = history[0]
    for point in history:
        if point.t > t:
            break
        current = point
    return current


CAPTURER_TYPES = {
    Modality.KEYSTROKE: KeystrokeCapturer,
    Modality.POINTER: PointerCapturer,
    Modality.TOUCH: TouchCapturer,
}


def create_capturer(modality: Modality, config: Optional[Dict[str, Any]] = None) -> BaseCapturer:
    return CAPTURER_TYPES[modality](config)
