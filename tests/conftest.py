"""Shared pytest fixtures."""
from datetime import datetime

import pytest

from behavioral_auth.config import TestingConfig, service_config
from behavioral_auth.core.sampling_controller import SamplingContext
from behavioral_auth.models.patterns import (
    Modality, SampleKind, RawSample, KeyTiming, KeystrokePattern
)
from behavioral_auth.services.auth_service import ContinuousAuthenticationService
from behavioral_auth.services.capability_probe import StaticCapabilityProbe
from behavioral_auth.services.profile_store import InMemoryProfileStore


def key_events(timings, start=0.0):
    """RawSamples for (key, dwell, gap-after-release) triples"""
    events = []
    t = start
    for key, dwell, gap in timings:
        events.append(RawSample(Modality.KEYSTROKE, SampleKind.KEYDOWN, t, key=key))
        events.append(RawSample(Modality.KEYSTROKE, SampleKind.KEYUP, t + dwell, key=key))
        t += dwell + gap
    return events


def typing_sample(dwells, keys='password12', flight=60.0, start=0.0):
    """Keystroke events cycling through keys with the given dwell times"""
    return key_events(
        [(keys[i % len(keys)], dwell, flight) for i, dwell in enumerate(dwells)],
        start=start
    )


def keystroke_pattern(dwells, keys='password12', flight=60.0, start=0.0):
    timings = []
    t = start
    for i, dwell in enumerate(dwells):
        timings.append(KeyTiming(keys[i % len(keys)], t, t + dwell))
        t += dwell + flight
    return KeystrokePattern(start_time=timings[0].press_time,
                            end_time=timings[-1].release_time,
                            timings=tuple(timings))


def pointer_event(kind, t, x=None, y=None, **kwargs):
    return RawSample(Modality.POINTER, kind, t, x=x, y=y, **kwargs)


def touch_event(kind, t, x=None, y=None, touch_id=0, **kwargs):
    return RawSample(Modality.TOUCH, kind, t, x=x, y=y, touch_id=touch_id, **kwargs)


def pointer_path(start_t, start_x, count, step_ms=10.0, step_px=5.0, y=100.0):
    return [pointer_event(SampleKind.MOVE, start_t + i * step_ms, start_x + i * step_px, y)
            for i in range(count)]


@pytest.fixture
def service_settings():
    settings = service_config(TestingConfig)
    settings['capture_join_timeout_ms'] = 1000
    settings['capture']['poll_interval_s'] = 0.01
    return settings


@pytest.fixture
def store():
    return InMemoryProfileStore()


@pytest.fixture
def keyboard_probe():
    return StaticCapabilityProbe(modalities=[Modality.KEYSTROKE])


@pytest.fixture
def service(service_settings, store, keyboard_probe):
    auth_service = ContinuousAuthenticationService(service_settings, profile_store=store,
                                                   capability_probe=keyboard_probe)
    yield auth_service
    auth_service.shutdown()


@pytest.fixture
def weekday_context():
    """Tuesday 10:00 on a desktop, inside the default active hours"""
    return SamplingContext.at(datetime(2024, 3, 5, 10, 0), session_duration=60000.0)
