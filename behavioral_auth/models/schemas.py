"""
Pydantic schemas for API request validation
"""
from pydantic import BaseModel, validator, Field
from typing import Optional, List

from behavioral_auth.core.sampling_controller import BehaviorState, DeviceType, SamplingContext
from behavioral_auth.models.patterns import Modality, SampleKind, RawSample

KEYBOARD_KINDS = {SampleKind.KEYDOWN, SampleKind.KEYUP}
POINTER_KINDS = {SampleKind.MOVE, SampleKind.DOWN, SampleKind.UP, SampleKind.SCROLL}
TOUCH_KINDS = {SampleKind.TOUCHSTART, SampleKind.TOUCHMOVE, SampleKind.TOUCHEND, SampleKind.TOUCHCANCEL}

KINDS_BY_MODALITY = {
    Modality.KEYSTROKE: KEYBOARD_KINDS,
    Modality.POINTER: POINTER_KINDS,
    Modality.TOUCH: TOUCH_KINDS,
}


class RawSampleSchema(BaseModel):
    modality: Modality
    kind: SampleKind
    timestamp: float = Field(..., ge=0)
    key: Optional[str] = Field(None, max_length=50)
    x: Optional[float] = None
    y: Optional[float] = None
    pressure: Optional[float] = Field(None, ge=0, le=1)
    button: Optional[int] = None
    touch_id: Optional[int] = None
    delta_x: float = 0.0
    delta_y: float = 0.0
    radius_x: float = Field(0.0, ge=0)
    radius_y: float = Field(0.0, ge=0)

    @validator('kind')
    def validate_kind(cls, v, values):
        modality = values.get('modality')
        if modality is not None and v not in KINDS_BY_MODALITY.get(modality, set()):
            raise ValueError(f'{v.value} is not a {modality.value} event')
        return v

    @validator('key', always=True)
    def validate_key(cls, v, values):
        if values.get('modality') == Modality.KEYSTROKE and not v:
            raise ValueError('Keystroke events require a key')
        return v

    def to_sample(self) -> RawSample:
        return RawSample(
            modality=self.modality,
            kind=self.kind,
            timestamp=self.timestamp,
            key=self.key,
            x=self.x,
            y=self.y,
            pressure=self.pressure,
            button=self.button,
            touch_id=self.touch_id,
            delta_x=self.delta_x,
            delta_y=self.delta_y,
            radius_x=self.radius_x,
            radius_y=self.radius_y
        )


class SamplingContextSchema(BaseModel):
    time_of_day: Optional[int] = Field(None, ge=0, le=23)
    day_of_week: Optional[int] = Field(None, ge=1, le=7)
    behavior_state: BehaviorState = BehaviorState.RELAXED
    network_stability: float = Field(1.0, ge=0.0, le=1.0)
    device_type: DeviceType = DeviceType.DESKTOP
    location_consistency: float = Field(1.0, ge=0.0, le=1.0)
    session_duration: float = Field(0.0, ge=0.0)
    interaction_frequency: float = Field(5.0, ge=0.0)
    last_confidence: float = Field(100.0, ge=0.0, le=100.0)
    recent_failures: int = Field(0, ge=0)

    def to_context(self) -> SamplingContext:
        base = SamplingContext.at()
        return SamplingContext(
            time_of_day=self.time_of_day if self.time_of_day is not None else base.time_of_day,
            day_of_week=self.day_of_week if self.day_of_week is not None else base.day_of_week,
            behavior_state=self.behavior_state,
            network_stability=self.network_stability,
            device_type=self.device_type,
            location_consistency=self.location_consistency,
            session_duration=self.session_duration,
            interaction_frequency=self.interaction_frequency,
            last_confidence=self.last_confidence,
            recent_failures=self.recent_failures
        )


class BeginCaptureRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    context: Optional[SamplingContextSchema] = None


class EventBatchSubmission(BaseModel):
    events: List[RawSampleSchema] = Field(default_factory=list)

    @validator('events')
    def validate_events(cls, v):
        if len(v) > 1000:  # Reasonable limit
            raise ValueError('Too many events')
        return v


class RecommendationRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    context: Optional[SamplingContextSchema] = None
