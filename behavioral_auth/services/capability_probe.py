# behavioral_auth/services/capability_probe.py
"""
Device capability probes deciding which modalities can be captured
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Tuple

from behavioral_auth.core.sampling_controller import DeviceType
from behavioral_auth.models.patterns import Modality, CAPTURE_MODALITIES
from behavioral_auth.utils.helpers import parse_user_agent_details

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceCapabilities:
    modalities: Tuple[Modality, ...]
    device_type: DeviceType

    def supports(self, modality: Modality) -> bool:
        return Modality(modality) in self.modalities


class CapabilityProbe(ABC):
    @abstractmethod
    def probe(self) -> DeviceCapabilities:
        ...


class StaticCapabilityProbe(CapabilityProbe):
    """Fixed capability set, e.g. configured per kiosk or in tests"""

    def __init__(self, modalities: Iterable[Modality] = CAPTURE_MODALITIES,
                 device_type: DeviceType = DeviceType.DESKTOP):
        self.capabilities = DeviceCapabilities(
            modalities=tuple(Modality(m) for m in modalities),
            device_type=DeviceType(device_type)
        )

    def probe(self) -> DeviceCapabilities:
        return self.capabilities


class UserAgentCapabilityProbe(CapabilityProbe):
    """Infer input modalities from the browser's User-Agent"""

    def __init__(self, user_agent_string: str):
        self.user_agent_string = user_agent_string or ''

    def probe(self) -> DeviceCapabilities:
        details = parse_user_agent_details(self.user_agent_string)

        if details['is_bot']:
            logger.warning(f"Bot user agent has no interactive modalities: {details['browser']}")
            return DeviceCapabilities(modalities=(), device_type=DeviceType.UNKNOWN)

        if details['is_tablet']:
            return DeviceCapabilities(modalities=(Modality.KEYSTROKE, Modality.TOUCH),
                                      device_type=DeviceType.TABLET)
        if details['is_mobile']:
            return DeviceCapabilities(modalities=(Modality.KEYSTROKE, Modality.TOUCH),
                                      device_type=DeviceType.MOBILE)
        if details['is_pc']:
            modalities = [Modality.KEYSTROKE, Modality.POINTER]
            if details['is_touch_capable']:
                modalities.append(Modality.TOUCH)
            return DeviceCapabilities(modalities=tuple(modalities), device_type=DeviceType.DESKTOP)

        return DeviceCapabilities(modalities=(Modality.KEYSTROKE,), device_type=DeviceType.UNKNOWN)
