"""Tests for behavioral_auth.core.amplitude_checks."""
from behavioral_auth.core.amplitude_checks import (
    MACHINE_TYPING, PASTE_BURST, amplitude_flags, is_machine_typing, is_paste_burst
)

from conftest import keystroke_pattern


class TestMachineTyping:

    def test_constant_dwell_is_flagged(self):
        assert is_machine_typing([keystroke_pattern([100] * 12)])

    def test_varied_dwell_is_human(self):
        assert not is_machine_typing([keystroke_pattern([90, 120] * 6)])

    def test_too_few_keys(self):
        assert not is_machine_typing([keystroke_pattern([100] * 9)])

    def test_spans_patterns(self):
        patterns = [keystroke_pattern([100] * 6), keystroke_pattern([100] * 6, start=5000)]
        assert is_machine_typing(patterns)


class TestPasteBurst:

    def test_superhuman_rate_is_flagged(self):
        assert is_paste_burst([keystroke_pattern([5] * 12, flight=0)])

    def test_normal_typing(self):
        assert not is_paste_burst([keystroke_pattern([100, 130] * 6, flight=100)])

    def test_simultaneous_presses(self):
        assert is_paste_burst([keystroke_pattern([0] * 12, flight=0)])


def test_amplitude_flags():
    assert amplitude_flags([keystroke_pattern([5] * 12, flight=0)]) == [MACHINE_TYPING, PASTE_BURST]
    assert amplitude_flags([keystroke_pattern([90, 120] * 6, flight=100)]) == []
    assert amplitude_flags([]) == []
