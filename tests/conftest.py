"""Shared fakes: scripted speech engines and a manually advanced clock."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from voice_upi import i18n
from voice_upi.speech.base import RecognitionResult


class FakeScheduler:
    """call_later() that only fires when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self._pending = []
        self._seq = 0

    def call_later(self, delay, callback):
        self._seq += 1
        self._pending.append((self.now + delay, self._seq, callback))
        return self._seq

    @property
    def pending(self):
        return len(self._pending)

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = sorted(item for item in self._pending if item[0] <= target)
            if not due:
                break
            when, seq, callback = due[0]
            self._pending.remove(due[0])
            self.now = when
            callback()
        self.now = target


class FakeRecognizer:
    def __init__(self, available=True, fail_on_start=False):
        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None
        self._available = available
        self.fail_on_start = fail_on_start
        self.running = False
        self.starts = 0
        self.stops = 0
        self.settings = None

    @property
    def available(self):
        return self._available

    def configure(self, settings):
        self.settings = settings

    def start(self):
        if self.fail_on_start or self.running:
            raise RuntimeError("recognition already started")
        self.running = True
        self.starts += 1
        if self.on_start:
            self.on_start()

    def stop(self):
        if not self.running:
            return
        self.running = False
        self.stops += 1
        if self.on_end:
            self.on_end()

    def hear(self, text, is_final=True):
        self.on_result([RecognitionResult(text, is_final)], 0)

    def end_session(self):
        """Engine ended on its own (silence timeout)."""
        self.running = False
        if self.on_end:
            self.on_end()

    def fail(self, code):
        if self.on_error:
            self.on_error(code)


class FakeSynthesizer:
    """Records prompts; completion is driven by the test via finish()."""

    def __init__(self):
        self.spoken = []
        self.cancels = 0
        self._current = None

    def speak(self, text, settings, on_end, on_error):
        self.spoken.append(text)
        self._current = (on_end, on_error)

    def cancel(self):
        self.cancels += 1
        current, self._current = self._current, None
        if current is not None:
            current[1]("interrupted")

    @property
    def busy(self):
        return self._current is not None

    def finish(self):
        current, self._current = self._current, None
        if current is not None:
            current[0]()

    def error(self, code="synthesis-failed"):
        current, self._current = self._current, None
        if current is not None:
            current[1](code)

    @property
    def last(self):
        return self.spoken[-1] if self.spoken else None


@pytest.fixture(autouse=True)
def english_locale():
    i18n.setup("en", fallback="en")


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()
