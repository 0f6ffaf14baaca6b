#!/usr/bin/env python3
"""
Console speech engines.

Stand-ins for a microphone and a speaker so the dialogue can be driven from a
terminal: every typed line is one final recognition result, and prompts are
logged instead of played. Lines starting with "/" are routed to the console
UI handler instead of the recogniser.
"""

import sys
import threading
from typing import Callable, Optional, TextIO

from voice_upi.speech.base import RecognitionResult, RecognitionSettings, RecognitionUnavailable, SpeechSettings
from voice_upi.utils import upi_log


class ConsoleRecognitionEngine:
    """Reads utterances from a text stream on a background thread."""

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        on_console_command: Optional[Callable[[str], None]] = None,
        require_tty: bool = True,
    ):
        self._stream = stream or sys.stdin
        if require_tty and not self._stream.isatty():
            raise RecognitionUnavailable("stdin is not an interactive terminal")

        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None
        self.on_console_command = on_console_command
        self.settings = RecognitionSettings()

        self._running = False
        self._lock = threading.Lock()
        self._reader_thread: Optional[threading.Thread] = None

    @property
    def available(self) -> bool:
        return True

    @property
    def running(self) -> bool:
        return self._running

    def configure(self, settings: RecognitionSettings):
        self.settings = settings

    def open(self):
        """Start reading the stream; console commands work before listening starts."""
        with self._lock:
            if self._reader_thread is None:
                self._reader_thread = threading.Thread(
                    target=self._read_loop, name="ConsoleRecognizer", daemon=True
                )
                self._reader_thread.start()

    def start(self):
        with self._lock:
            if self._running:
                raise RuntimeError("recognition already started")
            self._running = True
        self.open()
        upi_log("MIC", f"Listening ({self.settings.lang})")
        if self.on_start:
            self.on_start()

    def stop(self):
        with self._lock:
            if not self._running:
                return
            self._running = False
        if self.on_end:
            self.on_end()

    def _read_loop(self):
        for raw_line in self._stream:
            line = raw_line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if self.on_console_command:
                    self.on_console_command(line)
                continue
            if not self._running:
                upi_log("MIC", f"Not listening, ignored: '{line}' (type /mic to start)")
                continue
            if self.on_result:
                self.on_result([RecognitionResult(line, True)], 0)
            if not self.settings.continuous:
                # Single-shot session ends after one final result
                self.stop()

        upi_log("MIC", "Input stream closed")
        if self.on_console_command:
            self.on_console_command("/quit")


class ConsoleSynthesisEngine:
    """Logs prompts and reports completion after a speech-length delay."""

    SECONDS_PER_WORD = 0.3
    MIN_DURATION = 0.4

    def __init__(self, seconds_per_word: float = SECONDS_PER_WORD):
        self._seconds_per_word = seconds_per_word
        self._current: Optional[threading.Timer] = None
        self._current_on_error: Optional[Callable[[str], None]] = None
        self._lock = threading.Lock()

    def estimate_duration(self, text: str, settings: SpeechSettings) -> float:
        words = len(text.split())
        rate = settings.rate if settings.rate > 0 else 1.0
        return max(self.MIN_DURATION, words * self._seconds_per_word / rate)

    def speak(self, text, settings, on_end, on_error):
        duration = self.estimate_duration(text, settings)
        upi_log("SAY", f"{text}  ({settings.lang}, {duration:.1f}s)")

        def _finished():
            with self._lock:
                if self._current is timer:
                    self._current = None
                    self._current_on_error = None
            on_end()

        timer = threading.Timer(duration, _finished)
        timer.daemon = True
        with self._lock:
            self._current = timer
            self._current_on_error = on_error
        timer.start()

    def cancel(self):
        with self._lock:
            timer, on_error = self._current, self._current_on_error
            self._current = None
            self._current_on_error = None
        if timer is not None:
            timer.cancel()
            if on_error:
                on_error("interrupted")
