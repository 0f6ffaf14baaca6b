#!/usr/bin/env python3
"""
Speech turn coordinator.

Arbitrates the single half-duplex audio channel between the recogniser and
the synthesiser:

- recognition is stopped before every prompt and resumed only after the
  prompt has finished plus a short settling delay;
- final transcripts that arrive while speaking, or that contain one of our
  own prompt phrases, are dropped instead of being interpreted;
- the recogniser is kept alive across its own end-of-session events while
  the user wants continuous listening.
"""

import threading
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from voice_upi.i18n import t
from voice_upi.speech.base import (
    RecognitionEngine,
    RecognitionResult,
    RecognitionSettings,
    SpeechSettings,
    SynthesisEngine,
)
from voice_upi.timers import Scheduler
from voice_upi.utils import upi_log


class RecognitionErrorKind(Enum):
    NO_SPEECH = "no_speech"
    PERMISSION_DENIED = "permission_denied"
    NETWORK = "network"
    OTHER = "other"


_ERROR_CODES = {
    "no-speech": RecognitionErrorKind.NO_SPEECH,
    "not-allowed": RecognitionErrorKind.PERMISSION_DENIED,
    "service-not-allowed": RecognitionErrorKind.PERMISSION_DENIED,
    "permission-denied": RecognitionErrorKind.PERMISSION_DENIED,
    "network": RecognitionErrorKind.NETWORK,
}


def classify_recognition_error(code: str) -> RecognitionErrorKind:
    return _ERROR_CODES.get((code or "").strip().lower(), RecognitionErrorKind.OTHER)


def _noop(*_args, **_kwargs):
    pass


class SpeechTurnCoordinator:
    """Owns the listening intent, speaking state and auto-restart suppression."""

    def __init__(
        self,
        recognizer: Optional[RecognitionEngine],
        synthesizer: SynthesisEngine,
        scheduler: Scheduler,
        on_utterance: Callable[[str], None],
        settings: Optional[SpeechSettings] = None,
        recognition_settings: Optional[RecognitionSettings] = None,
        echo_phrases: Optional[Iterable[str]] = None,
        settling_delay: float = 0.15,
        on_status: Optional[Callable[[str], None]] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_listening_changed: Optional[Callable[[bool], None]] = None,
        on_speaking_changed: Optional[Callable[[bool, str], None]] = None,
        on_recognition_error: Optional[Callable[[RecognitionErrorKind, str], None]] = None,
        on_synthesis_error: Optional[Callable[[str], None]] = None,
    ):
        self._recognizer = recognizer
        self._synthesizer = synthesizer
        self._scheduler = scheduler
        self._on_utterance = on_utterance
        self._settings = settings or SpeechSettings()
        self.recognition_settings = recognition_settings or RecognitionSettings()
        self._settling_delay = settling_delay

        self._on_status = on_status or _noop
        self._on_transcript = on_transcript or _noop
        self._on_listening_changed = on_listening_changed or _noop
        self._on_speaking_changed = on_speaking_changed or _noop
        self._on_recognition_error = on_recognition_error or _noop
        self._on_synthesis_error = on_synthesis_error or _noop

        if echo_phrases is None:
            echo_phrases = t("echo.phrases")
            if not isinstance(echo_phrases, list):
                echo_phrases = []
        self._echo_phrases = tuple(p.lower().strip() for p in echo_phrases if p and p.strip())

        self._listening = False              # user wants continuous listening
        self._speaking = False
        self._suppress_auto_restart = False  # recogniser paused for a prompt
        self._utterance_seq = 0
        self._interim_text = ""
        self._transcript = ""
        self._unavailable_notified = False
        self._lock = threading.RLock()

        self.recognition_available = recognizer is not None and bool(recognizer.available)
        if self.recognition_available:
            recognizer.on_start = self._on_engine_start
            recognizer.on_result = self.handle_engine_results
            recognizer.on_error = self._on_engine_error
            recognizer.on_end = self._on_engine_end
            recognizer.configure(self.recognition_settings)
        else:
            self._notify_unavailable()
            self._on_status(t("status.recognition_unavailable"))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def listening(self) -> bool:
        with self._lock:
            return self._listening

    @property
    def speaking(self) -> bool:
        with self._lock:
            return self._speaking

    @property
    def suspended(self) -> bool:
        with self._lock:
            return self._suppress_auto_restart

    @property
    def interim_text(self) -> str:
        with self._lock:
            return self._interim_text

    @property
    def transcript(self) -> str:
        with self._lock:
            return self._transcript

    def is_echo(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase in lowered for phrase in self._echo_phrases)

    # ------------------------------------------------------------------
    # Listening intent
    # ------------------------------------------------------------------

    def start_listening(self) -> bool:
        with self._lock:
            if not self.recognition_available:
                self._notify_unavailable()
                self._on_status(t("status.recognition_unavailable"))
                return False
            if self._listening:
                return True

            self._interim_text = ""
            self._transcript = ""
            self._on_transcript("")
            self._on_status(t("status.starting"))
            self._listening = True

            if self._speaking or self._suppress_auto_restart:
                # A prompt is playing; its completion starts the recogniser
                self._suppress_auto_restart = True
            elif not self._start_recognizer():
                return False

            upi_log("TURN", "Listening enabled")
            self._on_listening_changed(True)
            return True

    def stop_listening(self):
        with self._lock:
            if not self._listening:
                return
            self._listening = False
            if not self._suppress_auto_restart:
                self._stop_recognizer()
            self._interim_text = ""
            self._transcript = ""
            self._on_transcript("")
            self._on_status(t("status.stopped"))
            upi_log("TURN", "Listening disabled")
            self._on_listening_changed(False)

    def toggle_listening(self) -> bool:
        with self._lock:
            if self._listening:
                self.stop_listening()
                return False
            return self.start_listening()

    # ------------------------------------------------------------------
    # Recognition input
    # ------------------------------------------------------------------

    def handle_engine_results(self, results: Sequence[RecognitionResult], result_index: int = 0):
        """Engine adapter: fold the changed part of the result list into one event."""
        final_parts = []
        interim_parts = []
        for result in list(results)[max(result_index, 0):]:
            if result.is_final:
                final_parts.append(result.transcript.strip())
            else:
                interim_parts.append(result.transcript)

        final_text = " ".join(part for part in final_parts if part)
        if final_text:
            self.on_raw_result(final_text, True)
        elif interim_parts:
            self.on_raw_result("".join(interim_parts), False)

    def on_raw_result(self, utterance: str, is_final: bool) -> bool:
        """Gate one transcript. Returns True when it was dispatched for interpretation."""
        with self._lock:
            if not is_final:
                self._interim_text = utterance
                self._on_transcript(f"{utterance}...")
                return False

            if self._speaking:
                upi_log("TURN", f"Ignoring transcript while speaking: '{utterance}'")
                return False

            cleaned = (utterance or "").strip()
            if not cleaned:
                return False
            if self.is_echo(cleaned):
                upi_log("TURN", f"Ignored self-spoken phrase: '{cleaned}'")
                return False

            self._interim_text = ""
            self._transcript = cleaned
            self._on_transcript(cleaned)
            self._on_status(t("status.processing_command"))
            upi_log("TURN", f"Final transcript: '{cleaned}'")
            self._on_utterance(cleaned)
            return True

    # ------------------------------------------------------------------
    # Speaking
    # ------------------------------------------------------------------

    def speak(self, text: str):
        """Speak a prompt with recognition suspended for its whole duration."""
        with self._lock:
            self._utterance_seq += 1
            seq = self._utterance_seq

            if self._listening and not self._suppress_auto_restart:
                self._suppress_auto_restart = True
                self._stop_recognizer()

            # Callbacks of the superseded utterance are ignored via seq
            self._synthesizer.cancel()

            self._speaking = True
            self._on_speaking_changed(True, text)
            self._synthesizer.speak(
                text,
                self._settings,
                on_end=lambda: self._on_speech_done(seq, None),
                on_error=lambda code: self._on_speech_done(seq, code),
            )

    def cancel_speech(self):
        """Drop the current prompt; listening resumes after the settling delay."""
        with self._lock:
            was_speaking = self._speaking
            self._utterance_seq += 1
            seq = self._utterance_seq
            self._synthesizer.cancel()
            if was_speaking:
                upi_log("TURN", "Speech cancelled")
                self._finish_utterance(seq)

    def _on_speech_done(self, seq: int, error: Optional[str]):
        with self._lock:
            if seq != self._utterance_seq:
                return
            if error:
                upi_log("TURN", f"Speech error: {error}", level="WARNING")
                self._on_synthesis_error(error)
            self._finish_utterance(seq)

    def _finish_utterance(self, seq: int):
        self._speaking = False
        self._on_speaking_changed(False, "")
        self._scheduler.call_later(self._settling_delay, lambda: self._resume_after_speech(seq))

    def _resume_after_speech(self, seq: int):
        with self._lock:
            if seq != self._utterance_seq or self._speaking:
                return
            if not self._suppress_auto_restart:
                return
            self._suppress_auto_restart = False
            if self._listening:
                upi_log("TURN", "Resuming recognition after speech")
                self._start_recognizer()

    # ------------------------------------------------------------------
    # Recognition engine events
    # ------------------------------------------------------------------

    def _on_engine_start(self):
        self._on_status(t("status.listening"))

    def _on_engine_end(self):
        with self._lock:
            if self._suppress_auto_restart:
                upi_log("TURN", "Recognition paused for speech, not restarting")
                return
            if self._listening:
                upi_log("TURN", "Recognition ended, restarting")
                self._start_recognizer()

    def _on_engine_error(self, code: str):
        kind = classify_recognition_error(code)
        upi_log("TURN", f"Recognition error: {code} ({kind.value})", level="ERROR")
        with self._lock:
            if kind is RecognitionErrorKind.OTHER:
                self._on_status(t("status.errors.other", code=code))
            else:
                self._on_status(t(f"status.errors.{kind.value}"))
            self._on_recognition_error(kind, code)
            if kind is RecognitionErrorKind.PERMISSION_DENIED and self._listening:
                # Needs explicit user action to resume
                self._listening = False
                self._on_listening_changed(False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start_recognizer(self) -> bool:
        try:
            self._recognizer.start()
            return True
        except RuntimeError as e:
            upi_log("TURN", f"Could not start recognition: {e}", level="ERROR")
            was_listening = self._listening
            self._listening = False
            self._on_status(t("status.restart_failed"))
            if was_listening:
                self._on_listening_changed(False)
            return False

    def _stop_recognizer(self):
        try:
            self._recognizer.stop()
        except RuntimeError as e:
            upi_log("TURN", f"Could not stop recognition: {e}", level="WARNING")

    def _notify_unavailable(self):
        if self._unavailable_notified:
            return
        self._unavailable_notified = True
        upi_log("TURN", "Speech recognition unavailable, voice commands disabled", level="WARNING")
