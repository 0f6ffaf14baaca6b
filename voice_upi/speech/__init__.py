"""Speech engine contracts and console implementations."""

from voice_upi.speech.base import (
    RecognitionEngine,
    RecognitionResult,
    RecognitionSettings,
    RecognitionUnavailable,
    SpeechSettings,
    SynthesisEngine,
)

__all__ = [
    "RecognitionEngine",
    "RecognitionResult",
    "RecognitionSettings",
    "RecognitionUnavailable",
    "SpeechSettings",
    "SynthesisEngine",
]
