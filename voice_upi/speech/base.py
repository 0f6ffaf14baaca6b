"""Shared speech engine protocols and value types."""

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence


class RecognitionUnavailable(RuntimeError):
    """The recognition capability is absent on this host."""


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    is_final: bool


@dataclass(frozen=True)
class SpeechSettings:
    """Voice parameters passed with every synthesis request."""
    lang: str = "en-IN"
    rate: float = 0.95
    pitch: float = 1.0
    volume: float = 1.0


@dataclass(frozen=True)
class RecognitionSettings:
    """Recogniser session parameters, applied before the first start()."""
    lang: str = "en-IN"
    continuous: bool = True
    interim_results: bool = True


# ── Protocols ───────────────────────────────────────────────────────

class RecognitionEngine(Protocol):
    """Continuous speech recogniser.

    The owner assigns the on_* callbacks before calling start().
    on_result receives the full result list and the index of the first
    result that changed since the previous event.
    """

    on_start: Optional[Callable[[], None]]
    on_result: Optional[Callable[[Sequence[RecognitionResult], int], None]]
    on_error: Optional[Callable[[str], None]]
    on_end: Optional[Callable[[], None]]

    @property
    def available(self) -> bool: ...

    def configure(self, settings: RecognitionSettings) -> None:
        """Apply locale and session mode; takes effect on the next start()."""
        ...

    def start(self) -> None:
        """Begin a recognition session. May raise RuntimeError if already running."""
        ...

    def stop(self) -> None:
        """End the session; on_end fires once it has stopped."""
        ...


class SynthesisEngine(Protocol):
    """Speech synthesiser; one utterance at a time."""

    def speak(
        self,
        text: str,
        settings: SpeechSettings,
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None: ...

    def cancel(self) -> None:
        """Drop the current utterance; its on_error fires with 'interrupted'."""
        ...
