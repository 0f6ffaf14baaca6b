#!/usr/bin/env python3
"""
Voice UPI Service.

Main orchestrator: VoiceUPIService class + main() entry point.
Components: ledger, commands (interpreter), dialogue (state machine),
turn_coordinator, event_bus, speech engines, api.server.
"""

import os
import threading
import traceback
from dataclasses import asdict
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from voice_upi import PROJECT_ROOT
from voice_upi import i18n
from voice_upi.commands import Command, CommandKind, extract_amount, interpret, match_contact
from voice_upi.config_loader import VoiceUPIConfig, load_config_yaml
from voice_upi.dialogue import DialogueStateMachine, Reaction
from voice_upi.event_bus import Event, EventBus, EventType
from voice_upi.i18n import t
from voice_upi.ledger import Contact, TransactionLedger
from voice_upi.speech.base import (
    RecognitionEngine,
    RecognitionSettings,
    RecognitionUnavailable,
    SpeechSettings,
    SynthesisEngine,
)
from voice_upi.speech.console import ConsoleRecognitionEngine, ConsoleSynthesisEngine
from voice_upi.timers import Scheduler, ThreadingScheduler
from voice_upi.turn_coordinator import RecognitionErrorKind, SpeechTurnCoordinator
from voice_upi.utils import setup_crash_protection, upi_log

# UI action names accepted by submit_ui_action()
UI_ACTIONS = (
    "initiate_payment",
    "select_contact",
    "set_amount",
    "approve",
    "cancel",
    "home",
    "show_history",
)
_LISTENING_HINT = "listening_hint"


class VoiceUPIService:
    """Voice payment session: one dialogue, one ledger, one audio channel."""

    def __init__(
        self,
        config: Optional[VoiceUPIConfig] = None,
        recognizer: Optional[RecognitionEngine] = None,
        synthesizer: Optional[SynthesisEngine] = None,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
    ):
        self.config = config or VoiceUPIConfig()
        i18n.setup(self.config.language)

        self.contacts = tuple(self.config.contacts)
        self.bus = bus or EventBus()
        self.scheduler = scheduler or ThreadingScheduler()
        self.ledger = TransactionLedger()
        self.machine = DialogueStateMachine(
            self.ledger,
            processing_delay=self.config.processing_delay,
            success_dwell=self.config.success_dwell,
        )

        # UI-facing text, owned here
        self._status = ""
        self._transcript = ""
        self._text_lock = threading.Lock()

        echo_phrases = t("echo.phrases")
        if not isinstance(echo_phrases, list):
            echo_phrases = []
        self.synthesizer = synthesizer or ConsoleSynthesisEngine()
        self.coordinator = SpeechTurnCoordinator(
            recognizer,
            self.synthesizer,
            self.scheduler,
            on_utterance=self._post_utterance,
            settings=SpeechSettings(
                lang=self.config.tts_lang,
                rate=self.config.tts_rate,
                pitch=self.config.tts_pitch,
                volume=self.config.tts_volume,
            ),
            recognition_settings=RecognitionSettings(
                lang=self.config.recognition_lang,
                continuous=self.config.recognition_continuous,
                interim_results=self.config.recognition_interim_results,
            ),
            echo_phrases=list(echo_phrases) + list(self.config.extra_echo_phrases),
            settling_delay=self.config.settling_delay,
            on_status=self._set_status,
            on_transcript=self._set_transcript,
            on_listening_changed=self._on_listening_changed,
            on_speaking_changed=self._on_speaking_changed,
            on_recognition_error=self._on_recognition_error,
            on_synthesis_error=self._on_synthesis_error,
        )

        self.bus.subscribe(EventType.UTTERANCE_RECEIVED, self._on_utterance_event, priority=10)
        self.bus.subscribe(EventType.UI_ACTION, self._on_ui_action_event, priority=10)
        self.bus.subscribe(EventType.TIMER_FIRED, self._on_timer_event, priority=10)

        if self.coordinator.recognition_available:
            self._set_status(t("status.ready"))

        self.is_running = False
        self._quit_event = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if self.is_running:
            return
        self.bus.start()
        self.bus.publish(EventType.SYSTEM_STARTUP, {"contacts": len(self.contacts)}, source="service")
        self.is_running = True
        upi_log("UPI", "Voice UPI service started")

    def stop(self):
        self.coordinator.stop_listening()
        self.coordinator.cancel_speech()
        self.bus.publish(EventType.SYSTEM_SHUTDOWN, {}, source="service")
        self.bus.stop()
        self.is_running = False
        self._quit_event.set()
        upi_log("UPI", "Voice UPI service stopped")

    def wait_for_quit(self, timeout: Optional[float] = None) -> bool:
        return self._quit_event.wait(timeout)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def toggle_listening(self) -> bool:
        """User pressed the microphone button."""
        if self.coordinator.listening:
            self.coordinator.stop_listening()
            self.coordinator.speak(t("prompts.voice_stopped"))
            return False

        started = self.coordinator.start_listening()
        if started:
            self.scheduler.call_later(
                self.config.listening_hint_delay,
                lambda: self.submit_ui_action(_LISTENING_HINT),
            )
        return started

    def set_listening(self, enabled: bool) -> bool:
        if enabled != self.coordinator.listening:
            return self.toggle_listening()
        return self.coordinator.listening

    def submit_ui_action(self, action: str, **params) -> Optional[Event]:
        """Funnel a tap/click into the same queue as voice commands."""
        if action not in UI_ACTIONS and action != _LISTENING_HINT:
            upi_log("UPI", f"Unknown UI action '{action}'", level="WARNING")
        return self.bus.publish(EventType.UI_ACTION, dict(params, action=action), source="ui")

    def submit_transcript(self, transcript: str, is_final: bool = True) -> bool:
        """Transcript pushed by an external recogniser (e.g. a browser)."""
        return self.coordinator.on_raw_result(transcript, is_final)

    def _post_utterance(self, text: str):
        self.bus.publish(EventType.UTTERANCE_RECEIVED, {"text": text}, source="recognizer")

    # ------------------------------------------------------------------
    # Event handlers (event worker thread)
    # ------------------------------------------------------------------

    def _on_utterance_event(self, event: Event):
        text = event.get("text", "")
        command = interpret(self.machine.state, text, self.contacts, len(self.ledger))
        upi_log("UPI", f"'{text}' -> {command.kind.name} (state: {self.machine.state.value})")
        self._execute(self.machine.apply(command))

    def _on_ui_action_event(self, event: Event):
        action = event.get("action")
        if action == _LISTENING_HINT:
            self._speak_listening_hint()
            return

        command = self._ui_command(event)
        upi_log("UPI", f"UI action '{action}' -> {command.kind.name}")
        self._execute(self.machine.apply(command))

    def _on_timer_event(self, event: Event):
        self._execute(self.machine.on_timer(event.get("timer", "")))

    def _ui_command(self, event: Event) -> Command:
        action = event.get("action")
        if action == "initiate_payment":
            return Command(CommandKind.INITIATE_PAYMENT)
        if action == "select_contact":
            contact = self.find_contact(event.get("contact_id"), event.get("name"))
            return Command.select_contact(contact) if contact else Command(CommandKind.UNRECOGNIZED)
        if action == "set_amount":
            amount = extract_amount(str(event.get("amount", "")))
            return Command.set_amount(amount) if amount else Command(CommandKind.UNRECOGNIZED)
        if action == "approve":
            return Command(CommandKind.APPROVE)
        if action == "cancel":
            return Command(CommandKind.CANCEL)
        if action == "home":
            return Command(CommandKind.GO_HOME)
        if action == "show_history":
            return Command.show_history(len(self.ledger))
        return Command(CommandKind.UNRECOGNIZED)

    def _speak_listening_hint(self):
        if not self.coordinator.listening:
            return
        hint = self.machine.listening_hint()
        if hint is None:
            return
        prompt, status = hint
        self._set_status(status)
        self.coordinator.speak(prompt)

    def _execute(self, reaction: Reaction):
        """Carry out the side effects a transition asked for."""
        if reaction.changed:
            self.bus.publish(
                EventType.STATE_CHANGED,
                {"old_state": reaction.previous.value, "new_state": reaction.state.value},
                source="dialogue",
            )
        if reaction.status is not None:
            self._set_status(reaction.status)
        if reaction.transaction is not None:
            self.bus.publish(EventType.TRANSACTION_COMPLETED, reaction.transaction.to_dict(), source="ledger")
        if reaction.interrupt:
            self.coordinator.cancel_speech()
        if reaction.prompt:
            self.coordinator.speak(reaction.prompt)
        if reaction.timer is not None:
            name = reaction.timer.name
            self.scheduler.call_later(
                reaction.timer.delay,
                lambda: self.bus.publish(EventType.TIMER_FIRED, {"timer": name}, source="timer"),
            )

    # ------------------------------------------------------------------
    # Coordinator callbacks
    # ------------------------------------------------------------------

    def _set_status(self, text: str):
        with self._text_lock:
            self._status = text
        self.bus.publish(EventType.STATUS_CHANGED, {"status": text}, source="service")

    def _set_transcript(self, text: str):
        with self._text_lock:
            self._transcript = text
        self.bus.publish(EventType.TRANSCRIPT_UPDATED, {"transcript": text}, source="recognizer")

    def _on_listening_changed(self, listening: bool):
        self.bus.publish(EventType.LISTENING_CHANGED, {"listening": listening}, source="coordinator")

    def _on_speaking_changed(self, speaking: bool, text: str):
        event_type = EventType.TTS_STARTED if speaking else EventType.TTS_ENDED
        self.bus.publish(event_type, {"text": text}, source="coordinator")

    def _on_recognition_error(self, kind: RecognitionErrorKind, code: str):
        self.bus.publish(EventType.ERROR_RECOGNITION, {"kind": kind.value, "code": code}, source="recognizer")

    def _on_synthesis_error(self, code: str):
        self.bus.publish(EventType.ERROR_TTS, {"code": code}, source="synthesizer")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def status(self) -> str:
        with self._text_lock:
            return self._status

    @property
    def transcript(self) -> str:
        with self._text_lock:
            return self._transcript

    def find_contact(self, contact_id: Any = None, name: Optional[str] = None) -> Optional[Contact]:
        if contact_id is not None:
            try:
                wanted = int(contact_id)
            except (TypeError, ValueError):
                return None
            return next((c for c in self.contacts if c.id == wanted), None)
        if name:
            return match_contact(name.lower(), self.contacts)
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Everything the UI surface needs to render the current screen."""
        return {
            "state": self.machine.state.value,
            "draft": asdict(self.ledger.draft),
            "transcript": self.transcript,
            "interim": self.coordinator.interim_text,
            "status": self.status,
            "listening": self.coordinator.listening,
            "speaking": self.coordinator.speaking,
            "recognition_available": self.coordinator.recognition_available,
            "history_count": len(self.ledger),
        }

    # ------------------------------------------------------------------
    # Console UI
    # ------------------------------------------------------------------

    def handle_console_command(self, line: str) -> bool:
        """Console stand-in for the screen's buttons. Returns False for unknown input."""
        parts = line.strip().split(maxsplit=1)
        if not parts:
            return False
        name, arg = parts[0].lower(), (parts[1] if len(parts) > 1 else "")

        if name == "/mic":
            self.toggle_listening()
        elif name == "/new":
            self.submit_ui_action("initiate_payment")
        elif name == "/tap":
            self.submit_ui_action("select_contact", name=arg)
        elif name == "/amount":
            self.submit_ui_action("set_amount", amount=arg)
        elif name == "/approve":
            self.submit_ui_action("approve")
        elif name == "/cancel":
            self.submit_ui_action("cancel")
        elif name == "/home":
            self.submit_ui_action("home")
        elif name == "/history":
            self.submit_ui_action("show_history")
            for tx in self.ledger.history():
                upi_log("HISTORY", f"#{tx.id} {tx.timestamp} {tx.amount} -> {tx.recipient} ({tx.upi_id}) {tx.status.value}")
        elif name == "/status":
            upi_log("STATUS", str(self.snapshot()))
        elif name == "/quit":
            self._quit_event.set()
        else:
            upi_log("UPI", f"Unknown console command: {name}", level="WARNING")
            return False
        return True


def main():
    """Run the voice payment service in the terminal."""
    setup_crash_protection()
    load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

    yaml_config = load_config_yaml(os.getenv("VOICE_UPI_CONFIG", "config.yaml"))
    config = VoiceUPIConfig.from_yaml(yaml_config)
    config.print_config_banner()

    try:
        recognizer = ConsoleRecognitionEngine()
    except RecognitionUnavailable as e:
        upi_log("UPI", f"Console recognition unavailable: {e}", level="WARNING")
        recognizer = None

    service = VoiceUPIService(config, recognizer=recognizer, synthesizer=ConsoleSynthesisEngine())
    api = None
    try:
        service.start()
        if config.api_enabled:
            from voice_upi.api.server import VoiceUPIAPI
            api = VoiceUPIAPI(service, host=config.api_host, port=config.api_port)
            api.start()

        if recognizer is not None:
            recognizer.on_console_command = service.handle_console_command
            recognizer.open()
            upi_log("UPI", "Type /mic to start listening, then speak (type) your commands.")
            upi_log("UPI", "Buttons: /new /tap <name> /amount <n> /approve /cancel /history /status /quit")

        while not service.wait_for_quit(timeout=1.0):
            pass
    except KeyboardInterrupt:
        upi_log("UPI", "Shutting down...")
    except Exception as e:
        upi_log("CRITICAL", f"Unhandled exception in main: {e}", level="ERROR")
        upi_log("CRITICAL", traceback.format_exc(), level="ERROR")
        raise
    finally:
        if api is not None:
            api.stop()
        service.stop()


if __name__ == "__main__":
    main()
