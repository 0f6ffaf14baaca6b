"""End-to-end dialogue tests: voice and UI input through the service."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from voice_upi.config_loader import VoiceUPIConfig
from voice_upi.event_bus import EventBus, EventType
from voice_upi.service import VoiceUPIService
from voice_upi.speech.base import RecognitionSettings
from voice_upi.state_machine import DialogueState

SETTLE = 0.15


@pytest.fixture
def service(recognizer, synthesizer, scheduler):
    config = VoiceUPIConfig(api_enabled=False)
    return VoiceUPIService(
        config,
        recognizer=recognizer,
        synthesizer=synthesizer,
        scheduler=scheduler,
        bus=EventBus(),
    )


@pytest.fixture
def listening(service, recognizer, synthesizer, scheduler):
    """Service with the microphone on and the home hint already spoken."""
    assert service.toggle_listening()
    scheduler.advance(0.5)
    service.bus.run_pending()
    synthesizer.finish()
    scheduler.advance(SETTLE)
    service.bus.run_pending()
    assert recognizer.running
    return service


def _say(service, recognizer, synthesizer, scheduler, text):
    recognizer.hear(text)
    service.bus.run_pending()
    synthesizer.finish()
    scheduler.advance(SETTLE)
    service.bus.run_pending()


def _tap(service, synthesizer, scheduler, action, **params):
    service.submit_ui_action(action, **params)
    service.bus.run_pending()
    synthesizer.finish()
    scheduler.advance(SETTLE)
    service.bus.run_pending()


class TestVoicePayment:
    def test_listening_hint_on_start(self, listening, synthesizer):
        assert synthesizer.spoken == ["Say initiate payment to begin."]
        assert listening.status == "Listening... Speak now!"

    def test_full_payment_by_voice(self, listening, recognizer, synthesizer, scheduler):
        service = listening
        _say(service, recognizer, synthesizer, scheduler, "initiate payment")
        assert service.machine.state is DialogueState.SELECT_RECIPIENT

        _say(service, recognizer, synthesizer, scheduler, "Ram")
        assert service.machine.state is DialogueState.ENTER_AMOUNT
        assert synthesizer.last == "How much would you like to pay Ram?"

        _say(service, recognizer, synthesizer, scheduler, "500 rupees")
        assert service.machine.state is DialogueState.CONFIRM
        assert service.snapshot()["draft"]["amount"] == "500"

        _say(service, recognizer, synthesizer, scheduler, "approve")
        assert service.machine.state is DialogueState.PROCESSING
        assert len(service.ledger) == 0

        scheduler.advance(2.0)
        service.bus.run_pending()
        assert service.machine.state is DialogueState.SUCCESS
        assert synthesizer.last == "Payment successful! 500 rupees sent to Ram."
        assert service.snapshot()["draft"]["recipient"] == "Ram"

        synthesizer.finish()
        scheduler.advance(3.0)
        service.bus.run_pending()
        assert service.machine.state is DialogueState.HOME
        assert service.status == ""
        assert service.snapshot()["draft"]["recipient"] == ""

        history = service.ledger.history()
        assert len(history) == 1
        assert history[0].recipient == "Ram"
        assert history[0].upi_id == "ram@paytm"

    def test_recognition_resumes_after_each_prompt(self, listening, recognizer, synthesizer, scheduler):
        recognizer.hear("initiate payment")
        listening.bus.run_pending()
        assert not recognizer.running
        synthesizer.finish()
        scheduler.advance(SETTLE)
        assert recognizer.running

    def test_locked_while_processing(self, listening, recognizer, synthesizer, scheduler):
        service = listening
        for text in ("start payment", "john", "200", "yes"):
            _say(service, recognizer, synthesizer, scheduler, text)
        spoken_before = len(synthesizer.spoken)

        _say(service, recognizer, synthesizer, scheduler, "cancel")
        assert service.machine.state is DialogueState.PROCESSING
        assert service.status == "Payment in progress. Please wait."
        assert len(synthesizer.spoken) == spoken_before

        scheduler.advance(2.0)
        service.bus.run_pending()
        assert len(service.ledger) == 1

    def test_unrecognized_apologises(self, listening, recognizer, synthesizer, scheduler):
        _say(listening, recognizer, synthesizer, scheduler, "what is the weather")
        assert listening.machine.state is DialogueState.HOME
        assert synthesizer.last == "Sorry, I did not understand that command."
        assert listening.transcript == "what is the weather"

    def test_cancel_mid_payment(self, listening, recognizer, synthesizer, scheduler):
        service = listening
        _say(service, recognizer, synthesizer, scheduler, "make a payment")
        _say(service, recognizer, synthesizer, scheduler, "priya")
        _say(service, recognizer, synthesizer, scheduler, "go back")
        assert service.machine.state is DialogueState.HOME
        assert service.snapshot()["draft"]["recipient"] == ""
        assert synthesizer.last == "Transaction cancelled. Returning to home."

    def test_history_by_voice(self, listening, recognizer, synthesizer, scheduler):
        _say(listening, recognizer, synthesizer, scheduler, "show transaction history")
        assert listening.machine.state is DialogueState.HISTORY
        assert listening.status == "Transaction History (0 items)"

    def test_echo_of_prompt_ignored(self, listening, recognizer, synthesizer, scheduler):
        _say(listening, recognizer, synthesizer, scheduler, "initiate payment")
        spoken = len(synthesizer.spoken)
        _say(listening, recognizer, synthesizer, scheduler, "please select a contact by saying their name")
        assert listening.machine.state is DialogueState.SELECT_RECIPIENT
        assert len(synthesizer.spoken) == spoken

    def test_toggle_off_announces_stop(self, listening, recognizer, synthesizer):
        assert listening.toggle_listening() is False
        assert not recognizer.running
        assert synthesizer.last == "Voice command stopped"
        assert not listening.coordinator.listening


class TestUIActions:
    def test_payment_by_taps(self, service, synthesizer, scheduler):
        _tap(service, synthesizer, scheduler, "initiate_payment")
        _tap(service, synthesizer, scheduler, "select_contact", contact_id=3)
        assert service.snapshot()["draft"]["upi_id"] == "sarah@okaxis"
        _tap(service, synthesizer, scheduler, "set_amount", amount="2,000")
        assert service.snapshot()["draft"]["amount"] == "2000"
        _tap(service, synthesizer, scheduler, "approve")
        scheduler.advance(2.0)
        service.bus.run_pending()
        assert service.ledger.history()[0].amount == "2000"

    def test_ui_and_voice_share_transitions(self, listening, recognizer, synthesizer, scheduler):
        _tap(listening, synthesizer, scheduler, "initiate_payment")
        _say(listening, recognizer, synthesizer, scheduler, "emma")
        assert listening.machine.state is DialogueState.ENTER_AMOUNT
        assert listening.snapshot()["draft"]["upi_id"] == "emma@okaxis"

    def test_invalid_tap_treated_as_unrecognized(self, service, synthesizer, scheduler):
        _tap(service, synthesizer, scheduler, "approve")
        assert service.machine.state is DialogueState.HOME
        assert synthesizer.last == "Sorry, I did not understand that command."

    def test_unknown_contact_tap(self, service, synthesizer, scheduler):
        _tap(service, synthesizer, scheduler, "initiate_payment")
        _tap(service, synthesizer, scheduler, "select_contact", contact_id=999)
        assert service.machine.state is DialogueState.SELECT_RECIPIENT

    def test_cancel_interrupts_prompt(self, service, synthesizer, scheduler):
        _tap(service, synthesizer, scheduler, "initiate_payment")
        service.submit_ui_action("cancel")
        service.bus.run_pending()
        assert service.machine.state is DialogueState.HOME
        assert synthesizer.last == "Transaction cancelled. Returning to home."

    def test_home_from_history_is_silent(self, service, synthesizer, scheduler):
        _tap(service, synthesizer, scheduler, "show_history")
        spoken = len(synthesizer.spoken)
        _tap(service, synthesizer, scheduler, "home")
        assert service.machine.state is DialogueState.HOME
        assert len(synthesizer.spoken) == spoken
        assert service.status == ""

    def test_commands_applied_in_arrival_order(self, service):
        service.submit_ui_action("initiate_payment")
        service.submit_ui_action("select_contact", name="Mike")
        service.submit_ui_action("set_amount", amount="750")
        service.bus.run_pending()
        assert service.machine.state is DialogueState.CONFIRM
        assert service.snapshot()["draft"] == {
            "recipient": "Mike", "amount": "750", "upi_id": "mike@paytm", "note": "",
        }


class TestEvents:
    def test_state_and_transaction_events(self, service, synthesizer, scheduler):
        seen = []
        for event_type in (EventType.STATE_CHANGED, EventType.TRANSACTION_COMPLETED):
            service.bus.subscribe(event_type, seen.append)
        for action, params in (
            ("initiate_payment", {}),
            ("select_contact", {"contact_id": 1}),
            ("set_amount", {"amount": "10"}),
            ("approve", {}),
        ):
            _tap(service, synthesizer, scheduler, action, **params)
        scheduler.advance(2.0)
        service.bus.run_pending()

        states = [e.get("new_state") for e in seen if e.type is EventType.STATE_CHANGED]
        assert states == ["select_recipient", "enter_amount", "confirm", "processing", "success"]
        completed = [e for e in seen if e.type is EventType.TRANSACTION_COMPLETED]
        assert len(completed) == 1
        assert completed[0].get("recipient") == "Ram"

    def test_recognition_error_published(self, listening, recognizer):
        errors = []
        listening.bus.subscribe(EventType.ERROR_RECOGNITION, errors.append)
        recognizer.fail("network")
        listening.bus.run_pending()
        assert errors[0].get("kind") == "network"
        assert listening.status == "Network error. Check your internet connection."


    def test_synthesis_error_published(self, service, synthesizer):
        errors = []
        service.bus.subscribe(EventType.ERROR_TTS, errors.append)
        service.submit_ui_action("initiate_payment")
        service.bus.run_pending()
        synthesizer.error("audio-busy")
        service.bus.run_pending()
        assert [e.get("code") for e in errors] == ["audio-busy"]
        assert not service.coordinator.speaking


class TestServiceMisc:
    def test_ready_status(self, service):
        assert service.status == "Ready! Start voice commands to begin."

    def test_recognition_unavailable(self, synthesizer, scheduler):
        service = VoiceUPIService(
            VoiceUPIConfig(api_enabled=False), recognizer=None,
            synthesizer=synthesizer, scheduler=scheduler, bus=EventBus(),
        )
        assert service.status == "Speech recognition not supported. Voice commands are disabled."
        assert service.toggle_listening() is False
        service._set_status("")
        assert service.toggle_listening() is False
        assert service.status == "Speech recognition not supported. Voice commands are disabled."
        # UI still works
        _tap(service, synthesizer, scheduler, "initiate_payment")
        assert service.machine.state is DialogueState.SELECT_RECIPIENT

    def test_recognition_settings_reach_engine(self, recognizer, synthesizer, scheduler):
        config = VoiceUPIConfig(
            api_enabled=False,
            recognition_lang="hi-IN",
            recognition_continuous=False,
            recognition_interim_results=False,
        )
        VoiceUPIService(
            config, recognizer=recognizer, synthesizer=synthesizer,
            scheduler=scheduler, bus=EventBus(),
        )
        assert recognizer.settings == RecognitionSettings(
            lang="hi-IN", continuous=False, interim_results=False,
        )

    def test_submit_transcript(self, listening):
        assert listening.submit_transcript("initiate payment") is True
        listening.bus.run_pending()
        assert listening.machine.state is DialogueState.SELECT_RECIPIENT

    def test_snapshot_keys(self, service):
        assert set(service.snapshot()) == {
            "state", "draft", "transcript", "interim", "status",
            "listening", "speaking", "recognition_available", "history_count",
        }

    def test_find_contact(self, service):
        assert service.find_contact(contact_id="2").name == "John"
        assert service.find_contact(name="LISA").upi_id == "lisa@phonepe"
        assert service.find_contact(contact_id="abc") is None
        assert service.find_contact() is None

    def test_console_commands(self, service, synthesizer, scheduler):
        assert service.handle_console_command("/new")
        assert service.handle_console_command("/tap david")
        assert service.handle_console_command("/amount 42")
        service.bus.run_pending()
        assert service.machine.state is DialogueState.CONFIRM
        assert service.handle_console_command("/home")
        service.bus.run_pending()
        assert service.machine.state is DialogueState.HOME
        assert service.snapshot()["draft"]["recipient"] == ""
        assert service.handle_console_command("/status")
        assert not service.handle_console_command("/dance")
        assert service.handle_console_command("/quit")
        assert service.wait_for_quit(timeout=0)

    def test_start_stop(self, service):
        service.start()
        assert service.is_running
        service.stop()
        assert not service.is_running
        assert not service.bus.running
