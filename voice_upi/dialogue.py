#!/usr/bin/env python3
"""
Dialogue state machine.

Applies Commands to the current DialogueState and describes the side effects
as a Reaction (prompt to speak, status text, timer to schedule). The caller
executes the reaction; the machine itself never touches the speech engines.
"""

import threading
from dataclasses import dataclass
from typing import Optional, Tuple

from voice_upi.commands import Command, CommandKind
from voice_upi.i18n import t
from voice_upi.ledger import CompletedTransaction, InvalidDraftError, TransactionLedger
from voice_upi.state_machine import DialogueState, LOCKED_STATES
from voice_upi.utils import upi_log

SETTLEMENT_TIMER = "settlement"
SUCCESS_DWELL_TIMER = "success_dwell"

# State-specific commands; SHOW_HISTORY and CANCEL are accepted in every unlocked state
STATE_COMMANDS = {
    DialogueState.HOME: {CommandKind.INITIATE_PAYMENT},
    DialogueState.SELECT_RECIPIENT: {CommandKind.SELECT_CONTACT},
    DialogueState.ENTER_AMOUNT: {CommandKind.SET_AMOUNT},
    DialogueState.CONFIRM: {CommandKind.APPROVE},
    DialogueState.HISTORY: set(),
}
GLOBAL_COMMANDS = {CommandKind.SHOW_HISTORY, CommandKind.CANCEL, CommandKind.GO_HOME}

_HINT_KEYS = {
    DialogueState.HOME: "home",
    DialogueState.SELECT_RECIPIENT: "select_recipient",
    DialogueState.ENTER_AMOUNT: "enter_amount",
    DialogueState.CONFIRM: "confirm",
    DialogueState.HISTORY: "history",
}


@dataclass(frozen=True)
class TimerRequest:
    name: str
    delay: float


@dataclass(frozen=True)
class Reaction:
    """Side effects requested by a transition.

    status None means "leave the status text alone"; "" clears it.
    """
    previous: DialogueState
    state: DialogueState
    prompt: Optional[str] = None
    status: Optional[str] = None
    interrupt: bool = False
    timer: Optional[TimerRequest] = None
    transaction: Optional[CompletedTransaction] = None
    handled: bool = True

    @property
    def changed(self) -> bool:
        return self.previous is not self.state


class DialogueStateMachine:
    """Owns the current DialogueState; drives the ledger on its behalf."""

    def __init__(
        self,
        ledger: TransactionLedger,
        processing_delay: float = 2.0,
        success_dwell: float = 3.0,
    ):
        self._ledger = ledger
        self._processing_delay = processing_delay
        self._success_dwell = success_dwell
        self._state = DialogueState.HOME
        self._pending_timer: Optional[str] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> DialogueState:
        with self._lock:
            return self._state

    @property
    def pending_timer(self) -> Optional[str]:
        with self._lock:
            return self._pending_timer

    def accepts(self, kind: CommandKind) -> bool:
        """Whether a command of this kind is valid in the current state."""
        with self._lock:
            if self._state in LOCKED_STATES:
                return False
            return kind in GLOBAL_COMMANDS or kind in STATE_COMMANDS.get(self._state, ())

    def apply(self, command: Command) -> Reaction:
        with self._lock:
            previous = self._state
            if previous in LOCKED_STATES:
                upi_log("DIALOG", f"Ignoring {command.kind.name} while {previous.value}")
                return Reaction(previous, previous, status=t("status.locked"), handled=False)

            if not self.accepts(command.kind):
                return self._not_understood(command)

            handler = getattr(self, f"_on_{command.kind.name.lower()}")
            return handler(command)

    def on_timer(self, name: str) -> Reaction:
        """A scheduled timer fired; stale or unexpected firings are ignored."""
        with self._lock:
            previous = self._state
            if name != self._pending_timer:
                upi_log("DIALOG", f"Ignoring stale timer '{name}' (pending: {self._pending_timer})", level="WARNING")
                return Reaction(previous, previous, handled=False)
            self._pending_timer = None

            if name == SETTLEMENT_TIMER:
                return self._settle()

            # Success dwell over: back to a clean home screen
            self._ledger.begin_draft()
            self._set_state(DialogueState.HOME)
            return Reaction(previous, DialogueState.HOME, status="")

    def listening_hint(self) -> Optional[Tuple[str, str]]:
        """(prompt, status) spoken when the user switches listening on."""
        key = _HINT_KEYS.get(self.state)
        if key is None:
            return None
        return t(f"hints.{key}"), t(f"status.hints.{key}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_state(self, new_state: DialogueState):
        old_state = self._state
        self._state = new_state
        upi_log("STATE", f"{old_state.value} → {new_state.value}")

    def _not_understood(self, command: Command) -> Reaction:
        upi_log("DIALOG", f"Not understood in {self._state.value}: {command.kind.name}")
        return Reaction(
            self._state, self._state,
            prompt=t("prompts.not_understood"),
            status=t("status.not_recognized"),
            handled=False,
        )

    def _on_show_history(self, command: Command) -> Reaction:
        previous = self._state
        count = len(self._ledger)
        self._set_state(DialogueState.HISTORY)
        key = "prompts.history_one" if count == 1 else "prompts.history_many"
        return Reaction(
            previous, DialogueState.HISTORY,
            prompt=t(key, count=count),
            status=t("status.history", count=count),
        )

    def _on_cancel(self, command: Command) -> Reaction:
        previous = self._state
        self._ledger.begin_draft()
        self._set_state(DialogueState.HOME)
        return Reaction(
            previous, DialogueState.HOME,
            prompt=t("prompts.cancelled"),
            status=t("status.cancelled"),
            interrupt=True,
        )

    def _on_go_home(self, command: Command) -> Reaction:
        previous = self._state
        self._ledger.begin_draft()
        self._set_state(DialogueState.HOME)
        return Reaction(previous, DialogueState.HOME, status="", interrupt=True)

    def _on_initiate_payment(self, command: Command) -> Reaction:
        self._ledger.begin_draft()
        self._set_state(DialogueState.SELECT_RECIPIENT)
        return Reaction(
            DialogueState.HOME, DialogueState.SELECT_RECIPIENT,
            prompt=t("prompts.select_contact"),
            status=t("status.select_contact"),
        )

    def _on_select_contact(self, command: Command) -> Reaction:
        contact = command.contact
        self._ledger.update_draft(recipient=contact.name, upi_id=contact.upi_id)
        self._set_state(DialogueState.ENTER_AMOUNT)
        return Reaction(
            DialogueState.SELECT_RECIPIENT, DialogueState.ENTER_AMOUNT,
            prompt=t("prompts.enter_amount", name=contact.name),
            status=t("status.enter_amount", name=contact.name),
        )

    def _on_set_amount(self, command: Command) -> Reaction:
        draft = self._ledger.update_draft(amount=command.amount)
        self._set_state(DialogueState.CONFIRM)
        return Reaction(
            DialogueState.ENTER_AMOUNT, DialogueState.CONFIRM,
            prompt=t("prompts.confirm", amount=draft.amount, recipient=draft.recipient, upi_id=draft.upi_id),
            status=t("status.confirm"),
        )

    def _on_approve(self, command: Command) -> Reaction:
        self._set_state(DialogueState.PROCESSING)
        self._pending_timer = SETTLEMENT_TIMER
        return Reaction(
            DialogueState.CONFIRM, DialogueState.PROCESSING,
            prompt=t("prompts.processing"),
            status=t("status.processing"),
            timer=TimerRequest(SETTLEMENT_TIMER, self._processing_delay),
        )

    def _settle(self) -> Reaction:
        try:
            transaction = self._ledger.commit()
        except InvalidDraftError as e:
            upi_log("DIALOG", f"Settlement aborted: {e}", level="ERROR")
            self._ledger.begin_draft()
            self._set_state(DialogueState.HOME)
            return Reaction(
                DialogueState.PROCESSING, DialogueState.HOME,
                prompt=t("prompts.payment_failed"),
                status=t("status.payment_failed", error=e),
                handled=False,
            )

        self._set_state(DialogueState.SUCCESS)
        self._pending_timer = SUCCESS_DWELL_TIMER
        return Reaction(
            DialogueState.PROCESSING, DialogueState.SUCCESS,
            prompt=t("prompts.success", amount=transaction.amount, recipient=transaction.recipient),
            status=t("status.success"),
            timer=TimerRequest(SUCCESS_DWELL_TIMER, self._success_dwell),
            transaction=transaction,
        )
