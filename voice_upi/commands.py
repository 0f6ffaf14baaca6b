#!/usr/bin/env python3
"""
Command interpreter.

Maps a finalized utterance to a Command for the current dialogue state.
Pure: no side effects, no access to the speech engines or the ledger.
Rules are data tables so each state's grammar can be read at a glance.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Sequence

from voice_upi.ledger import Contact
from voice_upi.state_machine import DialogueState


class CommandKind(Enum):
    SHOW_HISTORY = auto()
    CANCEL = auto()
    GO_HOME = auto()      # screen-only: leave a view without announcing anything
    INITIATE_PAYMENT = auto()
    SELECT_CONTACT = auto()
    SET_AMOUNT = auto()
    APPROVE = auto()
    UNRECOGNIZED = auto()


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    contact: Optional[Contact] = None
    amount: Optional[str] = None
    history_count: int = 0

    @classmethod
    def select_contact(cls, contact: Contact) -> "Command":
        return cls(CommandKind.SELECT_CONTACT, contact=contact)

    @classmethod
    def set_amount(cls, amount: str) -> "Command":
        return cls(CommandKind.SET_AMOUNT, amount=amount)

    @classmethod
    def show_history(cls, count: int = 0) -> "Command":
        return cls(CommandKind.SHOW_HISTORY, history_count=count)


UNRECOGNIZED = Command(CommandKind.UNRECOGNIZED)

# Checked first, in every state
GLOBAL_RULES = (
    (re.compile(r"\b(show|view|display)\s+(transaction\s+)?(history|transactions)\b", re.IGNORECASE),
     CommandKind.SHOW_HISTORY),
    (re.compile(r"\b(cancel|stop|abort|go back|home)\b", re.IGNORECASE),
     CommandKind.CANCEL),
)

STATE_RULES = {
    DialogueState.HOME: (
        (re.compile(r"\b(initiate|start|begin|make)\s+(a\s+)?(payments?|pay)\b", re.IGNORECASE),
         CommandKind.INITIATE_PAYMENT),
    ),
    DialogueState.CONFIRM: (
        (re.compile(r"\b(approve|confirm|yes|proceed)\b", re.IGNORECASE),
         CommandKind.APPROVE),
    ),
}

AMOUNT_PATTERN = re.compile(r"(?<!\d)(\d{1,7})(?!\d)(?:\s*(?:rupees?|rs)\b)?", re.IGNORECASE)
_THOUSANDS_SEPARATOR = re.compile(r"(?<=\d),(?=\d{2,3}(?!\d))")


def match_contact(text: str, contacts: Sequence[Contact]) -> Optional[Contact]:
    """First contact (directory order) whose name appears as whole words."""
    for contact in contacts:
        name = contact.name.strip().lower()
        if name and re.search(r"(?<!\w)" + re.escape(name) + r"(?!\w)", text):
            return contact
    return None


def extract_amount(text: str) -> Optional[str]:
    """First standalone run of 1-7 digits, thousands separators removed."""
    match = AMOUNT_PATTERN.search(_THOUSANDS_SEPARATOR.sub("", text))
    return match.group(1) if match else None


def interpret(
    state: DialogueState,
    utterance: str,
    contacts: Sequence[Contact],
    history_count: int = 0,
) -> Command:
    text = (utterance or "").lower().strip()
    if not text:
        return UNRECOGNIZED

    for pattern, kind in GLOBAL_RULES:
        if pattern.search(text):
            if kind is CommandKind.SHOW_HISTORY:
                return Command.show_history(history_count)
            return Command(kind)

    for pattern, kind in STATE_RULES.get(state, ()):
        if pattern.search(text):
            return Command(kind)

    if state is DialogueState.SELECT_RECIPIENT:
        contact = match_contact(text, contacts)
        if contact is not None:
            return Command.select_contact(contact)

    if state is DialogueState.ENTER_AMOUNT:
        amount = extract_amount(text)
        if amount is not None:
            return Command.set_amount(amount)

    return UNRECOGNIZED
