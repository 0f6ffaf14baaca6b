#!/usr/bin/env python3
"""Dialogue state definitions for Voice UPI."""

from enum import Enum


class DialogueState(Enum):
    """Conversation states; exactly one is active at a time."""
    HOME = "home"                          # Waiting for "initiate payment"
    SELECT_RECIPIENT = "select_recipient"  # Waiting for a contact name
    ENTER_AMOUNT = "enter_amount"          # Waiting for an amount
    CONFIRM = "confirm"                    # Waiting for approval
    PROCESSING = "processing"              # Simulated settlement, locked
    SUCCESS = "success"                    # Result dwell, locked
    HISTORY = "history"                    # Showing completed transactions


# Payment is irrevocable once approved: no command is accepted here
LOCKED_STATES = frozenset({DialogueState.PROCESSING, DialogueState.SUCCESS})
