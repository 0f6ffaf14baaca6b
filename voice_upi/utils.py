#!/usr/bin/env python3
"""
Voice UPI Utilities

Logging and crash protection for the Voice UPI service.
"""

import os
import sys
import traceback
import threading
from datetime import datetime

# Global lock for stdout so engine threads and the event worker don't interleave lines
_stdout_lock = threading.Lock()


def upi_log(tag: str, message: str, level: str = "INFO"):
    """
    Log a message with timestamp and tag.

    Format: [HH:MM:SS.mmm] [LEVEL] [TAG] message

    Args:
        tag: Component tag (e.g., "TURN", "DIALOG", "LEDGER")
        message: Log message
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

    # Format: [14:08:25.342] [INFO] [TURN] Recognition resumed
    log_line = f"[{timestamp}] [{level}] [{tag}] {message}"

    with _stdout_lock:
        print(log_line, flush=True)


def log_crash(exc_type, exc_value, exc_traceback):
    """
    Log crash information to file for debugging.

    Args:
        exc_type: Exception type
        exc_value: Exception value
        exc_traceback: Exception traceback
    """
    from voice_upi import LOGS_DIR
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    crash_file = os.path.join(LOGS_DIR, f"voice_upi_crash_{timestamp}.log")

    try:
        with open(crash_file, 'w', encoding='utf-8') as f:
            f.write("Voice UPI Crash Log\n")
            f.write(f"Timestamp: {timestamp}\n")
            f.write(f"Exception Type: {exc_type.__name__}\n")
            f.write(f"Exception Value: {exc_value}\n")
            f.write("\nTraceback:\n")
            traceback.print_exception(exc_type, exc_value, exc_traceback, file=f)
            f.write("\n\nThread Information:\n")
            for thread in threading.enumerate():
                f.write(f"  - {thread.name} (daemon={thread.daemon})\n")

        upi_log("CRASH", f"Crash log saved to {crash_file}", level="ERROR")
    except OSError as e:
        print(f"[CRITICAL] Failed to write crash log: {e}", file=sys.stderr)


def setup_crash_protection():
    """
    Setup global crash protection for the application.

    This should be called once at the start of the application.
    """
    def custom_excepthook(exc_type, exc_value, exc_traceback):
        log_crash(exc_type, exc_value, exc_traceback)
        # Still print to stderr
        sys.__excepthook__(exc_type, exc_value, exc_traceback)

    sys.excepthook = custom_excepthook
    upi_log("INIT", "Crash protection enabled")
