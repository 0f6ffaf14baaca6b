#!/usr/bin/env python3
"""Configuration loader for Voice UPI."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from voice_upi.ledger import Contact
from voice_upi.utils import upi_log

DEFAULT_CONTACTS = (
    Contact(1, "Ram", "ram@paytm"),
    Contact(2, "John", "john@phonepe"),
    Contact(3, "Sarah", "sarah@okaxis"),
    Contact(4, "Mike", "mike@paytm"),
    Contact(5, "Priya", "priya@googlepay"),
    Contact(6, "Amit", "amit@paytm"),
    Contact(7, "Lisa", "lisa@phonepe"),
    Contact(8, "Raj", "raj@bhim"),
    Contact(9, "Emma", "emma@okaxis"),
    Contact(10, "David", "david@paytm"),
)

QUICK_AMOUNTS = (100, 500, 1000, 2000, 5000)


def load_config_yaml(config_path: str = "config.yaml") -> dict:
    """Load configuration from a YAML file."""
    import yaml
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            upi_log("CONFIG", f"Warning: Failed to load {config_path}: {e}", level="WARNING")
    return {}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def parse_contacts(raw_contacts) -> List[Contact]:
    """Build the contact directory, skipping malformed or duplicate entries."""
    contacts: List[Contact] = []
    seen_names = set()
    if not isinstance(raw_contacts, list):
        return contacts

    for index, raw in enumerate(raw_contacts, start=1):
        if not isinstance(raw, dict):
            continue
        name = str(raw.get("name", "")).strip()
        upi_id = str(raw.get("upi_id", raw.get("upiId", ""))).strip()
        if not name or not upi_id:
            upi_log("CONFIG", f"Skipping contact #{index}: name and upi_id are required", level="WARNING")
            continue
        if name.lower() in seen_names:
            upi_log("CONFIG", f"Skipping duplicate contact name '{name}'", level="WARNING")
            continue
        try:
            contact_id = int(raw.get("id", index))
        except (TypeError, ValueError):
            contact_id = index
        seen_names.add(name.lower())
        contacts.append(Contact(contact_id, name, upi_id))
    return contacts


@dataclass
class VoiceUPIConfig:
    """Voice UPI service configuration."""

    # Language for prompt wording (grammar is English only)
    language: str = "en"

    # Recognition engine
    recognition_lang: str = "en-IN"
    recognition_continuous: bool = True
    recognition_interim_results: bool = True

    # Synthesis engine
    tts_lang: str = "en-IN"
    tts_rate: float = 0.95
    tts_pitch: float = 1.0
    tts_volume: float = 1.0

    # Dialogue timing (seconds)
    settling_delay: float = 0.15
    processing_delay: float = 2.0
    success_dwell: float = 3.0
    listening_hint_delay: float = 0.5

    # REST API server
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 7790

    # Extra phrases filtered from recogniser output on top of the locale list
    extra_echo_phrases: List[str] = field(default_factory=list)

    contacts: List[Contact] = field(default_factory=lambda: list(DEFAULT_CONTACTS))

    @classmethod
    def from_yaml(cls, yaml_config: Optional[dict]) -> "VoiceUPIConfig":
        """Create config from YAML + env vars."""
        yaml_config = yaml_config or {}
        config = cls()

        config.language = str(yaml_config.get("language", config.language)).strip() or "en"

        rec_cfg = yaml_config.get("recognition", {})
        tts_cfg = yaml_config.get("synthesis", {})
        dialog_cfg = yaml_config.get("dialogue", {})
        api_cfg = yaml_config.get("api", {})

        if isinstance(rec_cfg, dict):
            config.recognition_lang = str(rec_cfg.get("lang", config.recognition_lang)).strip()
            config.recognition_continuous = _as_bool(rec_cfg.get("continuous", config.recognition_continuous))
            config.recognition_interim_results = _as_bool(
                rec_cfg.get("interim_results", config.recognition_interim_results)
            )
            echo = rec_cfg.get("echo_phrases", [])
            if isinstance(echo, list):
                config.extra_echo_phrases = [str(p).strip() for p in echo if str(p).strip()]

        if isinstance(tts_cfg, dict):
            config.tts_lang = str(tts_cfg.get("lang", config.tts_lang)).strip()
            config.tts_rate = float(tts_cfg.get("rate", config.tts_rate))
            config.tts_pitch = float(tts_cfg.get("pitch", config.tts_pitch))
            config.tts_volume = float(tts_cfg.get("volume", config.tts_volume))

        if isinstance(dialog_cfg, dict):
            config.settling_delay = float(dialog_cfg.get("settling_delay", config.settling_delay))
            config.processing_delay = float(dialog_cfg.get("processing_delay", config.processing_delay))
            config.success_dwell = float(dialog_cfg.get("success_dwell", config.success_dwell))
            config.listening_hint_delay = float(
                dialog_cfg.get("listening_hint_delay", config.listening_hint_delay)
            )

        if isinstance(api_cfg, dict):
            config.api_enabled = _as_bool(api_cfg.get("enabled", config.api_enabled))
            config.api_host = str(api_cfg.get("host", config.api_host)).strip()
            config.api_port = int(api_cfg.get("port", config.api_port))

        if "contacts" in yaml_config:
            contacts = parse_contacts(yaml_config.get("contacts"))
            if contacts:
                config.contacts = contacts
            else:
                upi_log("CONFIG", "No valid contacts in config, using the demo directory", level="WARNING")

        # Env var overrides
        if os.getenv("VOICE_UPI_LANGUAGE"):
            config.language = os.getenv("VOICE_UPI_LANGUAGE").strip() or "en"
        if os.getenv("VOICE_UPI_RECOGNITION_LANG"):
            config.recognition_lang = os.getenv("VOICE_UPI_RECOGNITION_LANG").strip()
        if os.getenv("VOICE_UPI_TTS_RATE"):
            config.tts_rate = float(os.getenv("VOICE_UPI_TTS_RATE"))
        if os.getenv("VOICE_UPI_PROCESSING_DELAY"):
            config.processing_delay = float(os.getenv("VOICE_UPI_PROCESSING_DELAY"))
        if os.getenv("VOICE_UPI_SUCCESS_DWELL"):
            config.success_dwell = float(os.getenv("VOICE_UPI_SUCCESS_DWELL"))
        if os.getenv("VOICE_UPI_API_ENABLED"):
            config.api_enabled = _as_bool(os.getenv("VOICE_UPI_API_ENABLED"))
        if os.getenv("VOICE_UPI_API_HOST"):
            config.api_host = os.getenv("VOICE_UPI_API_HOST").strip()
        if os.getenv("VOICE_UPI_API_PORT"):
            config.api_port = int(os.getenv("VOICE_UPI_API_PORT"))

        for name in ("settling_delay", "processing_delay", "success_dwell", "listening_hint_delay"):
            if getattr(config, name) < 0:
                upi_log("CONFIG", f"Negative dialogue.{name}, using 0", level="WARNING")
                setattr(config, name, 0.0)

        return config

    def print_config_banner(self):
        """Print a startup summary with ASCII-safe formatting."""
        line = "=" * 58
        print("\n" + line)
        print("VOICE UPI PAYMENT SERVICE")
        print(line)
        print(f"STT   : {self.recognition_lang} (continuous={self.recognition_continuous})")
        print(f"TTS   : {self.tts_lang} rate={self.tts_rate} pitch={self.tts_pitch} volume={self.tts_volume}")
        print(f"Timing: settle={self.settling_delay}s processing={self.processing_delay}s dwell={self.success_dwell}s")
        print(f"API   : {'http://%s:%d' % (self.api_host, self.api_port) if self.api_enabled else 'disabled'}")
        print(f"Contacts: {', '.join(c.name for c in self.contacts)}")
        print(line + "\n")
