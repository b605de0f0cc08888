"""Persisted browser session (cookie set) shared between runs."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional


class SessionStore:
    """Reads and writes the cookie set captured after a successful login.

    The file holds either a bare JSON list of cookies (as exported by other
    tools) or ``{"cookies": [...], "timestamp": ...}`` as written here.
    """

    def __init__(self, path: str, cookies_base64: Optional[str] = None):
        self.path = path
        self.cookies_base64 = cookies_base64

    def bootstrap(self) -> bool:
        """Materialize a base64-encoded cookie export into the state file."""
        if not self.cookies_base64:
            return False
        try:
            payload = base64.b64decode(self.cookies_base64, validate=True)
            json.loads(payload)
        except (binascii.Error, ValueError) as e:
            logging.warning("Ignoring COOKIES_BASE64: %s", e)
            return False
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "wb") as f:
            f.write(payload)
        logging.info("Cookie file %s created from COOKIES_BASE64.", self.path)
        return True

    def load_session(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning("Failed to load session state: %s", e)
            return []

        cookies = state.get("cookies", []) if isinstance(state, dict) else state
        if not isinstance(cookies, list):
            logging.warning("Session state at %s has no cookie list.", self.path)
            return []
        return [c for c in cookies if isinstance(c, dict)]

    def persist_session(self, cookies: List[Dict[str, Any]]) -> None:
        state = {"cookies": list(cookies or []), "timestamp": time.time()}
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
            logging.info("Session state saved to %s.", self.path)
        except OSError as e:
            logging.warning("Failed to save session state: %s", e)
