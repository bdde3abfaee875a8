"""Wallet credential check, unlock and child-process forwarding helpers."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

import bcrypt

from deepdex.config import wallet_path
from deepdex.contracts import WALLET_PASSWORD_ENV, WALLET_SCHEMA_V1

logger = logging.getLogger("deepdex.services.wallet")

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


def password_from_env() -> str:
    return str(os.getenv(WALLET_PASSWORD_ENV, ""))


def child_environment(password: str) -> dict[str, str]:
    """Environment entries that let a spawned worker unlock without prompting."""
    if not password:
        return {}
    return {WALLET_PASSWORD_ENV: password}


class WalletService:
    """Unlock state lives only in this instance; it never crosses processes."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or wallet_path()
        self._unlocked = False

    def _load_raw(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable wallet file %s: %s", self.path, exc)
            return None
        if not isinstance(raw, dict) or not raw.get("password_hash"):
            return None
        return raw

    def exists(self) -> bool:
        return self._load_raw() is not None

    def is_unlocked(self) -> bool:
        return self._unlocked

    def active_wallet_name(self) -> str | None:
        raw = self._load_raw()
        if raw is None:
            return None
        return str(raw.get("name", "")).strip() or None

    def unlock(self, password: str) -> None:
        """Verify password against the stored bcrypt hash."""
        raw = self._load_raw()
        if raw is None:
            raise ValueError("No wallet found. Run 'deepdex wallet init' first.")
        candidate = (password or "").encode("utf-8")
        if len(candidate) > MAX_PASSWORD_BYTES:
            raise ValueError("Invalid password")
        try:
            matched = bcrypt.checkpw(candidate, str(raw["password_hash"]).encode("utf-8"))
        except ValueError as exc:
            logger.warning("Wallet hash in %s is malformed: %s", self.path, exc)
            raise ValueError("Wallet file is corrupt; run 'deepdex wallet init --force'.") from exc
        if not matched:
            raise ValueError("Invalid password")
        self._unlocked = True

    def create(self, password: str, name: str = "default") -> dict[str, Any]:
        encoded = (password or "").encode("utf-8")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        wallet_name = str(name).strip() or "default"
        payload = {
            "schema_version": WALLET_SCHEMA_V1,
            "name": wallet_name,
            "password_hash": bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8"),
            "createdAt": int(time.time() * 1000),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        self._unlocked = True
        logger.info("Wallet %s written to %s", wallet_name, self.path)
        return {"name": wallet_name, "path": str(self.path)}

    def status(self) -> dict[str, Any]:
        raw = self._load_raw()
        if raw is None:
            return {"exists": False, "name": None, "created_at": None, "path": str(self.path)}
        return {
            "exists": True,
            "name": self.active_wallet_name(),
            "created_at": raw.get("createdAt"),
            "path": str(self.path),
        }
