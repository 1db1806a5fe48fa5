"""Encrypted storage of the completion API key."""

from __future__ import annotations

import base64
import json
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

KDF_ITERATIONS = 390000
SALT_BYTES = 16


def derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class CredentialStore:
    """Fernet-encrypted key file, keyed by a passphrase.

    Without a passphrase the key is written in plain text and the file is
    flagged with `"encrypted": false`.
    """

    def __init__(self, path: Path, passphrase: Optional[str] = None):
        self.path = Path(path)
        self.passphrase = passphrase

    @property
    def encryption_available(self) -> bool:
        return bool(self.passphrase)

    def _read(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as handle:
            return json.load(handle)

    def get(self) -> Optional[str]:
        try:
            data = self._read()
        except (OSError, ValueError) as exc:
            logger.error("Error loading API key: %s", exc)
            return None
        if not data:
            return None

        if not data.get("encrypted"):
            return data.get("secret")

        if not self.encryption_available:
            logger.error("API key is encrypted but no passphrase is configured")
            return None
        try:
            salt = base64.b64decode(data["salt"])
            fernet = Fernet(derive_key(self.passphrase, salt))
            return fernet.decrypt(data["secret"].encode("ascii")).decode("utf-8")
        except (InvalidToken, KeyError, ValueError) as exc:
            logger.error("Error decrypting API key: %s", exc)
            return None

    def set(self, secret: str) -> bool:
        if self.encryption_available:
            salt = os.urandom(SALT_BYTES)
            fernet = Fernet(derive_key(self.passphrase, salt))
            data = {
                "encrypted": True,
                "salt": base64.b64encode(salt).decode("ascii"),
                "secret": fernet.encrypt(secret.encode("utf-8")).decode("ascii"),
            }
        else:
            logger.warning("Encryption not available, falling back to plain storage")
            data = {"encrypted": False, "secret": secret}

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.chmod(self.path, 0o600)
            return True
        except OSError as exc:
            logger.error("Error saving API key: %s", exc)
            return False

    def delete(self) -> bool:
        try:
            if self.path.exists():
                self.path.unlink()
            return True
        except OSError as exc:
            logger.error("Error deleting API key: %s", exc)
            return False

    def is_encrypted(self) -> Optional[bool]:
        try:
            data = self._read()
        except (OSError, ValueError):
            return None
        if not data:
            return None
        return bool(data.get("encrypted"))
