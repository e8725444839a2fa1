"""AES-256-GCM envelopes for secrets stored on disk.

The key is 32 random bytes kept as 64 hex characters in `<data-dir>/.encryption-key`
(mode 0600). It is generated on first use and cached for the process lifetime.

Envelope format: {"iv": hex, "authTag": hex, "data": hex} with a 16-byte random
IV per encryption and a 16-byte authentication tag.
"""

import os
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from fluxdigest.core.exceptions import DecryptionError
from fluxdigest.core.logging import get_logger

logger = get_logger(__name__)

KEY_FILE_NAME = ".encryption-key"
IV_BYTES = 16
TAG_BYTES = 16


class SecretBox:
    """Encrypts and decrypts secrets with the persisted process key."""

    def __init__(self, data_dir: Path) -> None:
        self.key_path = Path(data_dir) / KEY_FILE_NAME
        self._key: bytes | None = None

    def _load_key(self) -> bytes:
        if self._key is not None:
            return self._key

        if self.key_path.exists():
            key_hex = self.key_path.read_text(encoding="utf-8").strip()
        else:
            key_hex = secrets.token_hex(32)
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(key_hex)
            logger.bind(path=str(self.key_path)).info("encryption_key_created")

        self._key = bytes.fromhex(key_hex)
        return self._key

    def encrypt(self, plaintext: str | None) -> dict[str, str] | None:
        """Encrypt a string into an envelope; empty input yields None."""
        if not plaintext:
            return None

        iv = secrets.token_bytes(IV_BYTES)
        sealed = AESGCM(self._load_key()).encrypt(iv, plaintext.encode("utf-8"), None)
        return {
            "iv": iv.hex(),
            "authTag": sealed[-TAG_BYTES:].hex(),
            "data": sealed[:-TAG_BYTES].hex(),
        }

    def decrypt(self, envelope: dict[str, str]) -> str:
        """Decrypt an envelope.

        Raises:
            DecryptionError: the envelope is malformed or fails authentication
        """
        try:
            iv = bytes.fromhex(envelope["iv"])
            tag = bytes.fromhex(envelope["authTag"])
            data = bytes.fromhex(envelope["data"])
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionError(f"Malformed secret envelope: {e}") from e

        if len(tag) != TAG_BYTES:
            raise DecryptionError("Malformed secret envelope: bad tag length")

        try:
            plaintext = AESGCM(self._load_key()).decrypt(iv, data + tag, None)
        except ValueError as e:
            raise DecryptionError(f"Malformed secret envelope: {e}") from e
        except InvalidTag as e:
            raise DecryptionError("Secret envelope failed authentication") from e

        return plaintext.decode("utf-8")
