from __future__ import annotations

import base64
import hashlib
import logging
import os
import threading
import time
from typing import Callable, Optional

import pyotp
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16
DEFAULT_DIGITS = 6
DEFAULT_INTERVAL_S = 30

_KEY_ENV = "TOTP_ENCRYPTION_KEY"
_NONCE_BYTES = 12


class TotpError(RuntimeError):
    """
    Base class for secret/code failures. None of these are worth retrying.

    When raised out of a login, `state` and `attempts` say where it happened.
    """

    state: Optional[str] = None  # a LoginState
    attempts: Optional[int] = None


class InvalidSecretFormat(TotpError):
    pass


class NoSecretAvailable(TotpError):
    pass


class CodeGenerationError(TotpError):
    pass


def validate_secret(secret: Optional[str]) -> bool:
    return bool(secret) and len(secret) >= MIN_SECRET_LENGTH


def _key_from_env() -> Optional[bytes]:
    raw = (os.getenv(_KEY_ENV, "") or "").strip()
    if not raw:
        return None
    try:
        key = base64.urlsafe_b64decode(raw)
        if len(key) == 32:
            return key
    except ValueError:
        pass
    # Not a base64 AES key: treat it as a passphrase.
    return hashlib.sha256(raw.encode("utf-8")).digest()


class SecretCipher:
    """
    AES-256-GCM wrapper used to keep the shared secret encrypted while it sits in memory.

    The key comes from `TOTP_ENCRYPTION_KEY` (a urlsafe-base64 32 byte key, or any passphrase),
    otherwise a random key is generated for the lifetime of the process.
    """

    def __init__(self, key: Optional[bytes] = None) -> None:
        key = key or _key_from_env() or AESGCM.generate_key(bit_length=256)
        if len(key) != 32:
            raise ValueError("AES-256-GCM key must be 32 bytes")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(nonce + ct).decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = base64.urlsafe_b64decode(token.encode("ascii"))
        nonce, ct = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        return self._aesgcm.decrypt(nonce, ct, None).decode("utf-8")


_process_cipher: Optional[SecretCipher] = None
_process_cipher_lock = threading.Lock()


def process_cipher() -> SecretCipher:
    global _process_cipher
    with _process_cipher_lock:
        if _process_cipher is None:
            _process_cipher = SecretCipher()
        return _process_cipher


class SecretSlot:
    """
    Holds at most one encrypted secret.

    The lock is re-entrant so a generator can hold it across set -> decrypt -> generate.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._token: Optional[str] = None

    def put(self, token: str) -> None:
        with self.lock:
            self._token = token

    def get(self) -> Optional[str]:
        with self.lock:
            return self._token

    def clear(self) -> None:
        with self.lock:
            self._token = None


# Slot shared by every `TotpGenerator.shared()` instance in this process.
_PROCESS_SLOT = SecretSlot()


class TotpGenerator:
    """
    Time-based one-time password source for the 2FA step.

    A plain `TotpGenerator()` owns its own slot, so the secret lives exactly as long as the caller's
    session (use it as a context manager to clear on exit). `TotpGenerator.shared()` binds to the
    process-wide slot instead, for suites that set the secret once in a fixture and read it from
    independently constructed page objects.
    """

    def __init__(
        self,
        *,
        slot: Optional[SecretSlot] = None,
        cipher: Optional[SecretCipher] = None,
        clock: Callable[[], float] = time.time,
        digits: int = DEFAULT_DIGITS,
        interval_s: int = DEFAULT_INTERVAL_S,
    ) -> None:
        self._slot = slot or SecretSlot()
        self._cipher = cipher or process_cipher()
        self._clock = clock
        self.digits = digits
        self.interval_s = interval_s

    @classmethod
    def shared(cls, **kwargs) -> "TotpGenerator":
        return cls(slot=_PROCESS_SLOT, **kwargs)

    def __enter__(self) -> "TotpGenerator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.clear_secret()

    @staticmethod
    def validate_secret(secret: Optional[str]) -> bool:
        return validate_secret(secret)

    def has_secret(self) -> bool:
        return self._slot.get() is not None

    def set_secret(self, secret: str) -> None:
        if not validate_secret(secret):
            raise InvalidSecretFormat(
                f"Invalid TOTP secret format (expected at least {MIN_SECRET_LENGTH} characters)"
            )
        self._slot.put(self._cipher.encrypt(secret))

    def clear_secret(self) -> None:
        self._slot.clear()

    def generate_code(self, secret_override: Optional[str] = None) -> str:
        with self._slot.lock:
            if secret_override:
                self.set_secret(secret_override)

            token = self._slot.get()
            if token is None:
                raise NoSecretAvailable("No TOTP secret available; call set_secret() or pass a secret")

            try:
                secret = self._cipher.decrypt(token)
            except Exception as e:
                raise CodeGenerationError(f"Could not decrypt stored TOTP secret: {e}") from e

            if not validate_secret(secret):
                raise InvalidSecretFormat("Stored TOTP secret is not valid")

            try:
                code = pyotp.TOTP(secret, digits=self.digits, interval=self.interval_s).at(self._clock())
            except Exception as e:
                raise CodeGenerationError(f"TOTP computation failed: {e}") from e

        if len(code) != self.digits or not code.isdigit():
            raise CodeGenerationError(f"TOTP computation produced a malformed code (len={len(code)})")
        return code

    def time_step(self) -> int:
        return int(self._clock() // self.interval_s)

    def seconds_remaining(self) -> float:
        """Seconds until the current code expires."""
        return self.interval_s - (self._clock() % self.interval_s)
