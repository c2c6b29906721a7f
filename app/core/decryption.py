import base64
import binascii
import logging
import os
import re
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.errors import DecryptionFailedError, MalformedPayloadError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
TAG_LENGTH = 16
MIN_PAYLOAD_LENGTH = NONCE_LENGTH + TAG_LENGTH

FALLBACK_KEY_BASE64 = "GNA3HyFn2G4quTorrGAOhR/Y93QVp6juyyhPeqPoa8U="

_NON_BASE64 = re.compile(r"[^a-zA-Z0-9/+=]")


def normalize_ciphertext(data: str) -> str:
    """Undo the damage URL transport does to a base64 payload."""
    normalized = unquote(data).strip()
    normalized = normalized.replace(" ", "+")
    normalized = _NON_BASE64.sub("", normalized)
    remainder = len(normalized) % 4
    if remainder:
        normalized += "=" * (4 - remainder)
    return normalized


def _decode_payload(data: str) -> bytes:
    if not data or not data.strip():
        raise MalformedPayloadError("Encrypted data is required")
    try:
        raw = base64.b64decode(normalize_ciphertext(data), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayloadError(f"Payload is not valid base64: {str(e)}")
    if len(raw) < MIN_PAYLOAD_LENGTH:
        raise MalformedPayloadError(
            f"Payload too short for nonce and tag: {len(raw)} bytes"
        )
    return raw


def _decrypt_raw(key: bytes, raw: bytes) -> str:
    nonce = raw[:NONCE_LENGTH]
    ciphertext = raw[NONCE_LENGTH:-TAG_LENGTH]
    tag = raw[-TAG_LENGTH:]
    try:
        # AESGCM expects the tag appended to the ciphertext
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionFailedError("Authentication tag mismatch")
    except ValueError as e:
        raise DecryptionFailedError(f"Unusable key: {str(e)}")
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPayloadError(f"Decrypted payload is not UTF-8: {str(e)}")


def decrypt_aes_gcm(key: bytes, data: str) -> str:
    """Decrypt ``base64(nonce | ciphertext | tag)`` with AES-GCM."""
    if not key:
        raise DecryptionFailedError("AES key is required")
    return _decrypt_raw(key, _decode_payload(data))


def encrypt_aes_gcm(key: bytes, plaintext: str, nonce: Optional[bytes] = None) -> str:
    nonce = nonce or os.urandom(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def _app_key_utf8(app_key: Optional[str]) -> Optional[bytes]:
    if not app_key or not app_key.strip():
        return None
    return app_key[:32].encode("utf-8")


def _app_key_base64(app_key: Optional[str]) -> Optional[bytes]:
    if not app_key or not app_key.strip():
        return None
    try:
        return base64.b64decode(app_key, validate=True)
    except (binascii.Error, ValueError):
        return None


def _fallback_key(app_key: Optional[str]) -> Optional[bytes]:
    return base64.b64decode(FALLBACK_KEY_BASE64)


KeyStrategy = Tuple[str, Callable[[Optional[str]], Optional[bytes]]]

# Order matters: the first candidate that authenticates wins.
KEY_STRATEGIES: Tuple[KeyStrategy, ...] = (
    ("appkey-utf8-first32", _app_key_utf8),
    ("appkey-base64", _app_key_base64),
    ("fallback-base64-constant", _fallback_key),
)


def key_candidates(app_key: Optional[str]) -> List[Tuple[str, bytes]]:
    candidates = []
    for name, strategy in KEY_STRATEGIES:
        key = strategy(app_key)
        if key:
            candidates.append((name, key))
    return candidates


def decrypt_callback(data: str, app_key: Optional[str]) -> str:
    """
    Decrypt a provider callback payload, trying every key candidate in order.

    Raises MalformedPayloadError when the input cannot be a payload at all and
    DecryptionFailedError when no candidate authenticates.
    """
    raw = _decode_payload(data)
    candidates = key_candidates(app_key)
    logger.debug(f"Trying callback decryption with {len(candidates)} key candidates")

    last_failure: Optional[DecryptionFailedError] = None
    for name, key in candidates:
        try:
            plaintext = _decrypt_raw(key, raw)
            logger.info(f"Callback decrypted using key mode: {name}")
            return plaintext
        except DecryptionFailedError as e:
            logger.warning(f"Decryption failed for key mode {name}: {e.message}")
            last_failure = e

    raise last_failure or DecryptionFailedError("No key candidates available")
