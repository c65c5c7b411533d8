"""
Symmetric encryption for values stored in browser cookies (refresh token).

Combined format: base64url(iv) SEP base64url(ciphertext) [SEP base64url(tag)], unpadded base64url.
The tag segment is present exactly when the configured mode is authenticated (GCM).
Which modes produce a tag is declared in SUPPORTED_ALGORITHMS, not discovered at runtime.
"""
import base64
import logging
import os
import threading
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

_B64URL_ALPHABET = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")
_AES_BLOCK_BITS = 128


class DecryptionError(Exception):
    """Combined value is malformed, tampered with, or encrypted under another key/algorithm."""


@dataclass(frozen=True)
class CipherSpec:
    key_length: int
    mode: type
    authenticated: bool = False
    padded: bool = False
    # CBC/CTR take exactly one block as IV; GCM accepts 8..128 bytes
    iv_length_range: tuple[int, int] = (16, 16)


SUPPORTED_ALGORITHMS: dict[str, CipherSpec] = {}
for _bits in (128, 192, 256):
    SUPPORTED_ALGORITHMS[f"aes-{_bits}-gcm"] = CipherSpec(_bits // 8, modes.GCM, authenticated=True, iv_length_range=(8, 128))
    SUPPORTED_ALGORITHMS[f"aes-{_bits}-cbc"] = CipherSpec(_bits // 8, modes.CBC, padded=True)
    SUPPORTED_ALGORITHMS[f"aes-{_bits}-ctr"] = CipherSpec(_bits // 8, modes.CTR)
del _bits


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    """Strict unpadded base64url decode: only the canonical encoding of the bytes is accepted."""
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except ValueError as e:
        raise DecryptionError("invalid base64url segment") from e
    if b64url_encode(raw) != segment:
        raise DecryptionError("non-canonical base64url segment")
    return raw


class CryptoSuite:
    """Encrypt/decrypt strings with a fixed algorithm and key."""

    def __init__(self, algorithm: str, key: bytes, *, iv_length: int = 16, separator: str = "."):
        spec = SUPPORTED_ALGORITHMS.get(algorithm.lower())
        if spec is None:
            raise ValueError(f"Unsupported algorithm {algorithm!r}; expected one of {sorted(SUPPORTED_ALGORITHMS)}")
        if len(key) != spec.key_length:
            raise ValueError(f"{algorithm} requires a {spec.key_length}-byte key, got {len(key)} bytes")
        low, high = spec.iv_length_range
        if not low <= iv_length <= high:
            raise ValueError(f"{algorithm} requires an IV length between {low} and {high} bytes")
        if not separator or set(separator) & _B64URL_ALPHABET:
            raise ValueError("separator must be non-empty and outside the base64url alphabet")
        self._spec = spec
        self._key = key
        self._iv_length = iv_length
        self._separator = separator

    @property
    def authenticated(self) -> bool:
        return self._spec.authenticated

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(self._iv_length)
        data = plaintext.encode("utf-8")
        if self._spec.padded:
            padder = padding.PKCS7(_AES_BLOCK_BITS).padder()
            data = padder.update(data) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), self._spec.mode(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()

        parts = [b64url_encode(iv), b64url_encode(ciphertext)]
        if self._spec.authenticated:
            parts.append(b64url_encode(encryptor.tag))
        return self._separator.join(parts)

    def decrypt(self, combined: str) -> str:
        parts = combined.split(self._separator)
        expected = 3 if self._spec.authenticated else 2
        if len(parts) != expected:
            # Authenticated mode without a tag segment must never fall through to plain decryption
            raise DecryptionError(f"expected {expected} segments, got {len(parts)}")
        iv = b64url_decode(parts[0])
        ciphertext = b64url_decode(parts[1])
        if len(iv) != self._iv_length:
            raise DecryptionError("unexpected IV length")

        try:
            if self._spec.authenticated:
                mode = self._spec.mode(iv, b64url_decode(parts[2]))
            else:
                mode = self._spec.mode(iv)
            decryptor = Cipher(algorithms.AES(self._key), mode).decryptor()
            data = decryptor.update(ciphertext) + decryptor.finalize()
            if self._spec.padded:
                unpadder = padding.PKCS7(_AES_BLOCK_BITS).unpadder()
                data = unpadder.update(data) + unpadder.finalize()
            return data.decode("utf-8")
        except InvalidTag as e:
            raise DecryptionError("authentication tag verification failed") from e
        except ValueError as e:
            # Short tag, bad padding, wrong block alignment, invalid UTF-8
            raise DecryptionError(str(e)) from e


_refresh_crypto: CryptoSuite | None = None
_refresh_crypto_lock = threading.Lock()


def get_refresh_token_crypto() -> CryptoSuite:
    """Process-wide suite for the refresh-token cookie, built once from config."""
    global _refresh_crypto
    with _refresh_crypto_lock:
        if _refresh_crypto is None:
            from oidc_session.config import REFRESH_TOKEN_ALGORITHM, REFRESH_TOKEN_KEY

            key = REFRESH_TOKEN_KEY
            if not key:
                spec = SUPPORTED_ALGORITHMS.get(REFRESH_TOKEN_ALGORITHM)
                if spec is None:
                    raise ValueError(f"Unsupported algorithm {REFRESH_TOKEN_ALGORITHM!r}")
                key = os.urandom(spec.key_length)
                logger.warning(
                    "OIDC_REFRESH_TOKEN_KEY not set; generated a random %s key for this process "
                    "(refresh-token cookies will not survive a restart)",
                    REFRESH_TOKEN_ALGORITHM,
                )
            _refresh_crypto = CryptoSuite(REFRESH_TOKEN_ALGORITHM, key)
        return _refresh_crypto
