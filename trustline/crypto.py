from argon2.low_level import hash_secret_raw, Type
from nacl.bindings import (
    crypto_aead_xchacha20poly1305_ietf_encrypt,
    crypto_aead_xchacha20poly1305_ietf_decrypt,
    crypto_aead_xchacha20poly1305_ietf_KEYBYTES,
    crypto_aead_xchacha20poly1305_ietf_NPUBBYTES,
    crypto_aead_xchacha20poly1305_ietf_ABYTES,
)
from nacl.exceptions import CryptoError
import os, hmac, base64, binascii

from .settings import KdfParams

NONCE_SIZE = crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
KEY_SIZE = crypto_aead_xchacha20poly1305_ietf_KEYBYTES
TAG_SIZE = crypto_aead_xchacha20poly1305_ietf_ABYTES
SALT_SIZE = 16


def kdf_argon2id(password_bytes: bytes, salt: bytes, params: KdfParams) -> bytes:
    """Derive a KEY_SIZE-byte key from the user-supplied password using Argon2id."""
    try:
        return hash_secret_raw(
            bytes(password_bytes),
            salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=KEY_SIZE,
            type=Type.ID,
        )
    finally:
        zero_bytes(password_bytes)


def gen_nonce() -> bytes:
    """Random 24-byte XChaCha20 nonce; sent as the payload `iv`."""
    return os.urandom(NONCE_SIZE)


def gen_salt() -> bytes:
    """Return a fresh random salt for key derivation."""
    return os.urandom(SALT_SIZE)


def aead_encrypt(key: bytes, nonce: bytes, plaintext: bytes, ad: bytes) -> bytes:
    """XChaCha20-Poly1305 seal; the result is ciphertext followed by the 16-byte tag."""
    return crypto_aead_xchacha20poly1305_ietf_encrypt(plaintext, ad, nonce, key)


def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, ad: bytes) -> bytes:
    """Open a ciphertext from `aead_encrypt`. Any tag mismatch becomes ValueError."""
    try:
        return crypto_aead_xchacha20poly1305_ietf_decrypt(ciphertext, ad, nonce, key)
    except CryptoError as exc:
        raise ValueError("decryption failed") from exc


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d_strict(s: str) -> bytes:
    """Decode base64, rejecting anything that does not re-encode to the same text."""
    if not isinstance(s, str):
        raise ValueError("expected base64 text")
    try:
        raw = base64.b64decode(s.encode("ascii"), validate=True)
    except (UnicodeEncodeError, binascii.Error) as exc:
        raise ValueError("invalid base64") from exc
    if b64e(raw) != s:
        raise ValueError("non-canonical base64")
    return raw


def consteq(a, b) -> bool:
    """hmac.compare_digest for digests and checksums."""
    return hmac.compare_digest(a, b)


def zero_bytes(b):
    """Overwrite a bytearray or writable memoryview in place. Immutable bytes are left alone."""
    if isinstance(b, bytearray):
        for i in range(len(b)):
            b[i] = 0
    elif isinstance(b, memoryview) and not b.readonly:
        b[:] = b"\x00" * len(b)
