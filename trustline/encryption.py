"""
Password-based encryption for backup payloads.

Argon2id turns (password, salt) into a key; XChaCha20-Poly1305 encrypts
under that key with a fresh nonce. The Poly1305 tag gives tamper detection,
so a wrong password and a modified payload both fail the same way.
"""
import asyncio
from typing import Optional

from .crypto import (
    kdf_argon2id,
    gen_nonce,
    gen_salt,
    aead_encrypt,
    aead_decrypt,
    b64e,
    b64d_strict,
    zero_bytes,
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
)
from .errors import AuthenticationError, EmptyPasswordError, MalformedPayloadError
from .logging import get_logger
from .models import EncryptedPayload
from .settings import KdfParams

LOG = get_logger(False)

PAYLOAD_CONTEXT = b"trustline-payload-v1"
DEFAULT_TIMEOUT_S = 30.0


def _password_bytes(password: str) -> bytearray:
    if not isinstance(password, str) or not password.strip():
        raise EmptyPasswordError()
    # surrogatepass: a password holding lone surrogates still derives a stable key
    return bytearray(password.encode("utf-8", "surrogatepass"))


def _plaintext_bytes(plaintext: str) -> bytes:
    if not isinstance(plaintext, str):
        raise TypeError("plaintext must be text")
    try:
        return plaintext.encode("utf-8")
    except UnicodeEncodeError:
        raise MalformedPayloadError("Plaintext contains unpaired surrogate characters and cannot be encrypted.") from None


def _field_bytes(value: str, label: str) -> bytes:
    try:
        return b64d_strict(value)
    except ValueError as exc:
        raise MalformedPayloadError(f"{label} is not valid base64") from exc


class PayloadEncryptionService:
    """Stateless apart from the KDF work factor it was built with."""

    def __init__(self, kdf_params: Optional[KdfParams] = None):
        self.kdf_params = kdf_params or KdfParams()

    def _derive(self, password: bytearray, salt: bytes) -> bytes:
        # kdf_argon2id wipes the password buffer once the key is derived
        return kdf_argon2id(password, salt, self.kdf_params)

    def encrypt(self, plaintext: str, password: str) -> EncryptedPayload:
        """Encrypt `plaintext` under a key derived from `password` with a fresh salt and nonce."""
        data = _plaintext_bytes(plaintext)
        pw = _password_bytes(password)
        salt = gen_salt()
        nonce = gen_nonce()
        key = bytearray(self._derive(pw, salt))
        try:
            ct = aead_encrypt(bytes(key), nonce, data, PAYLOAD_CONTEXT)
        finally:
            zero_bytes(key)
        LOG.debug("payload_encrypted", size=len(ct))
        return EncryptedPayload(cipher_text=b64e(ct), salt=b64e(salt), iv=b64e(nonce))

    def decrypt(self, payload: EncryptedPayload, password: str) -> str:
        """Reverse `encrypt`; AuthenticationError on a wrong password or any modified field."""
        pw = _password_bytes(password)
        if not isinstance(payload, EncryptedPayload):
            try:
                payload = EncryptedPayload.model_validate(payload)
            except ValueError as exc:
                raise MalformedPayloadError("Encrypted payload must have cipherText, salt and iv text fields") from exc

        salt = _field_bytes(payload.salt, "salt")
        nonce = _field_bytes(payload.iv, "iv")
        ct = _field_bytes(payload.cipher_text, "cipherText")
        if len(salt) != SALT_SIZE:
            raise MalformedPayloadError(f"salt must be {SALT_SIZE} bytes")
        if len(nonce) != NONCE_SIZE:
            raise MalformedPayloadError(f"iv must be {NONCE_SIZE} bytes")
        if len(ct) < TAG_SIZE:
            raise MalformedPayloadError("cipherText is too short")

        key = bytearray(self._derive(pw, salt))
        try:
            pt = aead_decrypt(bytes(key), nonce, ct, PAYLOAD_CONTEXT)
        except ValueError:
            LOG.warning("payload_auth_failed", size=len(ct))
            raise AuthenticationError() from None
        finally:
            zero_bytes(key)
        try:
            return pt.decode("utf-8")
        except UnicodeDecodeError:
            # only reachable for ciphertexts written by another producer with this context
            raise MalformedPayloadError("Decrypted payload is not UTF-8 text") from None

    async def encrypt_async(self, plaintext: str, password: str, timeout: Optional[float] = DEFAULT_TIMEOUT_S) -> EncryptedPayload:
        """`encrypt` on a worker thread so an event loop stays responsive during key derivation."""
        return await asyncio.wait_for(asyncio.to_thread(self.encrypt, plaintext, password), timeout)

    async def decrypt_async(self, payload: EncryptedPayload, password: str, timeout: Optional[float] = DEFAULT_TIMEOUT_S) -> str:
        return await asyncio.wait_for(asyncio.to_thread(self.decrypt, payload, password), timeout)
