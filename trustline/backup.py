"""
Backup file envelope.

An encrypted backup is a small JSON document: readable metadata plus the
three EncryptedPayload fields. The dataset checksum is taken over the exact
serialized plaintext and rechecked after decryption.
"""
import json, time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, ValidationError

from .checksum import canonical_json, sha256_hex
from .crypto import consteq
from .encryption import PayloadEncryptionService
from .errors import AuthenticationError, MalformedPayloadError
from .logging import get_logger
from .models import EncryptedPayload

LOG = get_logger(False)

BACKUP_VERSION = "2.0.0"
SUPPORTED_BACKUP_VERSIONS = {"2.0.0"}


class BackupMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: StrictStr
    createdAt: StrictInt
    encrypted: StrictBool
    checksum: StrictStr = Field(pattern=r"^[0-9a-f]{64}$")
    fileSize: StrictInt
    promptCount: StrictInt = 0
    categoryCount: StrictInt = 0


class EncryptedBackupFile(BaseModel):
    metadata: BackupMetadata
    payload: StrictStr
    salt: StrictStr
    iv: StrictStr


class PlainBackupFile(BaseModel):
    metadata: BackupMetadata
    data: Dict[str, Any]


def _serialize(dataset: Dict[str, Any]):
    """Canonical JSON text of `dataset` and its UTF-8 bytes."""
    try:
        serialized = canonical_json(dataset)
    except (TypeError, ValueError) as exc:
        raise MalformedPayloadError(f"Backup data cannot be serialized: {exc}") from None
    return serialized, _utf8(serialized)


def _utf8(serialized: str) -> bytes:
    try:
        return serialized.encode("utf-8")
    except UnicodeEncodeError:
        raise MalformedPayloadError("Backup data contains unpaired surrogate characters.") from None


def _metadata(raw: bytes, dataset: Dict[str, Any], encrypted: bool) -> BackupMetadata:
    prompts = dataset.get("prompts")
    categories = dataset.get("categories")
    return BackupMetadata(
        version=BACKUP_VERSION,
        createdAt=int(time.time() * 1000),
        encrypted=encrypted,
        checksum=sha256_hex(raw),
        fileSize=len(raw),
        promptCount=len(prompts) if isinstance(prompts, list) else 0,
        categoryCount=len(categories) if isinstance(categories, list) else 0,
    )


def seal_backup(dataset: Dict[str, Any], password: Optional[str], service: PayloadEncryptionService) -> str:
    """Serialize `dataset` into a backup document; encrypted unless `password` is None."""
    serialized, raw = _serialize(dataset)
    if password is None:
        doc = PlainBackupFile(metadata=_metadata(raw, dataset, False), data=dataset)
        return doc.model_dump_json(indent=2)
    sealed = service.encrypt(serialized, password)
    doc = EncryptedBackupFile(
        metadata=_metadata(raw, dataset, True),
        payload=sealed.cipher_text,
        salt=sealed.salt,
        iv=sealed.iv,
    )
    LOG.info("backup_sealed", encrypted=True, size=doc.metadata.fileSize)
    return doc.model_dump_json(indent=2)


def read_metadata(text: str) -> BackupMetadata:
    """Metadata is readable without the password (for previews)."""
    return _parse(text).metadata


def _parse(text: str):
    try:
        raw = json.loads(text)
    except ValueError as exc:
        raise MalformedPayloadError("Backup file is not valid JSON") from exc
    if not isinstance(raw, dict) or not isinstance(raw.get("metadata"), dict):
        raise MalformedPayloadError("Backup file has no metadata block")
    model = EncryptedBackupFile if raw["metadata"].get("encrypted") is True else PlainBackupFile
    try:
        doc = model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPayloadError("Backup file is missing required fields") from exc
    if doc.metadata.version not in SUPPORTED_BACKUP_VERSIONS:
        raise MalformedPayloadError(f"Unsupported backup version {doc.metadata.version}")
    return doc


def open_backup(text: str, password: Optional[str], service: PayloadEncryptionService) -> Dict[str, Any]:
    """Parse a backup document, decrypting it when needed, and verify its checksum."""
    doc = _parse(text)
    if isinstance(doc, EncryptedBackupFile):
        if password is None:
            raise MalformedPayloadError("Backup file is encrypted. Provide a password to restore it.")
        serialized = service.decrypt(
            EncryptedPayload(cipher_text=doc.payload, salt=doc.salt, iv=doc.iv),
            password,
        )
    else:
        serialized, _ = _serialize(doc.data)

    if not consteq(sha256_hex(_utf8(serialized)), doc.metadata.checksum):
        LOG.warning("backup_checksum_mismatch", encrypted=doc.metadata.encrypted)
        raise AuthenticationError("Backup checksum does not match its contents.")
    dataset = json.loads(serialized)
    LOG.info("backup_opened", encrypted=doc.metadata.encrypted)
    return dataset
