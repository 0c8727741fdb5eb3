# -*- coding: utf-8 -*-
"""Crypto helpers for DreamWeaver.

This module encapsulates *stateless* cryptographic helpers: passphrase key
derivation, field encryption into text envelopes and integrity digests. It
does **not** perform any storage I/O and never holds a key.

Envelope format (every encrypted field, local wire and remote column)::

    <32 hex chars IV>:<base64 AES-GCM ciphertext + tag>
"""
from __future__ import annotations

from typing import Any, Optional, Tuple, Union
import base64
import binascii
import json
import secrets
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError, InvalidInputError, MalformedEnvelopeError

# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------

PBKDF2_ITERATIONS = 100_000

KEY_LEN = 32
SALT_LEN = 32
IV_LEN = 16

HKDF_INFO_ENC = b"dreamweaver/field-key"

ENVELOPE_SEP = ":"

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"

KeyMaterial = Union[bytes, str]


# ---------------------------------------------------------------------
# KDF / HKDF / AEAD helpers
# ---------------------------------------------------------------------

def derive_key(passphrase: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive a 256-bit key from *passphrase* and the user's *salt* (PBKDF2-SHA256)."""
    if not passphrase or not salt:
        raise InvalidInputError("Passphrase and salt are required for key derivation")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))

def generate_salt() -> str:
    """Return a random 256-bit salt as hex text."""
    return secrets.token_hex(SALT_LEN)

def hkdf_derive(key_material: bytes, info: bytes, length: int = KEY_LEN) -> bytes:
    """Derive a subkey from key material using HKDF-SHA256."""
    hk = HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info)
    return hk.derive(key_material)

def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """Encrypt *plaintext* with AES-GCM; return (iv, ciphertext)."""
    iv = secrets.token_bytes(IV_LEN)
    ct = AESGCM(key).encrypt(iv, plaintext, aad)
    return iv, ct

def aesgcm_decrypt(key: bytes, iv: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    """Decrypt AES-GCM *ciphertext* with *iv*; return plaintext."""
    return AESGCM(key).decrypt(iv, ciphertext, aad)

def _field_key(key: KeyMaterial) -> bytes:
    """Expand session key material into the AES-256 field key."""
    if not key:
        raise InvalidInputError("Encryption key is required")
    material = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    return hkdf_derive(material, HKDF_INFO_ENC)


# ---------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------

def encrypt(plaintext: str, key: KeyMaterial) -> str:
    """Encrypt *plaintext* into a self-contained ``iv:ciphertext`` envelope.

    A fresh IV is drawn on every call, so equal inputs never share an
    envelope.
    """
    if not plaintext:
        raise InvalidInputError("Plaintext is required for encryption")
    iv, ct = aesgcm_encrypt(_field_key(key), plaintext.encode("utf-8"))
    return iv.hex() + ENVELOPE_SEP + base64.b64encode(ct).decode("ascii")

def split_envelope(envelope: str) -> Tuple[bytes, bytes]:
    """Parse an envelope into (iv, ciphertext) or raise MalformedEnvelopeError."""
    if not isinstance(envelope, str):
        raise MalformedEnvelopeError("Encrypted value is not text")
    parts = envelope.split(ENVELOPE_SEP)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedEnvelopeError("Invalid ciphertext format")
    iv_hex, ct_b64 = parts
    if len(iv_hex) != IV_LEN * 2:
        raise MalformedEnvelopeError("Invalid initialization vector")
    try:
        iv = bytes.fromhex(iv_hex)
        ct = base64.b64decode(ct_b64, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise MalformedEnvelopeError("Invalid ciphertext encoding") from exc
    return iv, ct

def decrypt(envelope: str, key: KeyMaterial) -> str:
    """Decrypt an envelope produced by :func:`encrypt`.

    Raises:
        MalformedEnvelopeError: the envelope does not parse.
        DecryptionError: wrong key, tampered data or empty output.
    """
    iv, ct = split_envelope(envelope)
    field_key = _field_key(key)
    try:
        plaintext = aesgcm_decrypt(field_key, iv, ct).decode("utf-8")
    except InvalidTag as exc:
        raise DecryptionError("Decryption failed - invalid key or corrupted data") from exc
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decrypted data is not valid text") from exc
    if not plaintext:
        raise DecryptionError("Decryption failed - invalid key or corrupted data")
    return plaintext

def encrypt_object(obj: Any, key: KeyMaterial) -> str:
    """Encrypt the JSON representation of *obj*."""
    return encrypt(json.dumps(obj), key)

def decrypt_object(envelope: str, key: KeyMaterial) -> Any:
    """Decrypt an envelope made by :func:`encrypt_object` and parse the JSON."""
    plaintext = decrypt(envelope, key)
    try:
        return json.loads(plaintext)
    except ValueError as exc:
        raise DecryptionError("Decrypted data is not a JSON document") from exc


# ---------------------------------------------------------------------
# Integrity + misc
# ---------------------------------------------------------------------

def create_hash(data: str) -> str:
    """SHA-256 hex digest of *data* (integrity only, not authentication)."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data.encode("utf-8"))
    return digest.finalize().hex()

def verify_hash(data: str, expected: str) -> bool:
    return secrets.compare_digest(create_hash(data).encode("ascii"), (expected or "").encode("utf-8"))

def generate_secure_password(length: int = 32) -> str:
    """Suggest a random passphrase of *length* characters."""
    if length <= 0:
        raise InvalidInputError("Password length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
