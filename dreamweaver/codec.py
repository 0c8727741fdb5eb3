# -*- coding: utf-8 -*-
"""Field-level mapping between plaintext Entries and their encrypted wire form.

Encrypted: ``content``, ``interpretation`` (when present), every tag and
emotion (one envelope per element). Clear: ids, owner, date, timestamps.
"""
from __future__ import annotations

from typing import Any, Dict, List

from .crypto import KeyMaterial, decrypt, encrypt
from .errors import DecryptionError
from .models import EncryptedEntry, Entry, EntryUpdate, normalize_labels


def _encrypt_labels(values: List[str], key: KeyMaterial) -> List[str]:
    return [encrypt(v, key) for v in normalize_labels(values)]

def _decrypt_labels(values: List[str], key: KeyMaterial) -> List[str]:
    return [decrypt(v, key) for v in values]


def encrypt_entry(entry: Entry, key: KeyMaterial) -> EncryptedEntry:
    """Encrypt the sensitive fields of *entry*; metadata passes through."""
    entry.validate()
    return EncryptedEntry(
        id=entry.id,
        user_id=entry.user_id,
        occurred_on=entry.occurred_on,
        content=encrypt(entry.content, key),
        interpretation=encrypt(entry.interpretation, key) if entry.interpretation else None,
        tags=_encrypt_labels(entry.tags, key),
        emotions=_encrypt_labels(entry.emotions, key),
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def decrypt_entry(record: EncryptedEntry, key: KeyMaterial) -> Entry:
    """Inverse of :func:`encrypt_entry`.

    Any field failure is reported as a DecryptionError for the whole record;
    the original crypto error is chained as ``__cause__``.
    """
    if not record.content:
        raise DecryptionError("Entry has no stored content ciphertext", entry_id=record.id)
    try:
        return Entry(
            id=record.id,
            user_id=record.user_id,
            occurred_on=record.occurred_on,
            content=decrypt(record.content, key),
            interpretation=decrypt(record.interpretation, key) if record.interpretation else None,
            tags=_decrypt_labels(record.tags, key),
            emotions=_decrypt_labels(record.emotions, key),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
    except DecryptionError as exc:
        raise DecryptionError(
            f"Failed to decrypt entry {record.id}. Your passphrase may be wrong.",
            entry_id=record.id,
        ) from exc


def encrypt_update(update: EntryUpdate, key: KeyMaterial) -> Dict[str, Any]:
    """Encrypt only the supplied fields of *update*, keyed by remote column."""
    fields = update.fields()
    payload: Dict[str, Any] = {}
    if "occurred_on" in fields:
        payload["dream_date"] = fields["occurred_on"].isoformat()
    if "content" in fields:
        payload["dream_text"] = encrypt(fields["content"], key)
    if "interpretation" in fields:
        payload["interpretation"] = encrypt(fields["interpretation"], key)
    if "tags" in fields:
        payload["tags"] = [encrypt(v, key) for v in fields["tags"]]
    if "emotions" in fields:
        payload["emotions"] = [encrypt(v, key) for v in fields["emotions"]]
    return payload
