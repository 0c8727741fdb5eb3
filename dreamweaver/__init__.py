# -*- coding: utf-8 -*-
"""DreamWeaver package.

Modules:
    crypto:        Key derivation, field envelopes and digests.
    keys:          Per-user salt storage and the session key.
    codec:         Entry <-> encrypted wire form.
    db:            On-device SQLite key-value store (fallback backend).
    remote:        Supabase/PostgREST store over encrypted rows.
    logic:         Persistence facade, migration and the app context.
    models:        Entries, users, key info and aggregates.
    errors:        Typed failures.
    config:        JSON/env configuration and backend selection.
    entitlements:  Subscription plans and usage limits.
"""

__all__ = [
    "codec",
    "config",
    "crypto",
    "db",
    "entitlements",
    "errors",
    "keys",
    "logic",
    "models",
    "remote",
]
