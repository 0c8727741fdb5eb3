"""Manual one-shot migration of on-device entries into the remote store.

Usage: python db_migrate.py <remote-user-id>
"""
from __future__ import annotations

import asyncio
import getpass
import sys

from dreamweaver.config import configure_logging, load_settings
from dreamweaver.errors import MigrationError
from dreamweaver.logic import Mode, build_context


async def migrate(user_id: str, passphrase: str) -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    ctx = build_context(settings)
    if ctx.mode is not Mode.REMOTE:
        print("No remote backend configured; nothing to migrate.")
        return 0
    await ctx.keys.unlock(user_id, passphrase)
    try:
        count = await ctx.facade.migrate(user_id)
    finally:
        ctx.keys.lock()
    print(f"Migrated {count} entries.")
    return count


def main(argv: list[str]) -> int:
    if len(argv) != 2:
        print(__doc__)
        return 2
    passphrase = getpass.getpass("Passphrase: ")
    try:
        asyncio.run(migrate(argv[1], passphrase))
    except MigrationError as exc:
        print(f"Migration failed: {exc}. Local entries were kept; re-run to resume.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
