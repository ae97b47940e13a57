#!/usr/bin/env python3
"""List users in the database.

Usage:
  DATABASE_URL="sqlite+aiosqlite:///./tasknest.db" python scripts/list_users.py

Reads DATABASE_URL from the environment (falls back to the tasknest
default), makes sure the schema exists and prints one line per user with
their todo counts. Password hashes are not printed.
"""
import argparse
import asyncio
import os


async def main(db_path: str | None = None):
    if db_path:
        os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.abspath(db_path)}"
    # import here so we pick up DATABASE_URL if set
    from tasknest.db import init_db
    from tasknest import store, users

    print(f"Using DATABASE_URL={os.getenv('DATABASE_URL')}")
    await init_db()
    all_users = await users.load_all()
    if not all_users:
        print("No users found in DB.")
        return
    todos = await store.load_all()
    print(f"Found {len(all_users)} users:\n")
    for u in all_users:
        owned = [t for t in todos if t.user_id == u.id]
        done = sum(1 for t in owned if t.completed)
        print(f"{u.id}  {u.email}  ({u.name})\n  todos: {len(owned)} total, {done} done\n")


if __name__ == '__main__':
    p = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    p.add_argument('--db', help='path to a sqlite DB file (overrides DATABASE_URL)')
    args = p.parse_args()
    asyncio.run(main(args.db))
