#!/usr/bin/env python3
"""Import users.json / todos.json into the database.

Accepts the flat files written by export_snapshot.py as well as the data
files of the earlier JSON-file version of the app (bcrypt password hashes
included). Users already registered under the same email are kept and
their todos re-owned; the todo table is replaced by the snapshot.

Usage: python scripts/import_snapshot.py --users users.json --todos todos.json [--db tasknest.db]
"""
import argparse
import asyncio
import os
import sys


async def run(users_path, todos_path):
    from tasknest.db import init_db
    from tasknest.errors import StorageError
    from tasknest.snapshot import import_snapshot

    await init_db()
    try:
        added, stored = await import_snapshot(users_path, todos_path)
    except StorageError as e:
        print(f"import failed: {e}", file=sys.stderr)
        return 1
    print(f"Added {added} users, stored {stored} todos")
    return 0


if __name__ == '__main__':
    p = argparse.ArgumentParser()
    p.add_argument('--users', help='path to users.json')
    p.add_argument('--todos', help='path to todos.json (replaces all todos)')
    p.add_argument('--db', help='path to a sqlite DB file (overrides DATABASE_URL)')
    args = p.parse_args()
    if not args.users and not args.todos:
        p.error('nothing to import: pass --users and/or --todos')
    if args.db:
        os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.abspath(args.db)}"
    sys.exit(asyncio.run(run(args.users, args.todos)))
