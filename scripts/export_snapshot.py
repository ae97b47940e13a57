#!/usr/bin/env python3
"""Export the users and todos tables to users.json / todos.json.

Usage: python scripts/export_snapshot.py --out-dir ./backup [--db tasknest.db]
"""
import argparse
import asyncio
import os


async def run(out_dir: str):
    from tasknest.db import init_db
    from tasknest.snapshot import export_snapshot

    await init_db()
    users_path = os.path.join(out_dir, 'users.json')
    todos_path = os.path.join(out_dir, 'todos.json')
    n_users, n_todos = await export_snapshot(users_path, todos_path)
    print(f"Wrote {n_users} users to {users_path}")
    print(f"Wrote {n_todos} todos to {todos_path}")


if __name__ == '__main__':
    p = argparse.ArgumentParser()
    p.add_argument('--out-dir', default='.', help='directory for users.json and todos.json')
    p.add_argument('--db', help='path to a sqlite DB file (overrides DATABASE_URL)')
    args = p.parse_args()
    if args.db:
        os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.abspath(args.db)}"
    asyncio.run(run(args.out_dir))
