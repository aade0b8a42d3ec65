# scripts/init_db.py: ONE-CLICK DATABASE SETUP (safe to run anytime)
#   python scripts/init_db.py
#   python scripts/init_db.py --follow <wallet> --allocation 500 --percent 10
import argparse

from copytrader.config import settings
from copytrader.copy_settings import CopySettingsStore, to_payload
from copytrader.db import SessionLocal, engine, init_db


def main():
    parser = argparse.ArgumentParser(description="Create tables and optionally follow a trader")
    parser.add_argument("--follow", help="Solana wallet to copy")
    parser.add_argument("--owner", default=settings.DEFAULT_FOLLOWER, help="Follower the rule belongs to")
    parser.add_argument("--allocation", type=float, default=100.0, help="Max USD per copied trade")
    parser.add_argument("--percent", type=float, default=5.0, help="Max percent of bankroll per trade")
    parser.add_argument("--copy-open", action="store_true", help="Copy the wallet's latest trade on first sight")
    args = parser.parse_args()

    print(f"Initializing database at {settings.DATABASE_URL}")
    init_db(engine)
    print("All tables ensured")

    if not args.follow:
        return

    store = CopySettingsStore(SessionLocal)
    rules = [to_payload(s) for s in store.read(args.owner)]
    rules.append({
        "traderId": args.follow,
        "isActive": True,
        "allocationUsd": args.allocation,
        "maxPositionPercent": args.percent,
        "copyOpenPositions": args.copy_open,
    })
    store.replace(args.owner, rules)
    print(f"{args.owner} now follows {args.follow} (${args.allocation:.2f} / {args.percent:.1f}%)")


if __name__ == "__main__":
    main()
