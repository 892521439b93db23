#!/usr/bin/env python3
"""
Connection Test Script

Run this to verify the MongoDB connection and indexes.
Usage: python scripts/test_connections.py
"""
import sys

from assessment_engine.core.config import get_settings
from assessment_engine.db.mongodb import COLLECTIONS, get_mongo_db, init_mongo_indexes, test_mongo_connection


def main() -> int:
    settings = get_settings()
    print("=" * 50)
    print("ASSESSMENT ENGINE - CONNECTION TEST")
    print("=" * 50)

    print("\n[1] Testing MongoDB...")
    print(f"    URI: {settings.mongodb_uri}")
    print(f"    Database: {settings.mongodb_db}")
    if not test_mongo_connection():
        print("    ❌ MongoDB: FAILED")
        return 1
    print("    ✅ MongoDB: CONNECTED")

    print("\n[2] Creating indexes...")
    init_mongo_indexes()
    db = get_mongo_db()
    for key, name in COLLECTIONS.items():
        indexes = sorted(db[name].index_information())
        print(f"    {key:<14} {name:<22} {', '.join(indexes) or '-'}")

    print("\n" + "=" * 50)
    print("Connection test complete!")
    print("=" * 50)
    return 0


if __name__ == "__main__":
    sys.exit(main())
