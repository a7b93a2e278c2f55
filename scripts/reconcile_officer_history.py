"""
Bring officer history back in line with item custody.

Closes Pending Return entries for items the officer no longer holds and opens
entries for issued items that have none. Safe to run repeatedly.

Usage:
    python scripts/reconcile_officer_history.py
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError as e:
    print(f"WARNING: Could not load .env file: {e}")

from armory.db import SessionLocal
from armory.logging import setup_logging
from armory.services.officer_history import reconcile


def main():
    setup_logging()
    db = SessionLocal()
    try:
        report = reconcile(db)
        print(f"Checked {report['checked_entries']} open entries and {report['checked_items']} issued items")
        print(f"Closed: {report['closed']}  Opened: {report['opened']}")
    except Exception as e:
        db.rollback()
        print(f"Error reconciling officer history: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
