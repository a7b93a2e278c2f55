"""
Create (or promote) an admin account and print an access token for it.

Usage:
    python scripts/create_admin.py --officer-id INDGP20250001 --email admin@example.org \
        --name "Armory Admin" --designation "Superintendent of Police (SP)" --password secret
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError as e:
    print(f"WARNING: Could not load .env file: {e}")

from armory.db import Base, SessionLocal, engine
from armory.auth.security import create_access_token, get_password_hash
from armory.models.models import User


def create_admin(officer_id: str, email: str, name: str, designation: str, password: str, station=None) -> User:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.officer_id == officer_id).first()
        if user:
            user.role = "admin"
            user.is_active = True
            print(f"Promoted existing user {officer_id} to admin")
        else:
            user = User(
                officer_id=officer_id,
                email=email,
                full_name=name,
                designation=designation,
                police_station=station,
                password_hash=get_password_hash(password),
                role="admin",
            )
            db.add(user)
            print(f"Created admin {officer_id}")
        db.commit()
        db.refresh(user)
        return user
    except Exception as e:
        db.rollback()
        print(f"Error creating admin: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create an armory admin account")
    parser.add_argument("--officer-id", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--designation", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--station")
    args = parser.parse_args()

    admin = create_admin(args.officer_id, args.email, args.name, args.designation, args.password, args.station)
    print(f"\nAccess token:\n{create_access_token(str(admin.id), roles=['admin'])}")
