#!/usr/bin/env python3
"""
seed.py: run Alembic migrations and bootstrap an administrator account for local dev
"""
import argparse, os, subprocess, sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

def run_alembic():
    if not (REPO_ROOT / "alembic.ini").exists():
        print("Skipping migrations: no alembic.ini")
        return
    print(">>> Running Alembic migrations")
    subprocess.run(["alembic", "upgrade", "head"], cwd=REPO_ROOT, check=True)

def ensure_admin(email: str, password: str, name: str = "Administrator") -> bool:
    """Create the admin account unless the email is already registered. Returns True when created."""
    from coffeeon.db.session import SessionLocal
    from coffeeon.db.models import User, Role
    from coffeeon.security.utils import hash_password

    with SessionLocal() as db:
        if db.query(User).filter(User.email == email).first():
            print(f"Admin {email} already exists")
            return False
        db.add(User(name=name, email=email, password_hash=hash_password(password), role=Role.ADMIN.value))
        db.commit()
    print(f"Created admin {email}")
    return True

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--skip-migrations", action="store_true", help="Only bootstrap the admin account")
    ap.add_argument("--admin-email", default=os.getenv("ADMIN_EMAIL", "admin@coffeon.com"))
    ap.add_argument("--admin-password", default=os.getenv("ADMIN_PASSWORD"))
    args = ap.parse_args()

    if not args.skip_migrations:
        run_alembic()
    if args.admin_password:
        ensure_admin(args.admin_email, args.admin_password)
    else:
        print("No ADMIN_PASSWORD given; skipping admin bootstrap")

    print("Done.")

if __name__ == "__main__":
    main()
