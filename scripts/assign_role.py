#!/usr/bin/env python3
"""Grant a role to a user (idempotent).

Usage:
  python scripts/assign_role.py --email auditor@example.com --role internal_auditor
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.qms.models import Role, User  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", required=True, help="Role key, e.g. quality_manager")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///qms.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            known = ", ".join(r.key for r in s.query(Role).order_by(Role.key).all())
            print(f"Role not found: {args.role}. Known roles: {known or '(none; run python scripts/init_db.py)'}")
            return
        if role in user.roles:
            print(f"{args.email} already has role {args.role}")
            return
        user.roles.append(role)
    print(f"Role {args.role} granted to {args.email}")


if __name__ == "__main__":
    main()
