"""Promote an existing user to Super Admin.

    python elevate_user.py someone@example.com [Role]
"""

import sys

import models
from database import db
from permissions import Role


def run(email: str, role: str = Role.SUPER_ADMIN.value) -> int:
    role = Role(role).value
    session = db.session()
    try:
        user = session.query(models.User).filter(models.User.email == email.lower()).first()
        if not user:
            print("User not found:", email)
            return 1
        print("Before:", user.id, user.email, user.role, user.is_active)
        user.role = role
        user.is_active = True
        session.commit()
        session.refresh(user)
        print("After:", user.id, user.email, user.role, user.is_active)
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(run(*sys.argv[1:3]))
