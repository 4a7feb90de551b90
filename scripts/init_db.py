import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import User  # noqa: E402
from app.portal.rbac import ensure_roles  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions, roles and the owner account in an idempotent way.
    Does NOT overwrite an existing owner's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "owner@clinic.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    # Direct engine/session so this can run in release without building the Flask app.
    with script_session(resolve_db_url(database_url)) as s:
        roles = ensure_roles(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                first_name="Clinic",
                last_name="Owner",
                is_active=True,
            )
            s.add(user)
        if roles["owner"] not in user.roles:
            user.roles.append(roles["owner"])

    print("Initialized database (seed_only).")
    print(f"Owner email: {admin_email}")
    print("Owner password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
