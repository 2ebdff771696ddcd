import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash
from sqlalchemy.orm import Session

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.qms.constants import (  # noqa: E402
    DEFAULT_ORGANIZATION_NAME,
    ROLE_DEPARTMENT_HEAD,
    ROLE_INTERNAL_AUDITOR,
    ROLE_QUALITY_MANAGER,
    ROLE_SYSTEM_ADMIN,
    ROLE_VIEWER,
)
from app.qms.models import Organization, Permission, Role, User  # noqa: E402
from app.qms.modules.standards.seed_data import seed_standards, seed_templates  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

PERMISSIONS = [
    ("standards.view", "Standards: view sections and templates"),
    ("assessments.view", "Assessments: view"),
    ("assessments.create", "Assessments: create and clone"),
    ("assessments.contribute", "Assessments: edit as a team member"),
    ("assessments.manage", "Assessments: edit any assessment"),
    ("assessments.delete", "Assessments: archive"),
    ("ncr.view", "Non-conformities: view"),
    ("ncr.delete", "Non-conformities: delete"),
    ("actions.verify", "Corrective actions: verify effectiveness"),
    ("actions.delete", "Corrective actions: delete"),
    ("dashboard.view", "Dashboard: view"),
]

_READ_ONLY = ["standards.view", "assessments.view", "ncr.view", "dashboard.view"]

ROLES = {
    ROLE_SYSTEM_ADMIN: ("System Administrator", [key for key, _ in PERMISSIONS]),
    ROLE_QUALITY_MANAGER: ("Quality Manager", [key for key, _ in PERMISSIONS]),
    ROLE_INTERNAL_AUDITOR: (
        "Internal Auditor",
        _READ_ONLY + ["assessments.create", "assessments.contribute"],
    ),
    ROLE_DEPARTMENT_HEAD: ("Department Head", list(_READ_ONLY)),
    ROLE_VIEWER: ("Viewer", list(_READ_ONLY)),
}


def seed_roles(s: Session) -> dict[str, Role]:
    """Permissions and roles (idempotent; missing grants are added, none are removed)."""
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS:
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, (name, perm_keys) in ROLES.items():
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
        for perm_key in perm_keys:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
        roles[key] = role
    s.flush()
    return roles


def seed_database(s: Session, *, admin_email: str, admin_password: str, organization_name: str) -> User:
    roles = seed_roles(s)

    org = s.query(Organization).filter(Organization.name == organization_name).one_or_none()
    if not org:
        org = Organization(name=organization_name)
        s.add(org)
        s.flush()

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(
            organization_id=org.id,
            email=admin_email,
            password_hash=generate_password_hash(admin_password),
            first_name="System",
            last_name="Administrator",
            is_active=True,
        )
        s.add(user)
    if roles[ROLE_SYSTEM_ADMIN] not in user.roles:
        user.roles.append(roles[ROLE_SYSTEM_ADMIN])

    seed_standards(s)
    seed_templates(s, org.id)
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/organization/admin user and the ISO 9001 reference data.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    org_name = (os.environ.get("ORGANIZATION_NAME") or DEFAULT_ORGANIZATION_NAME).strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///qms.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        seed_database(s, admin_email=admin_email, admin_password=admin_password, organization_name=org_name)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
