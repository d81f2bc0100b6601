import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.folio.models import Permission, Role, User  # noqa: E402
from app.folio.modules.blog.models import Tag  # noqa: E402
from app.folio.modules.settings.service import ensure_default_settings  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

PERMISSIONS = (
    ("admin.view", "Admin: view dashboard and profile"),
    ("posts.view", "Posts: view"),
    ("posts.edit", "Posts: create, edit, delete"),
    ("media.view", "Media: view library"),
    ("media.upload", "Media: upload and edit"),
    ("media.delete", "Media: delete"),
    ("inbox.view", "Inbox: view messages"),
    ("inbox.manage", "Inbox: triage and delete messages"),
    ("settings.edit", "Settings: view and edit"),
    ("audit.view", "Audit trail: view"),
)

DEFAULT_TAGS = (
    ("Programming", "programming", "Code, languages and craft"),
    ("Web Development", "web-development", "Building for the web"),
    ("Python", "python", "Python tips and projects"),
    ("DevOps", "devops", "Deployment, infrastructure and tooling"),
    ("Career", "career", "Working in software"),
    ("Projects", "projects", "Write-ups of things I have built"),
    ("Tutorials", "tutorials", "Step-by-step guides"),
    ("Notes", "notes", "Short notes and links"),
)


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user, default settings and tags in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///folio.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        def ensure_perm(key: str, name: str) -> Permission:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            return p

        perms = [ensure_perm(key, name) for key, name in PERMISSIONS]

        # Role
        role_admin = s.query(Role).filter(Role.key == "admin").one_or_none()
        if not role_admin:
            role_admin = Role(key="admin", name="Administrator")
            s.add(role_admin)
        for p in perms:
            if p not in role_admin.permissions:
                role_admin.permissions.append(p)

        # User
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

        added_settings = ensure_default_settings(s)

        existing_tags = {slug for (slug,) in s.query(Tag.slug).all()}
        added_tags = 0
        for name, slug, description in DEFAULT_TAGS:
            if slug not in existing_tags:
                s.add(Tag(name=name, slug=slug, description=description))
                added_tags += 1

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"Default settings added: {added_settings}; default tags added: {added_tags}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
