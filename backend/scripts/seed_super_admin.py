"""CLI script to create the super admin account in the configured database.
Usage: SUPER_ADMIN_PASSWORD=... python scripts/seed_super_admin.py
"""
import sys
import pathlib
# Ensure `backend/` is on sys.path so `app` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from app.config import settings
from app.database import Database
from app import services


def main():
    """Open the database, seed the super admin and report what happened."""
    if not settings.SUPER_ADMIN_PASSWORD:
        print('SUPER_ADMIN_PASSWORD is not set; nothing to do')
        return 1
    db = Database(settings.DATABASE_URL).open()
    try:
        with db.start_session() as session:
            user = services.UserService(session, db).seed_super_admin()
    finally:
        db.close()
    if user is None:
        print('A super admin already exists')
    else:
        print(f'Created super admin {user.id} <{user.email}>')
    return 0


if __name__ == '__main__':
    sys.exit(main())
