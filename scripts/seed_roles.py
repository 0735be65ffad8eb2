"""
Create the built-in role templates (business owner, agency admin, ...).

Safe to re-run; existing templates are left untouched.
Run with: python -m scripts.seed_roles
"""

import logging

from leadrelay.db.session import SessionLocal
from leadrelay.services.permission_service import seed_role_templates


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    db = SessionLocal()
    try:
        created = seed_role_templates(db)
        print(f"Seeded {created} role templates")
    finally:
        db.close()


if __name__ == "__main__":
    main()
