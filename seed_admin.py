"""Command-line bootstrap for a new clinic and its first admin.

    python seed_admin.py --clinic "Main Street Clinic" --email admin@example.com
    python seed_admin.py --reset --clinic-id <id> --email admin@example.com

The password is read from ADMIN_DEFAULT_PASSWORD, or --password.
"""
import argparse
import os
import sys

from app.bootstrap import create_clinic_with_admin, reset_admin_password
from app.core.logging import setup_logging
from app.database import SessionLocal, create_tables
from app.errors import ClinicAPIError


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create a clinic with its first CLINIC_ADMIN user")
    parser.add_argument("--clinic", help="Clinic display name")
    parser.add_argument("--clinic-id", help="Existing clinic id (with --reset)")
    parser.add_argument("--email", default=os.getenv("ADMIN_DEFAULT_EMAIL"), required=not os.getenv("ADMIN_DEFAULT_EMAIL"))
    parser.add_argument("--password", default=os.getenv("ADMIN_DEFAULT_PASSWORD"))
    parser.add_argument("--timezone", default="UTC")
    parser.add_argument("--first-name")
    parser.add_argument("--last-name")
    parser.add_argument("--reset", action="store_true", help="Reset the password of an existing admin")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logger = setup_logging()
    if not args.password:
        logger.error("missing_password", hint="set ADMIN_DEFAULT_PASSWORD or pass --password")
        return 2

    create_tables()
    db = SessionLocal()
    try:
        if args.reset:
            if not args.clinic_id:
                logger.error("missing_clinic_id")
                return 2
            user = reset_admin_password(db, args.clinic_id, args.email, args.password)
            print(f"Admin {user.email} reset in clinic {user.clinic_id}")
        else:
            if not args.clinic:
                logger.error("missing_clinic_name")
                return 2
            clinic, admin = create_clinic_with_admin(
                db,
                args.clinic,
                args.email,
                args.password,
                timezone=args.timezone,
                first_name=args.first_name,
                last_name=args.last_name,
            )
            print(f"Clinic {clinic.name} ({clinic.id}) created with admin {admin.email}")
    except ClinicAPIError as e:
        logger.error("seed_failed", code=e.code, detail=e.message)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
