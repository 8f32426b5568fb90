"""Create or update a mirrored user from the command line.

Useful before the identity provider's webhook is wired up, and for granting
the admin role. ``--token`` prints a short-lived identity token that can be
exchanged at ``POST /api/auth/session`` for local sign-in.
"""

import argparse

from app.models.user import ROLE_ADMIN, ROLE_USER
from app.services.auth import issue_identity_token, upsert_user
from db import SessionLocal


def main():
    parser = argparse.ArgumentParser(description="Create or update a user (optionally admin).")
    parser.add_argument("--external-id", required=True, help="Identity provider user id")
    parser.add_argument("--email", default=None)
    parser.add_argument("--first", default=None)
    parser.add_argument("--last", default=None)
    role = parser.add_mutually_exclusive_group()
    role.add_argument("--admin", action="store_true", help="Grant admin role")
    role.add_argument("--revoke-admin", action="store_true", help="Back to a plain user")
    parser.add_argument("--token", action="store_true", help="Print an identity token")
    args = parser.parse_args()

    new_role = ROLE_ADMIN if args.admin else ROLE_USER if args.revoke_admin else None
    s = SessionLocal()
    try:
        user = upsert_user(
            s,
            args.external_id.strip(),
            Email=args.email,
            FirstName=args.first,
            LastName=args.last,
            Role=new_role,
        )
        print(f"User saved: id={user.UserID} external_id={user.ExternalID} role={user.Role}")
    finally:
        s.close()

    if args.token:
        print(issue_identity_token(args.external_id.strip()))


if __name__ == "__main__":
    main()
