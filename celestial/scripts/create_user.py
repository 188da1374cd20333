"""
Create a verified user (e.g. the first admin). Run from project root:
  python -m celestial.scripts.create_user USERNAME EMAIL PASSWORD [USER|ADMIN]
Example:
  python -m celestial.scripts.create_user admin admin@example.com 'S3cure-pass!' ADMIN
"""
import argparse
import logging
import sys

from pydantic import ValidationError

from celestial.core.config import get_settings
from celestial.core.database import session_scope
from celestial.core.security import BcryptHasher
from celestial.models import UserType
from celestial.schemas.auth import RegisterRequest
from celestial.services.store import SqlCredentialStore, UniqueViolationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a verified Celestial user.")
    parser.add_argument("username", help="Username (4-32 chars)")
    parser.add_argument("email", help="Email address")
    parser.add_argument("password", help="Password (uppercase, digit and special character)")
    parser.add_argument(
        "user_type",
        nargs="?",
        default=UserType.USER.value,
        choices=[t.value for t in UserType],
    )
    args = parser.parse_args(argv)

    try:
        data = RegisterRequest(
            username=args.username.strip(), email=args.email, password=args.password
        )
    except ValidationError as e:
        for err in e.errors():
            print(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}", file=sys.stderr)
        return 1

    hasher = BcryptHasher(rounds=get_settings().BCRYPT_ROUNDS)
    with session_scope() as db:
        store = SqlCredentialStore(db)
        if store.find_user_by_username(data.username) or store.find_user_by_email(data.email):
            print(f"User '{data.username}' already exists.", file=sys.stderr)
            return 1
        try:
            store.create_user(
                data.username,
                data.email,
                hasher.hash(data.password),
                user_type=UserType(args.user_type),
                is_verified=True,
            )
        except UniqueViolationError:
            print(f"User '{data.username}' already exists.", file=sys.stderr)
            return 1
        logger.info("Created user '%s' with type '%s'", data.username, args.user_type)
        return 0


if __name__ == "__main__":
    sys.exit(main())
