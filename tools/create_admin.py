"""
Create an administrator account.

Self-service registration only ever creates plain users, and promotion needs
an existing admin, so the first admin is created with this script.

Usage:
  python -m tools.create_admin --db sqlite:///./storefront.db --username root --password secret123
"""
import argparse
import logging
import sys

from storefront import errors
from storefront.accounts import create_user
from storefront.db import Base, make_engine, make_sessionmaker
from storefront.models import Role

logger = logging.getLogger(__name__)


def create_admin(database_url: str, username: str, password: str) -> int:
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        raise ValueError("Use a file-backed or server DB for the admin bootstrap")

    engine = make_engine(database_url)
    Base.metadata.create_all(bind=engine)
    session = make_sessionmaker(engine)()
    try:
        user = create_user(session, username, password, Role.ADMIN)
        return user.id
    finally:
        session.close()
        engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="SQLAlchemy database URL")
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", required=True)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        user_id = create_admin(args.db, args.username, args.password)
    except errors.StorefrontError as e:
        logger.error("could not create admin: %s", e.message)
        return 1
    logger.info("admin %s created with id %s", args.username, user_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
