"""
Initialize the database and optionally create
an editor account to sign in with.

Usage:
  python -m core.init_db [email username password]
"""
import sys

from sqlmodel import Session, select

from api.auth.models import User
from core.db import create_db_and_tables, get_engine
from core.logger import logger
from core.security import hash_password


def create_editor(*, session: Session, email: str, username: str, password: str) -> User:
    """
    Create an editor account unless one with this email exists
    """
    user = session.exec(select(User).where(User.email == email)).first()
    if user:
        logger.info("User %s already exists", email)
        return user

    user = User(
        email=email,
        username=username,
        hashed_password=hash_password(password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Created user %s", email)
    return user


def main(argv: list[str]):
    logger.info("Create tables...")
    create_db_and_tables()

    if len(argv) == 3:
        email, username, password = argv
        with Session(get_engine()) as session:
            create_editor(session=session, email=email, username=username, password=password)


if __name__ == "__main__":
    main(sys.argv[1:])
