import pytest

from database import Database
from models import User


@pytest.fixture()
def database():
    db = Database("sqlite+pysqlite:///:memory:").open()
    db.create_all()
    yield db
    db.close()


@pytest.fixture()
def session(database):
    with database.session() as s:
        yield s


def seed_user(session, email: str = "ada@example.com", name: str = "Ada") -> User:
    user = User(name=name, email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user
