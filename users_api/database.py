import logging
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from users_api.config import DATABASE_URL, SQL_ECHO
from users_api.models import Base

logger = logging.getLogger(__name__)

SEED_USERS = [
    {"name": "Ivan", "email": "ivan@mail.com", "age": 25},
    {"name": "Maria", "email": "maria@mail.com", "age": 30},
]


def build_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


# engine creation is lazy; the file is only touched on first connect
engine = build_engine()


def get_engine() -> Engine:
    return engine


def init_db(target: Engine = None):
    """Create both tables if missing and seed two users into an empty users table."""
    target = target or engine
    Base.metadata.create_all(target)
    logger.info("Tables users and update_logs are ready")

    with target.begin() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM users")).scalar_one()
        if count == 0:
            conn.execute(
                text("INSERT INTO users (name, email, age) VALUES (:name, :email, :age)"),
                SEED_USERS,
            )
            logger.info("Inserted %d seed users", len(SEED_USERS))
