import logging
import os
from dotenv import load_dotenv

# Pick env file by APP_ENV (default dev)
APP_ENV = os.getenv("APP_ENV", "dev")
envfile = {
    "dev": ".env.dev",
    "docker": ".env.docker",
    "test": ".env.test",
    "prod": ".env.prod",
}.get(APP_ENV, ".env.dev")

load_dotenv(envfile, override=True)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./users.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def is_production() -> bool:
    # read at call time so a reloaded env file takes effect
    return os.getenv("APP_ENV", APP_ENV).lower() in ("prod", "production")


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
