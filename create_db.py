# create_db.py
from users_api.config import configure_logging
from users_api.database import engine, init_db

configure_logging()
init_db(engine)
print(f"Database initialized at {engine.url}")
