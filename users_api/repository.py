import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine

from users_api.audit import RequestContext, insert_entry
from users_api.errors import ApiError
from users_api.schemas import (
    LogStatistics,
    OperationStatus,
    OperationType,
    UpdateLogOut,
    UpdateUserRequest,
    UserOut,
)

logger = logging.getLogger(__name__)


@dataclass
class UserListResult:
    users: List[UserOut] = field(default_factory=list)
    skipped: int = 0


class UserRepository:
    """Parameterized SQL against users / update_logs, one connection per call."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def list_users(self) -> UserListResult:
        result = UserListResult()
        with self.engine.connect() as conn:
            rows = conn.execute(text("SELECT id, name, email, age FROM users")).mappings()
            for row in rows:
                try:
                    result.users.append(UserOut.model_validate(dict(row)))
                except ValidationError as exc:
                    # keep going, a bad row must not fail the whole listing
                    result.skipped += 1
                    logger.warning("Skipping unreadable user row id=%s: %s", row.get("id"), exc)

        logger.info("Loaded %d users (%d skipped)", len(result.users), result.skipped)
        return result

    def get_user(self, user_id: int) -> Optional[UserOut]:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT id, name, email, age FROM users WHERE id = :id"),
                {"id": user_id},
            ).mappings().first()
        if row is None:
            return None
        try:
            return UserOut.model_validate(dict(row))
        except ValidationError as exc:
            # bad stored data is a server fault, not a client one
            logger.error("Stored user row id=%s is unreadable: %s", user_id, exc)
            raise ApiError.internal("Stored user record could not be read") from exc

    def create_user(self, request: UpdateUserRequest) -> UserOut:
        with self.engine.begin() as conn:
            result = conn.execute(
                text("INSERT INTO users (name, email, age) VALUES (:name, :email, :age)"),
                {"name": request.name, "email": request.email, "age": request.age},
            )
            new_id = result.lastrowid

        logger.info("Created user with id %s", new_id)
        return UserOut(id=new_id, name=request.name, email=request.email, age=request.age)

    def update_user(self, user_id: int, request: UpdateUserRequest, context: RequestContext):
        """Existence check, field update and SUCCESS audit row commit or roll back together."""
        with self.engine.connect() as conn:
            with conn.begin():
                logger.info("Transaction started for update of user %s", user_id)

                exists = conn.execute(
                    text("SELECT COUNT(*) FROM users WHERE id = :id"), {"id": user_id}
                ).scalar_one()
                if exists == 0:
                    raise ApiError.not_found(f"User with ID {user_id} not found")

                updated = conn.execute(
                    text("UPDATE users SET name = :name, email = :email, age = :age WHERE id = :id"),
                    {"id": user_id, "name": request.name, "email": request.email, "age": request.age},
                ).rowcount
                if updated < 1:
                    raise RuntimeError("User data update was not applied")

                insert_entry(
                    conn,
                    context,
                    user_id,
                    OperationType.UPDATE_USER,
                    OperationStatus.SUCCESS,
                    f"Updated fields: name={request.name}, email={request.email}, age={request.age}",
                )

        logger.info("Transaction committed for user %s", user_id)

    def update_email(self, user_id: int, current_name: str, new_email: str) -> int:
        # name must match exactly (case-sensitive) as a light identity check
        with self.engine.begin() as conn:
            return conn.execute(
                text("UPDATE users SET email = :new_email WHERE id = :id AND name = :current_name"),
                {"id": user_id, "current_name": current_name, "new_email": new_email},
            ).rowcount

    def delete_user(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            return conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user_id}).rowcount

    def list_logs(self, user_id: Optional[int] = None, limit: int = 50) -> List[UpdateLogOut]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT id, user_id, operation_type, operation_time, status,
                           details, ip_address, user_agent
                    FROM update_logs
                    WHERE (:user_id IS NULL OR user_id = :user_id)
                    ORDER BY operation_time DESC, id DESC
                    LIMIT :limit
                    """
                ),
                {"user_id": user_id, "limit": limit},
            ).mappings().all()

        logs = [UpdateLogOut.model_validate(dict(row)) for row in rows]
        logger.info("Loaded %d audit entries", len(logs))
        return logs

    def log_statistics(self) -> LogStatistics:
        with self.engine.connect() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT
                        COUNT(*) AS total_operations,
                        COALESCE(SUM(CASE WHEN status = 'SUCCESS' THEN 1 ELSE 0 END), 0) AS success_operations,
                        COALESCE(SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END), 0) AS failed_operations,
                        COUNT(DISTINCT user_id) AS unique_users,
                        MIN(operation_time) AS first_log,
                        MAX(operation_time) AS last_log
                    FROM update_logs
                    """
                )
            ).mappings().one()
        return LogStatistics.model_validate(dict(row))
