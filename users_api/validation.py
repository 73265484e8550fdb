from typing import Any, Type, TypeVar
from pydantic import BaseModel, ValidationError

from users_api.errors import ApiError, error_messages

M = TypeVar("M", bound=BaseModel)


def validate_payload(model: Type[M], payload: Any) -> M:
    """Parse a request body into ``model``.

    Raises ApiError (kind VALIDATION) whose details list every violated field,
    not only the first one.
    """
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ApiError.validation(
            "Request validation failed", details=error_messages(exc.errors())
        ) from exc
