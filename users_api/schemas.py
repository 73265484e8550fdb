from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional
from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def check_email(value: str) -> str:
    # format check only, the address is stored exactly as submitted
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError(f"value is not a valid email address: {exc}") from exc
    return value


Email = Annotated[str, AfterValidator(check_email)]


class CamelModel(BaseModel):
    # JSON uses camelCase, python code keeps snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OperationType(str, Enum):
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    UPDATE_EMAIL = "UPDATE_EMAIL"
    DELETE_USER = "DELETE_USER"


class OperationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class UpdateUserRequest(CamelModel):
    name: str = Field(min_length=2, max_length=100)
    email: Email
    age: Optional[int] = Field(default=None, ge=0, le=150)


class UpdateEmailRequest(CamelModel):
    current_name: str = Field(min_length=1)
    new_email: Email

    @field_validator("current_name")
    @classmethod
    def current_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Current name is required")
        return value


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    age: Optional[int] = None


class UpdateLogOut(CamelModel):
    id: int
    user_id: int
    operation_type: str
    operation_time: str
    status: str
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class LogListResponse(CamelModel):
    total_logs: int
    logs: List[UpdateLogOut]


class LogStatistics(CamelModel):
    total_operations: int
    success_operations: int
    failed_operations: int
    unique_users: int
    first_log: Optional[str] = None
    last_log: Optional[str] = None


class EmailUpdateResponse(CamelModel):
    message: str
    user_id: int
    new_email: str


class BusinessFailureResponse(BaseModel):
    message: str
    reason: str


class MessageResponse(BaseModel):
    message: str


class ApiErrorResponse(CamelModel):
    message: str
    error_type: str = "GeneralError"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    details: Dict[str, str] = Field(default_factory=dict)
