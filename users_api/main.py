# users_api/main.py
import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional, Union

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from users_api.audit import AuditLog, RequestContext, get_request_context
from users_api.config import configure_logging
from users_api.database import get_engine, init_db
from users_api.errors import (
    ApiError,
    ExceptionHandlingMiddleware,
    api_error_handler,
    http_error_handler,
    request_validation_handler,
    translate_exception,
)
from users_api.repository import UserRepository
from users_api.schemas import (
    BusinessFailureResponse,
    EmailUpdateResponse,
    LogListResponse,
    LogStatistics,
    MessageResponse,
    OperationStatus,
    OperationType,
    UpdateEmailRequest,
    UpdateUserRequest,
    UserOut,
)
from users_api.validation import validate_payload

logger = logging.getLogger(__name__)

SKIPPED_ROWS_HEADER = "X-Skipped-Rows"


def get_repository(engine: Engine = Depends(get_engine)) -> UserRepository:
    return UserRepository(engine)


def get_audit_log(engine: Engine = Depends(get_engine)) -> AuditLog:
    return AuditLog(engine)


def failure_details(error: ApiError) -> str:
    text = f"{error.error_type}: {error.message}"
    if error.details:
        text += " (" + ", ".join(f"{key}: {value}" for key, value in error.details.items()) + ")"
    return text


# ids are bound as 32-bit integers, like the stored columns
MIN_ID = -(2**31)
MAX_ID = 2**31 - 1


def require_valid_id(user_id: int, positive: bool = True):
    if not MIN_ID <= user_id <= MAX_ID:
        raise ApiError.validation(
            "Invalid request data", details={"ValidationError": f"ID must be between {MIN_ID} and {MAX_ID}"}
        )
    if positive and user_id <= 0:
        raise ApiError.validation(
            "Invalid request data", details={"ValidationError": "ID must be a positive number"}
        )


def audit_id(user_id: int) -> int:
    # out-of-range ids cannot be stored, 0 marks the entry as unassigned
    return user_id if MIN_ID <= user_id <= MAX_ID else 0


router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserOut])
def list_users(response: Response, repo: UserRepository = Depends(get_repository)):
    try:
        result = repo.list_users()
    except Exception as exc:
        raise translate_exception(exc, "GetUsers", "Internal server error while loading users")

    response.headers[SKIPPED_ROWS_HEADER] = str(result.skipped)
    return result.users


# /logs routes are declared before /{user_id} so the literal path wins
@router.get("/logs", response_model=LogListResponse)
def list_logs(
    user_id: Optional[int] = Query(default=None, alias="userId", ge=MIN_ID, le=MAX_ID),
    limit: int = Query(default=50, ge=1, le=1000),
    repo: UserRepository = Depends(get_repository),
):
    try:
        logs = repo.list_logs(user_id=user_id, limit=limit)
    except Exception as exc:
        logger.error("Error while retrieving audit log", exc_info=exc)
        raise ApiError.internal("Error while retrieving logs", error_type="LogRetrievalError")

    return LogListResponse(total_logs=len(logs), logs=logs)


@router.get("/logs/stats", response_model=Union[LogStatistics, MessageResponse])
def log_statistics(repo: UserRepository = Depends(get_repository)):
    try:
        stats = repo.log_statistics()
    except Exception as exc:
        logger.error("Error while computing audit log statistics", exc_info=exc)
        raise ApiError.internal("Error while retrieving log statistics", error_type="LogStatsError")

    if stats.total_operations == 0:
        return MessageResponse(message="No entries in the audit log")
    logger.info("Audit log statistics: %d operations", stats.total_operations)
    return stats


@router.get("/{user_id}", response_model=UserOut, name="get_user")
def get_user(user_id: int, repo: UserRepository = Depends(get_repository)):
    try:
        require_valid_id(user_id)
        user = repo.get_user(user_id)
    except Exception as exc:
        raise translate_exception(exc, "GetUser", "Internal server error while loading user")

    if user is None:
        raise ApiError.not_found(f"User with ID {user_id} not found")
    return user


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    response: Response,
    payload: Any = Body(default=None),
    repo: UserRepository = Depends(get_repository),
    audit: AuditLog = Depends(get_audit_log),
    context: RequestContext = Depends(get_request_context),
):
    try:
        user_request = validate_payload(UpdateUserRequest, payload)
        user = repo.create_user(user_request)
    except Exception as exc:
        error = translate_exception(exc, "CreateUser", "Internal server error while creating user")
        # no id was generated, 0 marks the entry as unassigned
        audit.record(context, 0, OperationType.CREATE_USER, OperationStatus.FAILED, failure_details(error))
        raise error

    audit.record(
        context,
        user.id,
        OperationType.CREATE_USER,
        OperationStatus.SUCCESS,
        f"Created user: {user.name}, {user.email}",
    )
    response.headers["Location"] = str(request.url_for("get_user", user_id=user.id))
    return user


@router.put("/{user_id}", response_class=PlainTextResponse)
def update_user(
    user_id: int,
    payload: Any = Body(default=None),
    repo: UserRepository = Depends(get_repository),
    audit: AuditLog = Depends(get_audit_log),
    context: RequestContext = Depends(get_request_context),
):
    try:
        require_valid_id(user_id, positive=False)
        user_request = validate_payload(UpdateUserRequest, payload)
        # the SUCCESS entry is written inside the update transaction
        repo.update_user(user_id, user_request, context)
    except Exception as exc:
        error = translate_exception(exc, "UpdateUser", "Internal server error while updating user")
        # the transaction is already rolled back at this point
        audit.record(context, audit_id(user_id), OperationType.UPDATE_USER, OperationStatus.FAILED, failure_details(error))
        raise error

    return "User data updated"


@router.put(
    "/{user_id}/email",
    response_model=EmailUpdateResponse,
    responses={400: {"model": BusinessFailureResponse}},
)
def update_user_email(
    user_id: int,
    payload: Any = Body(default=None),
    repo: UserRepository = Depends(get_repository),
    audit: AuditLog = Depends(get_audit_log),
    context: RequestContext = Depends(get_request_context),
):
    try:
        require_valid_id(user_id, positive=False)
        email_request = validate_payload(UpdateEmailRequest, payload)
        affected = repo.update_email(user_id, email_request.current_name, email_request.new_email)
    except Exception as exc:
        error = translate_exception(exc, "UpdateUserEmail", "Internal server error while updating email")
        audit.record(context, audit_id(user_id), OperationType.UPDATE_EMAIL, OperationStatus.FAILED, failure_details(error))
        raise error

    if affected < 1:
        reason = "User not found or name does not match"
        audit.record(context, audit_id(user_id), OperationType.UPDATE_EMAIL, OperationStatus.FAILED, reason)
        failure = BusinessFailureResponse(message="Email update failed", reason=reason)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=failure.model_dump())

    audit.record(
        context,
        user_id,
        OperationType.UPDATE_EMAIL,
        OperationStatus.SUCCESS,
        f"New email: {email_request.new_email}, name check: {email_request.current_name}",
    )
    logger.info("Email of user %s updated", user_id)
    return EmailUpdateResponse(
        message="Email updated successfully", user_id=user_id, new_email=email_request.new_email
    )


@router.delete("/{user_id}", response_class=PlainTextResponse)
def delete_user(
    user_id: int,
    repo: UserRepository = Depends(get_repository),
    audit: AuditLog = Depends(get_audit_log),
    context: RequestContext = Depends(get_request_context),
):
    try:
        require_valid_id(user_id)
        affected = repo.delete_user(user_id)
    except Exception as exc:
        error = translate_exception(exc, "DeleteUser", "Internal server error while deleting user")
        audit.record(context, audit_id(user_id), OperationType.DELETE_USER, OperationStatus.FAILED, failure_details(error))
        raise error

    if affected < 1:
        audit.record(context, audit_id(user_id), OperationType.DELETE_USER, OperationStatus.FAILED, "User not found")
        raise ApiError.not_found(f"User with ID {user_id} not found")

    audit.record(context, audit_id(user_id), OperationType.DELETE_USER, OperationStatus.SUCCESS, "User deleted")
    logger.info("User %s deleted", user_id)
    return f"User with ID {user_id} deleted"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # honour an overridden engine (tests) when the app is started
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    init_db(engine)
    yield


app = FastAPI(title="Users API", lifespan=lifespan)

app.add_middleware(ExceptionHandlingMiddleware)
# added last so error bodies rendered by the middleware above still get CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)

app.include_router(router)
