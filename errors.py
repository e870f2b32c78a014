"""
Error kinds raised by the service layer and their mapping to HTTP responses.

Every handled error answers with the same body shape::

    {"error": "<CODE>", "message": "<localized text>", "detail": ...}

``detail`` is only present when the raising code supplied one.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

logger = structlog.get_logger(__name__)


MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "UNAUTHORIZED": "Unauthorized",
        "NOT_FOUND": "{resource} not found",
        "MISSING_FIELDS": "Please fill in all required fields",
        "INVALID_INPUT": "Invalid request data",
        "DUPLICATE_USERNAME": "This username is already taken",
        "DUPLICATE_EMAIL": "This email is already registered",
        "INVALID_CREDENTIALS": "Invalid username or password",
        "ACCOUNT_INACTIVE": "This account has been suspended. Please contact an administrator",
        "ACCOUNT_PENDING": "This account is awaiting approval. Please contact an administrator",
        "SERVER_ERROR": "Internal server error",
        "REGISTERED": "Registration successful. Please wait for administrator approval",
        "ASSET_DELETED": "Asset deleted successfully",
        "IMAGE_UPLOADED": "Image uploaded",
        "LOGGED_OUT": "Signed out",
    },
    "th": {
        "UNAUTHORIZED": "ไม่ได้รับอนุญาต",
        "NOT_FOUND": "ไม่พบข้อมูลที่ต้องการ",
        "MISSING_FIELDS": "กรุณากรอกข้อมูลให้ครบถ้วน",
        "INVALID_INPUT": "รูปแบบข้อมูลไม่ถูกต้อง",
        "DUPLICATE_USERNAME": "ชื่อผู้ใช้นี้มีอยู่ในระบบแล้ว",
        "DUPLICATE_EMAIL": "อีเมลนี้มีอยู่ในระบบแล้ว",
        "INVALID_CREDENTIALS": "ชื่อผู้ใช้หรือรหัสผ่านไม่ถูกต้อง",
        "ACCOUNT_INACTIVE": "บัญชีผู้ใช้ถูกระงับการใช้งาน กรุณาติดต่อผู้ดูแลระบบ",
        "ACCOUNT_PENDING": "บัญชีผู้ใช้อยู่ระหว่างรอการอนุมัติ กรุณาติดต่อผู้ดูแลระบบ",
        "SERVER_ERROR": "เกิดข้อผิดพลาดภายในระบบ กรุณาลองใหม่อีกครั้ง",
        "REGISTERED": "ลงทะเบียนสำเร็จ กรุณารอการอนุมัติจากผู้ดูแลระบบ",
        "ASSET_DELETED": "ลบข้อมูลครุภัณฑ์เรียบร้อยแล้ว",
        "IMAGE_UPLOADED": "อัปโหลดรูปภาพเรียบร้อยแล้ว",
        "LOGGED_OUT": "ออกจากระบบแล้ว",
    },
}


def message_for(code: str, locale: str = "en", **params: Any) -> str:
    catalog = MESSAGES.get(locale) or MESSAGES["en"]
    template = catalog.get(code) or MESSAGES["en"].get(code, code)
    return template.format(**params)


class AppError(Exception):
    status_code = 500
    code = "SERVER_ERROR"

    def __init__(self, detail: Optional[Any] = None, **params: Any):
        super().__init__(detail or self.code)
        self.detail = detail
        self.params = params


class Unauthorized(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Record", detail: Optional[Any] = None):
        super().__init__(detail, resource=resource)


class MissingFields(AppError):
    status_code = 400
    code = "MISSING_FIELDS"


class InvalidInput(AppError):
    status_code = 400
    code = "INVALID_INPUT"


class DuplicateUsername(AppError):
    status_code = 400
    code = "DUPLICATE_USERNAME"


class DuplicateEmail(AppError):
    status_code = 400
    code = "DUPLICATE_EMAIL"


class InvalidCredentials(AppError):
    status_code = 401
    code = "INVALID_CREDENTIALS"


class AccountInactive(AppError):
    status_code = 401
    code = "ACCOUNT_INACTIVE"


class AccountPending(AppError):
    status_code = 401
    code = "ACCOUNT_PENDING"


class ServerError(AppError):
    status_code = 500
    code = "SERVER_ERROR"


def _locale(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return getattr(settings, "locale", "en")


def error_body(code: str, locale: str, detail: Optional[Any] = None, **params: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": code, "message": message_for(code, locale, **params)}
    if detail is not None:
        body["detail"] = detail
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, detail=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.code, _locale(request), exc.detail, **exc.params)),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body("INVALID_INPUT", _locale(request), errors))


async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("database_error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content=error_body("SERVER_ERROR", _locale(request)))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content=error_body("SERVER_ERROR", _locale(request)))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
