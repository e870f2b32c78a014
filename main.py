import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from pymongo.database import Database

import accounts
import asset_requests
import assets
import errors
from config import Settings, get_settings
from database import MongoContext, get_db, serialize
from logging_config import RequestIdMiddleware, setup_logging
from schemas import (
    AssetStatus,
    CamelModel,
    RequestStatus,
    RequestType,
    Role,
    SessionUser,
    UserStatus,
    UtcDatetime,
)
from security import (
    AccessGateMiddleware,
    create_session_token,
    get_current_session,
    get_optional_session,
    require_role,
)

logger = structlog.get_logger(__name__)

router = APIRouter()
admin_only = require_role(Role.ADMIN)


# ----------------------------
# Pydantic models (requests)
# ----------------------------
class RequestModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class RegisterRequest(RequestModel):
    # Presence is checked by accounts.register_user so the error is MISSING_FIELDS
    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    department: Optional[str] = None


class LoginRequest(RequestModel):
    username: Optional[str] = None
    password: Optional[str] = None


class AssetCreateRequest(RequestModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    status: AssetStatus
    purchase_date: UtcDatetime
    description: Optional[str] = None
    current_holder: Optional[str] = None
    last_inspection_date: Optional[UtcDatetime] = None


class AssetUpdateRequest(RequestModel):
    code: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[str] = Field(None, min_length=1)
    status: Optional[AssetStatus] = None
    purchase_date: Optional[UtcDatetime] = None
    description: Optional[str] = None
    current_holder: Optional[str] = None
    last_inspection_date: Optional[UtcDatetime] = None

    @field_validator("code", "name", "type", "status", mode="before")
    @classmethod
    def _not_null(cls, value):
        # Omitted fields are kept, explicit nulls are rejected
        if value is None:
            raise ValueError("must not be null")
        return value


class AssetRequestCreateRequest(RequestModel):
    asset: str
    request_type: RequestType
    start_date: Optional[UtcDatetime] = None
    expected_return_date: Optional[UtcDatetime] = None
    issue_description: Optional[str] = None


class ProcessRequest(RequestModel):
    status: Literal["APPROVED", "REJECTED"]
    admin_notes: Optional[str] = None


class CompleteRequest(RequestModel):
    admin_notes: Optional[str] = None


class UserUpdateRequest(RequestModel):
    status: Optional[UserStatus] = None
    role: Optional[Role] = None
    full_name: Optional[str] = Field(None, min_length=1)
    department: Optional[str] = Field(None, min_length=1)


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _message(request: Request, code: str) -> str:
    return errors.message_for(code, _settings(request).locale)


def _json(doc):
    return jsonable_encoder(serialize(doc))


# ----------------------------
# Health/Test Endpoints
# ----------------------------
@router.get("/")
def root():
    return {"message": "Office Asset Tracker Running"}


@router.get("/test")
def check_database(db: Database = Depends(get_db)):
    try:
        collections = db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        logger.warning("database_check_failed", error=str(e))
        return {"backend": "ok", "database": f"error: {str(e)}"}


# ----------------------------
# Pages (behind the access gate)
# ----------------------------
@router.get("/login")
def login_page():
    return {"message": "Sign in", "loginUrl": "/api/auth/login", "registerUrl": "/api/auth/register"}


@router.get("/dashboard")
def dashboard(session: SessionUser = Depends(get_current_session), db: Database = Depends(get_db)):
    result = assets.list_assets(db)
    return {"user": session.model_dump(mode="json"), "stats": result["stats"].model_dump(by_alias=True)}


# ----------------------------
# Auth Endpoints
# ----------------------------
@router.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, request: Request, db: Database = Depends(get_db)):
    user = accounts.register_user(
        db, payload.model_dump(by_alias=True), rounds=_settings(request).bcrypt_rounds
    )
    return JSONResponse(
        status_code=201,
        content={"message": _message(request, "REGISTERED"), "user": _json(accounts.user_summary(user))},
    )


@router.post("/api/auth/login")
def login(payload: LoginRequest, request: Request, db: Database = Depends(get_db)):
    settings = _settings(request)
    user = accounts.authenticate(db, payload.username, payload.password)
    session = accounts.session_for(user)
    token, exp = create_session_token(session, settings)
    response = JSONResponse(
        content={
            "token": token,
            "expires": datetime.fromtimestamp(exp, tz=timezone.utc).isoformat(),
            "user": session.model_dump(mode="json"),
        }
    )
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return response


@router.get("/api/auth/session")
def current_session(session: Optional[SessionUser] = Depends(get_optional_session)):
    if session is None:
        return {}
    return {"user": session.model_dump(mode="json")}


@router.post("/api/auth/logout")
def logout(request: Request):
    settings = _settings(request)
    response = JSONResponse(content={"message": _message(request, "LOGGED_OUT")})
    response.delete_cookie(settings.session_cookie_name, httponly=True, samesite="lax", secure=settings.cookie_secure)
    return response


# ----------------------------
# Assets
# ----------------------------
@router.get("/api/assets")
def list_assets(
    sort_field: str = Query("createdAt", alias="sortField"),
    sort_order: Literal["asc", "desc"] = Query("asc", alias="sortOrder"),
    start_date: Optional[UtcDatetime] = Query(None, alias="startDate"),
    end_date: Optional[UtcDatetime] = Query(None, alias="endDate"),
    date_field: str = Query("createdAt", alias="dateField"),
    session: SessionUser = Depends(get_current_session),
    db: Database = Depends(get_db),
):
    result = assets.list_assets(db, sort_field, sort_order, start_date, end_date, date_field)
    return {
        "assets": serialize(result["assets"]),
        "stats": result["stats"].model_dump(by_alias=True),
    }


@router.post("/api/assets")
def create_asset(payload: AssetCreateRequest, user: SessionUser = Depends(admin_only), db: Database = Depends(get_db)):
    asset = assets.create_asset(db, payload.model_dump(by_alias=True))
    return serialize(asset)


@router.get("/api/assets/{asset_id}")
def get_asset(asset_id: str, session: SessionUser = Depends(get_current_session), db: Database = Depends(get_db)):
    return serialize(assets.get_asset(db, asset_id))


@router.put("/api/assets/{asset_id}")
def update_asset(
    asset_id: str,
    payload: AssetUpdateRequest,
    user: SessionUser = Depends(admin_only),
    db: Database = Depends(get_db),
):
    asset = assets.update_asset(db, asset_id, payload.model_dump(by_alias=True, exclude_unset=True))
    return serialize(asset)


@router.delete("/api/assets/{asset_id}")
def delete_asset(asset_id: str, request: Request, user: SessionUser = Depends(admin_only), db: Database = Depends(get_db)):
    assets.delete_asset(db, asset_id)
    return {"message": _message(request, "ASSET_DELETED")}


# ----------------------------
# Asset requests
# ----------------------------
@router.get("/api/asset-requests")
def list_asset_requests(
    status: Optional[RequestStatus] = None,
    request_type: Optional[RequestType] = Query(None, alias="requestType"),
    asset_id: Optional[str] = Query(None, alias="assetId"),
    session: SessionUser = Depends(get_current_session),
    db: Database = Depends(get_db),
):
    items = asset_requests.list_requests(
        db,
        session,
        status=status.value if status else None,
        request_type=request_type.value if request_type else None,
        asset_id=asset_id,
    )
    return {"requests": serialize(items)}


@router.post("/api/asset-requests", status_code=201)
def create_asset_request(
    payload: AssetRequestCreateRequest,
    session: SessionUser = Depends(get_current_session),
    db: Database = Depends(get_db),
):
    doc = asset_requests.create_request(db, session, payload.model_dump(by_alias=True))
    return JSONResponse(status_code=201, content=_json(doc))


@router.get("/api/asset-requests/{request_id}")
def get_asset_request(request_id: str, session: SessionUser = Depends(get_current_session), db: Database = Depends(get_db)):
    return serialize(asset_requests.get_request(db, session, request_id))


@router.post("/api/asset-requests/{request_id}/process")
def process_asset_request(
    request_id: str,
    payload: ProcessRequest,
    user: SessionUser = Depends(admin_only),
    db: Database = Depends(get_db),
):
    return serialize(asset_requests.process_request(db, user, request_id, payload.status, payload.admin_notes))


@router.post("/api/asset-requests/{request_id}/complete")
def complete_asset_request(
    request_id: str,
    payload: CompleteRequest,
    user: SessionUser = Depends(admin_only),
    db: Database = Depends(get_db),
):
    return serialize(asset_requests.complete_request(db, user, request_id, payload.admin_notes))


@router.post("/api/asset-requests/{request_id}/images")
def upload_issue_image(
    request_id: str,
    request: Request,
    file: UploadFile = File(...),
    session: SessionUser = Depends(get_current_session),
    db: Database = Depends(get_db),
):
    settings = _settings(request)
    # Ownership and request type are checked before anything touches the disk
    report = asset_requests.get_issue_report(db, session, request_id)
    if not (file.content_type or "").startswith("image/"):
        raise errors.InvalidInput("Only image files can be attached")
    data = file.file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise errors.InvalidInput(f"Images are limited to {settings.max_upload_bytes} bytes")

    safe_name = f"{request_id}_{int(datetime.now().timestamp())}_{os.path.basename(file.filename or 'image')}"
    dest_path = os.path.join(settings.upload_dir, safe_name)
    with open(dest_path, "wb") as f:
        f.write(data)

    try:
        image = asset_requests.add_issue_image(db, report, f"/uploads/{safe_name}")
    except Exception:
        os.remove(dest_path)
        raise
    logger.info("issue_image_uploaded", request_id=request_id, url=image["url"], by=session.id)
    return {"message": _message(request, "IMAGE_UPLOADED"), "image": _json(image)}


@router.get("/uploads/{filename}")
def get_issue_image(
    filename: str,
    request: Request,
    session: SessionUser = Depends(get_current_session),
    db: Database = Depends(get_db),
):
    safe_name = os.path.basename(filename)
    asset_requests.get_request_for_image(db, session, f"/uploads/{safe_name}")
    path = os.path.join(_settings(request).upload_dir, safe_name)
    if not os.path.isfile(path):
        raise errors.NotFound("Image")
    return FileResponse(path)


# ----------------------------
# Users (admin)
# ----------------------------
@router.get("/api/users")
def list_users(status: Optional[UserStatus] = None, user: SessionUser = Depends(admin_only), db: Database = Depends(get_db)):
    return {"users": [serialize(accounts.user_summary(u)) for u in accounts.list_users(db, status)]}


@router.patch("/api/users/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    user: SessionUser = Depends(admin_only),
    db: Database = Depends(get_db),
):
    updated = accounts.update_user(db, user_id, payload.model_dump(by_alias=True, exclude_unset=True), user)
    return serialize(accounts.user_summary(updated))


# ----------------------------
# FastAPI App
# ----------------------------
def create_app(settings: Optional[Settings] = None, mongo: Optional[MongoContext] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    mongo = mongo or MongoContext.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_started", app=settings.app_name, environment=settings.environment)
        yield
        mongo.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.mongo = mongo

    app.add_middleware(AccessGateMiddleware, settings=settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.public_base_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)
    errors.register_exception_handlers(app)

    os.makedirs(settings.upload_dir, exist_ok=True)

    app.include_router(router)
    return app


def __getattr__(name: str):
    # `uvicorn main:app` builds the app from the environment on first access
    if name == "app":
        app = create_app()
        globals()["app"] = app
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
