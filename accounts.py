"""Credential checks, self-registration and admin changes to user accounts."""
from typing import Any, Dict, List, Optional

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database

import errors
from database import USERS, create_document, get_documents, to_object_id, utcnow
from schemas import Role, SessionUser, User, UserStatus
from security import hash_password, verify_password

logger = structlog.get_logger(__name__)

REGISTRATION_FIELDS = ("username", "password", "email", "fullName", "department")


def user_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "fullName": user.get("fullName"),
        "department": user.get("department"),
        "role": user.get("role"),
        "status": user.get("status"),
        "lastLogin": user.get("lastLogin"),
        "createdAt": user.get("createdAt"),
    }


def session_for(user: Dict[str, Any]) -> SessionUser:
    return SessionUser(
        id=str(user["_id"]),
        name=user.get("fullName") or user.get("username") or "",
        email=user.get("email") or "",
        role=user.get("role", Role.USER.value),
    )


def authenticate(db: Database, username: Optional[str], password: Optional[str]) -> Dict[str, Any]:
    """Check a username/password pair and stamp ``lastLogin`` on success.

    Password mismatches are reported before account status so that a wrong
    password never reveals whether an account is pending or suspended.
    """
    if not username or not password:
        raise errors.MissingFields()

    user = db[USERS].find_one({"username": username.strip().lower()})
    if not user:
        logger.info("login_rejected", reason="unknown_user")
        raise errors.InvalidCredentials()

    if not verify_password(password, user.get("password", "")):
        logger.info("login_rejected", reason="bad_password", user_id=str(user["_id"]))
        raise errors.InvalidCredentials()

    status = user.get("status")
    if status == UserStatus.INACTIVE.value:
        raise errors.AccountInactive()
    if status == UserStatus.PENDING.value:
        raise errors.AccountPending()

    now = utcnow()
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"lastLogin": now}})
    user["lastLogin"] = now
    logger.info("user_logged_in", user_id=str(user["_id"]))
    return user


def register_user(db: Database, data: Dict[str, Any], rounds: int = 12) -> Dict[str, Any]:
    missing = [f for f in REGISTRATION_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise errors.MissingFields(missing)

    username = data["username"].strip().lower()
    email = data["email"].strip().lower()
    if db[USERS].find_one({"username": username}):
        raise errors.DuplicateUsername()
    if db[USERS].find_one({"email": email}):
        raise errors.DuplicateEmail()

    user = User(
        username=username,
        password=hash_password(data["password"], rounds=rounds),
        email=email,
        full_name=data["fullName"].strip(),
        department=data["department"].strip(),
        role=Role.USER,
        status=UserStatus.PENDING,
    )
    doc = create_document(db, USERS, user.to_document())
    logger.info("user_registered", user_id=str(doc["_id"]), username=username)
    return doc


def create_user(
    db: Database,
    *,
    username: str,
    password: str,
    email: str,
    full_name: str,
    department: str,
    role: Role = Role.USER,
    status: UserStatus = UserStatus.ACTIVE,
    rounds: int = 12,
) -> Dict[str, Any]:
    """Create an account directly, bypassing registration (seeding, admin tooling)."""
    user = User(
        username=username,
        password=hash_password(password, rounds=rounds),
        email=email,
        full_name=full_name,
        department=department,
        role=role,
        status=status,
    )
    return create_document(db, USERS, user.to_document())


def list_users(db: Database, status: Optional[UserStatus] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if status is not None:
        query["status"] = status.value
    return get_documents(db, USERS, query, sort=[("createdAt", 1)])


def update_user(db: Database, user_id: str, changes: Dict[str, Any], admin: SessionUser) -> Dict[str, Any]:
    oid = to_object_id(user_id)
    if oid is None:
        raise errors.NotFound("User")
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        raise errors.MissingFields(["status", "role", "fullName", "department"])
    changes["updatedAt"] = utcnow()
    user = db[USERS].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not user:
        raise errors.NotFound("User")
    logger.info("user_updated", user_id=user_id, by=admin.id, fields=sorted(changes))
    return user
