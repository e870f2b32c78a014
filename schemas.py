"""
Database Schemas for the Office Asset Tracker

Each document model below represents a MongoDB collection. Fields are
declared in snake_case and stored under their camelCase aliases, which is
also how they appear in the JSON API.

- User -> "user"
- Asset -> "asset"
- AssetRequest -> "assetrequest"
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Dates like "2024-01-01" parse to midnight UTC
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class UserStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssetStatus(str, Enum):
    IN_USE = "IN_USE"
    AVAILABLE = "AVAILABLE"
    BROKEN = "BROKEN"
    MAINTENANCE = "MAINTENANCE"


class RequestType(str, Enum):
    BORROW = "BORROW"
    RETURN = "RETURN"
    REPORT_ISSUE = "REPORT_ISSUE"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class User(DocumentModel):
    username: str = Field(..., min_length=1, description="Unique, stored lowercased")
    password: str = Field(..., description="bcrypt hash, never the plain password")
    email: EmailStr = Field(..., description="Unique, stored lowercased")
    full_name: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    role: Role = Role.USER
    status: UserStatus = UserStatus.PENDING
    last_login: Optional[UtcDatetime] = None

    @field_validator("username", "email", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class Asset(DocumentModel):
    code: str = Field(..., min_length=1, description="Unique asset code or tag")
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="Free text, e.g. Laptop, Monitor")
    status: AssetStatus
    description: Optional[str] = ""
    purchase_date: UtcDatetime
    current_holder: Optional[ObjectId] = None
    last_inspection_date: Optional[UtcDatetime] = None


class IssueImage(DocumentModel):
    url: str
    uploaded_at: UtcDatetime


class AssetRequest(DocumentModel):
    asset: ObjectId
    request_type: RequestType
    requested_by: ObjectId
    status: RequestStatus = RequestStatus.PENDING
    start_date: Optional[UtcDatetime] = None
    expected_return_date: Optional[UtcDatetime] = None
    actual_return_date: Optional[UtcDatetime] = None
    issue_description: Optional[str] = None
    issue_images: List[IssueImage] = []
    admin_notes: Optional[str] = None
    processed_by: Optional[ObjectId] = None
    processed_at: Optional[UtcDatetime] = None

    def missing_fields(self) -> List[str]:
        missing = []
        if self.request_type == RequestType.BORROW.value:
            if self.start_date is None:
                missing.append("startDate")
            if self.expected_return_date is None:
                missing.append("expectedReturnDate")
        if self.request_type == RequestType.REPORT_ISSUE.value:
            if not (self.issue_description or "").strip():
                missing.append("issueDescription")
        return missing

    @model_validator(mode="after")
    def _conditional_fields(self) -> "AssetRequest":
        missing = self.missing_fields()
        if missing:
            raise ValueError(f"{self.request_type} request requires: {', '.join(missing)}")
        return self


class SessionUser(CamelModel):
    """Claims carried by a session token."""

    id: str
    name: str
    email: str
    role: Role


class AssetStats(CamelModel):
    total: int = 0
    in_use: int = 0
    available: int = 0
    broken: int = 0
    maintenance: int = 0
