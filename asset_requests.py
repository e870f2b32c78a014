"""
Borrow / return / issue-report requests and their admin processing.

Lifecycle::

    PENDING --approve--> APPROVED --complete--> COMPLETED
    PENDING --reject---> REJECTED

Asset side effects:

- BORROW approved: asset IN_USE, held by the requester.
- BORROW or RETURN completed: asset AVAILABLE, holder cleared.
- REPORT_ISSUE approved: asset MAINTENANCE.
- REPORT_ISSUE completed: inspection date stamped, asset back to IN_USE if
  someone holds it, AVAILABLE otherwise.
"""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

import errors
from database import ASSET_REQUESTS, ASSETS, create_document, get_documents, to_object_id, utcnow
from schemas import AssetRequest, AssetStatus, IssueImage, RequestStatus, RequestType, Role, SessionUser

logger = structlog.get_logger(__name__)


def _is_admin(session: SessionUser) -> bool:
    return session.role == Role.ADMIN


def _load_asset(db: Database, asset_id: Any) -> Dict[str, Any]:
    oid = to_object_id(asset_id)
    asset = db[ASSETS].find_one({"_id": oid}) if oid else None
    if not asset:
        raise errors.NotFound("Asset")
    return asset


def _set_asset(db: Database, asset_id, set_fields: Dict[str, Any], unset_holder: bool = False) -> None:
    update: Dict[str, Any] = {"$set": dict(set_fields, updatedAt=utcnow())}
    if unset_holder:
        update["$unset"] = {"currentHolder": ""}
    db[ASSETS].update_one({"_id": asset_id}, update)


def create_request(db: Database, session: SessionUser, data: Dict[str, Any]) -> Dict[str, Any]:
    asset = _load_asset(db, data.get("asset"))
    requester = to_object_id(session.id)
    if requester is None:
        raise errors.Unauthorized("Invalid session subject")

    try:
        request = AssetRequest(
            asset=asset["_id"],
            request_type=data["requestType"],
            requested_by=requester,
            start_date=data.get("startDate"),
            expected_return_date=data.get("expectedReturnDate"),
            issue_description=data.get("issueDescription"),
        )
    except ValidationError as exc:
        raise errors.MissingFields([err["msg"] for err in exc.errors()])

    if request.request_type == RequestType.BORROW.value:
        if asset.get("status") != AssetStatus.AVAILABLE.value:
            raise errors.InvalidInput("Asset is not available for borrowing")
        if request.expected_return_date < request.start_date:
            raise errors.InvalidInput("expectedReturnDate must not be before startDate")
    elif request.request_type == RequestType.RETURN.value:
        if asset.get("currentHolder") != requester:
            raise errors.InvalidInput("Only the current holder can return this asset")

    doc = create_document(db, ASSET_REQUESTS, request.to_document())
    logger.info(
        "asset_request_created",
        request_id=str(doc["_id"]),
        asset_id=str(asset["_id"]),
        request_type=request.request_type,
        by=session.id,
    )
    return doc


def list_requests(
    db: Database,
    session: SessionUser,
    status: Optional[str] = None,
    request_type: Optional[str] = None,
    asset_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if not _is_admin(session):
        query["requestedBy"] = to_object_id(session.id)
    if status:
        query["status"] = status
    if request_type:
        query["requestType"] = request_type
    if asset_id:
        oid = to_object_id(asset_id)
        if oid is None:
            return []
        query["asset"] = oid
    return get_documents(db, ASSET_REQUESTS, query, sort=[("createdAt", DESCENDING)])


def get_request(db: Database, session: SessionUser, request_id: str) -> Dict[str, Any]:
    oid = to_object_id(request_id)
    request = db[ASSET_REQUESTS].find_one({"_id": oid}) if oid else None
    # Other users' requests are reported as missing
    if not request or (not _is_admin(session) and str(request.get("requestedBy")) != session.id):
        raise errors.NotFound("Request")
    return request


def _processing_fields(admin: SessionUser, admin_notes: Optional[str]) -> Dict[str, Any]:
    now = utcnow()
    fields: Dict[str, Any] = {
        "processedBy": to_object_id(admin.id),
        "processedAt": now,
        "updatedAt": now,
    }
    if admin_notes is not None:
        fields["adminNotes"] = admin_notes
    return fields


def _transition(db: Database, request: Dict[str, Any], expected: RequestStatus, fields: Dict[str, Any]) -> Dict[str, Any]:
    updated = db[ASSET_REQUESTS].find_one_and_update(
        {"_id": request["_id"], "status": expected.value},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise errors.InvalidInput(f"Request is no longer {expected.value}")
    return updated


def process_request(
    db: Database,
    admin: SessionUser,
    request_id: str,
    decision: str,
    admin_notes: Optional[str] = None,
) -> Dict[str, Any]:
    if decision not in (RequestStatus.APPROVED.value, RequestStatus.REJECTED.value):
        raise errors.InvalidInput("status must be APPROVED or REJECTED")

    request = get_request(db, admin, request_id)
    if request.get("status") != RequestStatus.PENDING.value:
        raise errors.InvalidInput(f"Cannot process a {request.get('status')} request")

    request_type = request.get("requestType")
    asset = None
    if decision == RequestStatus.APPROVED.value:
        asset = _load_asset(db, request["asset"])
        if request_type == RequestType.BORROW.value and asset.get("status") != AssetStatus.AVAILABLE.value:
            raise errors.InvalidInput("Asset is not available for borrowing")

    fields = _processing_fields(admin, admin_notes)
    fields["status"] = decision
    updated = _transition(db, request, RequestStatus.PENDING, fields)

    if asset is not None:
        if request_type == RequestType.BORROW.value:
            _set_asset(db, asset["_id"], {"status": AssetStatus.IN_USE.value, "currentHolder": request["requestedBy"]})
        elif request_type == RequestType.REPORT_ISSUE.value:
            _set_asset(db, asset["_id"], {"status": AssetStatus.MAINTENANCE.value})

    logger.info(
        "asset_request_processed",
        request_id=request_id,
        request_type=request_type,
        decision=decision,
        by=admin.id,
    )
    return updated


def complete_request(
    db: Database,
    admin: SessionUser,
    request_id: str,
    admin_notes: Optional[str] = None,
) -> Dict[str, Any]:
    request = get_request(db, admin, request_id)
    if request.get("status") != RequestStatus.APPROVED.value:
        raise errors.InvalidInput(f"Cannot complete a {request.get('status')} request")

    asset = _load_asset(db, request["asset"])
    request_type = request.get("requestType")
    fields = _processing_fields(admin, admin_notes)
    fields["status"] = RequestStatus.COMPLETED.value
    now = fields["processedAt"]

    if request_type in (RequestType.BORROW.value, RequestType.RETURN.value):
        fields["actualReturnDate"] = now
        updated = _transition(db, request, RequestStatus.APPROVED, fields)
        _set_asset(db, asset["_id"], {"status": AssetStatus.AVAILABLE.value}, unset_holder=True)
    else:
        updated = _transition(db, request, RequestStatus.APPROVED, fields)
        status = AssetStatus.IN_USE if asset.get("currentHolder") else AssetStatus.AVAILABLE
        _set_asset(db, asset["_id"], {"status": status.value, "lastInspectionDate": now})

    logger.info("asset_request_completed", request_id=request_id, request_type=request_type, by=admin.id)
    return updated


def get_issue_report(db: Database, session: SessionUser, request_id: str) -> Dict[str, Any]:
    request = get_request(db, session, request_id)
    if request.get("requestType") != RequestType.REPORT_ISSUE.value:
        raise errors.InvalidInput("Images can only be attached to issue reports")
    return request


def add_issue_image(db: Database, request: Dict[str, Any], url: str) -> Dict[str, Any]:
    image = IssueImage(url=url, uploaded_at=utcnow())
    db[ASSET_REQUESTS].update_one(
        {"_id": request["_id"]},
        {"$push": {"issueImages": image.to_document()}, "$set": {"updatedAt": utcnow()}},
    )
    return image.to_document()


def get_request_for_image(db: Database, session: SessionUser, url: str) -> Dict[str, Any]:
    """Find the request an uploaded image belongs to, with the same visibility as ``get_request``."""
    request = db[ASSET_REQUESTS].find_one({"issueImages.url": url}, {"_id": 1})
    if not request:
        raise errors.NotFound("Image")
    return get_request(db, session, str(request["_id"]))
