from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

import errors
from database import ASSET_REQUESTS, ASSETS, USERS, create_document, get_documents, to_object_id, utcnow
from schemas import Asset, AssetStats, AssetStatus

logger = structlog.get_logger(__name__)

SORT_FIELDS = (
    "createdAt",
    "updatedAt",
    "purchaseDate",
    "lastInspectionDate",
    "code",
    "name",
    "type",
    "status",
)
DATE_FIELDS = ("createdAt", "purchaseDate")


def compute_stats(assets: List[Dict[str, Any]]) -> AssetStats:
    counts = {status.value: 0 for status in AssetStatus}
    for asset in assets:
        status = asset.get("status")
        if status in counts:
            counts[status] += 1
    return AssetStats(
        total=len(assets),
        in_use=counts[AssetStatus.IN_USE.value],
        available=counts[AssetStatus.AVAILABLE.value],
        broken=counts[AssetStatus.BROKEN.value],
        maintenance=counts[AssetStatus.MAINTENANCE.value],
    )


def list_assets(
    db: Database,
    sort_field: str = "createdAt",
    sort_order: str = "asc",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    date_field: str = "createdAt",
) -> Dict[str, Any]:
    if sort_field not in SORT_FIELDS:
        raise errors.InvalidInput(f"sortField must be one of {', '.join(SORT_FIELDS)}")
    if date_field not in DATE_FIELDS:
        raise errors.InvalidInput(f"dateField must be one of {', '.join(DATE_FIELDS)}")

    query: Dict[str, Any] = {}
    date_filter: Dict[str, Any] = {}
    if start_date is not None:
        date_filter["$gte"] = start_date
    if end_date is not None:
        date_filter["$lte"] = end_date
    if date_filter:
        query[date_field] = date_filter

    direction = DESCENDING if sort_order == "desc" else ASCENDING
    assets = get_documents(db, ASSETS, query, sort=[(sort_field, direction)])
    return {"assets": assets, "stats": compute_stats(assets)}


def get_asset(db: Database, asset_id: str) -> Dict[str, Any]:
    oid = to_object_id(asset_id)
    asset = db[ASSETS].find_one({"_id": oid}) if oid else None
    if not asset:
        raise errors.NotFound("Asset")
    return asset


def _holder_id(db: Database, value: Any):
    holder = to_object_id(value)
    if holder is None or db[USERS].find_one({"_id": holder}, {"_id": 1}) is None:
        raise errors.InvalidInput("currentHolder must be an existing user id")
    return holder


def create_asset(db: Database, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(fields)
    if fields.get("currentHolder") is not None:
        fields["currentHolder"] = _holder_id(db, fields["currentHolder"])
    if fields.get("description") is None:
        fields["description"] = ""
    asset = Asset(**fields)
    # Duplicate codes are rejected by the unique index (DuplicateKeyError)
    doc = create_document(db, ASSETS, asset.to_document())
    logger.info("asset_created", asset_id=str(doc["_id"]), code=doc["code"])
    return doc


def update_asset(db: Database, asset_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    oid = to_object_id(asset_id)
    if oid is None:
        raise errors.NotFound("Asset")

    changes = dict(fields)
    if changes.get("purchaseDate") is None:
        changes.pop("purchaseDate", None)
    if "description" in changes and changes["description"] is None:
        changes["description"] = ""
    update: Dict[str, Any] = {}
    if "currentHolder" in changes:
        holder = changes.pop("currentHolder")
        if holder is None:
            update["$unset"] = {"currentHolder": ""}
        else:
            changes["currentHolder"] = _holder_id(db, holder)
    changes["updatedAt"] = utcnow()
    update["$set"] = changes

    asset = db[ASSETS].find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
    if not asset:
        raise errors.NotFound("Asset")
    logger.info("asset_updated", asset_id=asset_id, fields=sorted(fields))
    return asset


def delete_asset(db: Database, asset_id: str) -> Dict[str, Any]:
    oid = to_object_id(asset_id)
    asset = db[ASSETS].find_one_and_delete({"_id": oid}) if oid else None
    if not asset:
        logger.info("asset_delete_missing", asset_id=asset_id)
        raise errors.NotFound("Asset")
    removed = db[ASSET_REQUESTS].delete_many({"asset": oid}).deleted_count
    logger.info("asset_deleted", asset_id=asset_id, requests_removed=removed)
    return asset
