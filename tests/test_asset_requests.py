"""
Borrow / return / issue-report workflow.
"""

import os

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

import asset_requests
from conftest import auth_headers, make_asset, make_user
from database import ASSET_REQUESTS, ASSETS
from schemas import AssetStatus

pytestmark = pytest.mark.unit


def _borrow(client, headers, asset, **overrides):
    body = {
        "asset": str(asset["_id"]),
        "requestType": "BORROW",
        "startDate": "2024-03-01",
        "expectedReturnDate": "2024-03-15",
    }
    body.update(overrides)
    return client.post("/api/asset-requests", json=body, headers=headers)


def test_borrow_request_lifecycle(client, db, member, member_headers, admin, admin_headers):
    asset = make_asset(db, "LT001")

    created = _borrow(client, member_headers, asset)
    assert created.status_code == 201
    request = created.json()
    assert request["status"] == "PENDING"
    assert request["requestedBy"] == str(member["_id"])

    approved = client.post(
        f"/api/asset-requests/{request['_id']}/process",
        json={"status": "APPROVED", "adminNotes": "Enjoy"},
        headers=admin_headers,
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"
    assert approved.json()["processedBy"] == str(admin["_id"])
    assert approved.json()["adminNotes"] == "Enjoy"
    held = db[ASSETS].find_one({"_id": asset["_id"]})
    assert held["status"] == "IN_USE"
    assert held["currentHolder"] == member["_id"]

    completed = client.post(f"/api/asset-requests/{request['_id']}/complete", json={}, headers=admin_headers)
    assert completed.status_code == 200
    assert completed.json()["status"] == "COMPLETED"
    assert completed.json()["actualReturnDate"]
    returned = db[ASSETS].find_one({"_id": asset["_id"]})
    assert returned["status"] == "AVAILABLE"
    assert "currentHolder" not in returned


def test_borrow_requires_dates(client, db, member_headers):
    asset = make_asset(db, "LT001")

    response = _borrow(client, member_headers, asset, expectedReturnDate=None)

    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_FIELDS"
    assert db[ASSET_REQUESTS].count_documents({}) == 0


def test_borrow_rejects_return_before_start(client, db, member_headers):
    asset = make_asset(db, "LT001")

    response = _borrow(client, member_headers, asset, expectedReturnDate="2024-02-01")

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"


def test_borrow_requires_available_asset(client, db, member_headers):
    asset = make_asset(db, "LT001", AssetStatus.BROKEN)

    assert _borrow(client, member_headers, asset).status_code == 400


def test_report_issue_requires_description(client, db, member_headers):
    asset = make_asset(db, "LT001")
    body = {"asset": str(asset["_id"]), "requestType": "REPORT_ISSUE", "issueDescription": "   "}

    response = client.post("/api/asset-requests", json=body, headers=member_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_FIELDS"


def test_request_for_unknown_asset(client, member_headers):
    body = {"asset": "65a000000000000000000009", "requestType": "REPORT_ISSUE", "issueDescription": "Dead"}

    assert client.post("/api/asset-requests", json=body, headers=member_headers).status_code == 404


def test_report_issue_lifecycle(client, db, member, member_headers, admin_headers):
    asset = make_asset(db, "LT001", AssetStatus.IN_USE, current_holder=member["_id"])
    body = {"asset": str(asset["_id"]), "requestType": "REPORT_ISSUE", "issueDescription": "Fan is loud"}
    request_id = client.post("/api/asset-requests", json=body, headers=member_headers).json()["_id"]

    client.post(f"/api/asset-requests/{request_id}/process", json={"status": "APPROVED"}, headers=admin_headers)
    assert db[ASSETS].find_one({"_id": asset["_id"]})["status"] == "MAINTENANCE"

    client.post(f"/api/asset-requests/{request_id}/complete", json={"adminNotes": "Fan replaced"}, headers=admin_headers)
    repaired = db[ASSETS].find_one({"_id": asset["_id"]})
    assert repaired["status"] == "IN_USE"
    assert repaired["lastInspectionDate"] is not None


def test_return_request_only_from_holder(client, db, member, member_headers, settings, admin_headers):
    asset = make_asset(db, "LT001", AssetStatus.IN_USE, current_holder=member["_id"])
    other_headers = auth_headers(make_user(db, "other"), settings)
    body = {"asset": str(asset["_id"]), "requestType": "RETURN"}

    assert client.post("/api/asset-requests", json=body, headers=other_headers).status_code == 400

    request_id = client.post("/api/asset-requests", json=body, headers=member_headers).json()["_id"]
    client.post(f"/api/asset-requests/{request_id}/process", json={"status": "APPROVED"}, headers=admin_headers)
    assert db[ASSETS].find_one({"_id": asset["_id"]})["status"] == "IN_USE"

    client.post(f"/api/asset-requests/{request_id}/complete", json={}, headers=admin_headers)
    returned = db[ASSETS].find_one({"_id": asset["_id"]})
    assert returned["status"] == "AVAILABLE"
    assert "currentHolder" not in returned


def test_rejected_request_cannot_be_completed_or_reprocessed(client, db, member_headers, admin_headers):
    asset = make_asset(db, "LT001")
    request_id = _borrow(client, member_headers, asset).json()["_id"]

    rejected = client.post(
        f"/api/asset-requests/{request_id}/process", json={"status": "REJECTED"}, headers=admin_headers
    )
    assert rejected.json()["status"] == "REJECTED"
    assert db[ASSETS].find_one({"_id": asset["_id"]})["status"] == "AVAILABLE"

    assert client.post(f"/api/asset-requests/{request_id}/complete", json={}, headers=admin_headers).status_code == 400
    again = client.post(f"/api/asset-requests/{request_id}/process", json={"status": "APPROVED"}, headers=admin_headers)
    assert again.status_code == 400


def test_only_admin_processes_requests(client, db, member_headers):
    asset = make_asset(db, "LT001")
    request_id = _borrow(client, member_headers, asset).json()["_id"]

    response = client.post(
        f"/api/asset-requests/{request_id}/process", json={"status": "APPROVED"}, headers=member_headers
    )

    assert response.status_code == 401


def test_users_see_only_their_own_requests(client, db, settings, member_headers, admin_headers):
    first = make_asset(db, "LT001")
    second = make_asset(db, "LT002")
    other_headers = auth_headers(make_user(db, "other"), settings)
    mine = _borrow(client, member_headers, first).json()["_id"]
    theirs = _borrow(client, other_headers, second).json()["_id"]

    own = client.get("/api/asset-requests", headers=member_headers).json()["requests"]
    assert [r["_id"] for r in own] == [mine]
    assert client.get(f"/api/asset-requests/{theirs}", headers=member_headers).status_code == 404

    everything = client.get("/api/asset-requests", headers=admin_headers).json()["requests"]
    assert {r["_id"] for r in everything} == {mine, theirs}

    by_asset = client.get(
        "/api/asset-requests", params={"assetId": str(second["_id"])}, headers=admin_headers
    ).json()["requests"]
    assert [r["_id"] for r in by_asset] == [theirs]

    pending = client.get("/api/asset-requests", params={"status": "APPROVED"}, headers=admin_headers).json()
    assert pending["requests"] == []


def _issue_report(client, db, headers):
    asset = make_asset(db, "LT001")
    body = {"asset": str(asset["_id"]), "requestType": "REPORT_ISSUE", "issueDescription": "Cracked"}
    return client.post("/api/asset-requests", json=body, headers=headers).json()["_id"]


def _upload(client, request_id, headers, content=b"\x89PNG fake", content_type="image/png"):
    return client.post(
        f"/api/asset-requests/{request_id}/images",
        files={"file": ("crack.png", content, content_type)},
        headers=headers,
    )


def test_issue_image_upload(client, db, member_headers, admin_headers):
    request_id = _issue_report(client, db, member_headers)

    response = _upload(client, request_id, member_headers)

    assert response.status_code == 200
    url = response.json()["image"]["url"]
    assert url.startswith("/uploads/") and url.endswith("crack.png")
    stored = db[ASSET_REQUESTS].find_one({"_id": ObjectId(request_id)})
    assert [img["url"] for img in stored["issueImages"]] == [url]
    assert client.get(url, headers=member_headers).content == b"\x89PNG fake"
    assert client.get(url, headers=admin_headers).status_code == 200


def test_issue_images_require_owner_or_admin(client, db, settings, member_headers):
    request_id = _issue_report(client, db, member_headers)
    url = _upload(client, request_id, member_headers).json()["image"]["url"]
    other_headers = auth_headers(make_user(db, "other"), settings)

    anonymous = client.get(url)
    assert anonymous.status_code == 401
    assert anonymous.content != b"\x89PNG fake"

    assert client.get(url, headers=other_headers).status_code == 404
    assert client.get("/uploads/unknown.png", headers=member_headers).status_code == 404


def test_image_upload_only_for_issue_reports(client, db, member_headers):
    asset = make_asset(db, "LT001")
    request_id = _borrow(client, member_headers, asset).json()["_id"]

    assert _upload(client, request_id, member_headers).status_code == 400


def test_image_upload_rejects_non_images(client, db, member_headers, settings):
    request_id = _issue_report(client, db, member_headers)

    response = _upload(client, request_id, member_headers, content=b"MZ", content_type="application/octet-stream")

    assert response.status_code == 400
    assert os.listdir(settings.upload_dir) == []


def test_image_upload_size_limit(client, db, member_headers, settings):
    request_id = _issue_report(client, db, member_headers)
    settings.max_upload_bytes = 8

    response = _upload(client, request_id, member_headers, content=b"x" * 9)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"
    assert os.listdir(settings.upload_dir) == []


def test_image_file_removed_when_database_update_fails(client, db, member_headers, settings, monkeypatch):
    request_id = _issue_report(client, db, member_headers)

    def fail(*args, **kwargs):
        raise PyMongoError("write failed")

    monkeypatch.setattr(asset_requests, "add_issue_image", fail)

    response = _upload(client, request_id, member_headers)

    assert response.status_code == 500
    assert os.listdir(settings.upload_dir) == []
