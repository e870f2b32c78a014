"""
Seed the database with the initial administrator and a set of sample assets.

Usage:
  asset-tracker-seed [--admin-password PASSWORD]

This command is idempotent: the admin account is only created when no user
named "admin" exists, and sample assets are only inserted into an empty
asset collection.
"""

import argparse
from datetime import datetime, timezone
from typing import Dict, List

import structlog
from pymongo.database import Database

import accounts
from config import get_settings
from database import ASSETS, USERS, MongoContext, create_document
from logging_config import setup_logging
from schemas import Asset, AssetStatus, Role, UserStatus

logger = structlog.get_logger(__name__)


def _date(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)


SAMPLE_ASSETS: List[Dict] = [
    {"code": "LT001", "name": "Dell Laptop XPS 13", "type": "Laptop", "status": AssetStatus.IN_USE,
     "purchase_date": _date("2023-01-15"), "description": "High-end developer laptop"},
    {"code": "LT002", "name": 'MacBook Pro 14"', "type": "Laptop", "status": AssetStatus.IN_USE,
     "purchase_date": _date("2023-03-01"), "description": "Design team laptop with M2 chip"},
    {"code": "LT003", "name": "Lenovo ThinkPad X1", "type": "Laptop", "status": AssetStatus.MAINTENANCE,
     "purchase_date": _date("2022-11-15"), "description": "Business laptop for management"},
    {"code": "MON001", "name": 'Dell 27" Monitor', "type": "Monitor", "status": AssetStatus.AVAILABLE,
     "purchase_date": _date("2023-02-20"), "description": "4K Monitor for design team"},
    {"code": "MON002", "name": 'LG 32" UltraFine', "type": "Monitor", "status": AssetStatus.IN_USE,
     "purchase_date": _date("2023-04-15"), "description": "5K Monitor for video editing"},
    {"code": "KB001", "name": "Logitech MX Keys", "type": "Keyboard", "status": AssetStatus.BROKEN,
     "purchase_date": _date("2023-03-10"), "description": "Wireless mechanical keyboard"},
    {"code": "KB002", "name": "Keychron K2", "type": "Keyboard", "status": AssetStatus.IN_USE,
     "purchase_date": _date("2023-05-01"), "description": "Mechanical keyboard with brown switches"},
    {"code": "MS001", "name": "Logitech MX Master 3", "type": "Mouse", "status": AssetStatus.IN_USE,
     "purchase_date": _date("2023-02-15"), "description": "Wireless ergonomic mouse"},
    {"code": "PR001", "name": "HP LaserJet Pro", "type": "Printer", "status": AssetStatus.IN_USE,
     "purchase_date": _date("2023-01-20"), "description": "Color laser printer"},
    {"code": "CAM001", "name": "Logitech Brio", "type": "Webcam", "status": AssetStatus.AVAILABLE,
     "purchase_date": _date("2023-06-01"), "description": "4K webcam for video conferencing"},
]


def ensure_admin(db: Database, password: str, rounds: int = 12) -> bool:
    if db[USERS].find_one({"username": "admin"}):
        logger.info("seed_admin_exists")
        return False
    accounts.create_user(
        db,
        username="admin",
        password=password,
        email="admin@example.com",
        full_name="System Administrator",
        department="IT",
        role=Role.ADMIN,
        status=UserStatus.ACTIVE,
        rounds=rounds,
    )
    logger.info("seed_admin_created")
    return True


def ensure_sample_assets(db: Database) -> int:
    if db[ASSETS].count_documents({}) > 0:
        logger.info("seed_assets_exist")
        return 0
    for item in SAMPLE_ASSETS:
        create_document(db, ASSETS, Asset(**item).to_document())
    logger.info("seed_assets_created", count=len(SAMPLE_ASSETS))
    return len(SAMPLE_ASSETS)


def seed(db: Database, admin_password: str = "admin123", rounds: int = 12) -> Dict[str, int]:
    created_admin = ensure_admin(db, admin_password, rounds=rounds)
    created_assets = ensure_sample_assets(db)
    return {"admin": int(created_admin), "assets": created_assets}


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Seed the asset tracker database")
    parser.add_argument("--admin-password", default="admin123")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level)
    mongo = MongoContext.from_settings(settings)
    try:
        result = seed(mongo.db, args.admin_password, rounds=settings.bcrypt_rounds)
    finally:
        mongo.close()
    logger.info("seed_completed", **result)


if __name__ == "__main__":
    main()
