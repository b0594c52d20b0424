import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from .errors import PersistenceError
from .schemas import DashboardConfig, SavedDashboard

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "detadash")
APP_ID = os.getenv("APP_ID", "deta-dash-app")
DASHBOARD_LIST_LIMIT = int(os.getenv("DASHBOARD_LIST_LIMIT", "50"))

COLLECTION_NAME = "dashboards"


def _to_saved(doc: Dict[str, Any]) -> SavedDashboard:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc.pop("appId", None)
    return SavedDashboard.model_validate(doc)


class DashboardStore:
    """Dashboard snapshots in a MongoDB collection, scoped by app and user."""

    def __init__(self, collection: Collection, app_id: str = APP_ID):
        self.collection = collection
        self.app_id = app_id

    def save(self, user_id: str, dashboard: DashboardConfig, dataset_name: str, columns: List[str]) -> SavedDashboard:
        """Insert a full snapshot of ``dashboard`` and return it as stored."""
        payload = {
            "appId": self.app_id,
            "userId": user_id,
            "dashboardConfig": dashboard.to_document(),
            "datasetMetadata": {"name": dataset_name, "keys": list(columns)},
            "timestamp": datetime.now(timezone.utc),
        }
        try:
            result = self.collection.insert_one(payload)
        except PyMongoError as e:
            logger.error("store.save_failed user_id=%s err=%s", user_id, str(e)[:200])
            raise PersistenceError(f"Failed to save dashboard: {e}")

        payload["_id"] = result.inserted_id
        logger.info("store.saved user_id=%s dashboard_id=%s", user_id, result.inserted_id)
        return _to_saved(payload)

    def list_for_user(self, user_id: str, limit: int = DASHBOARD_LIST_LIMIT) -> List[SavedDashboard]:
        """Saved dashboards of ``user_id``, newest first."""
        try:
            cursor = (
                self.collection.find({"appId": self.app_id, "userId": user_id})
                .sort("timestamp", DESCENDING)
                .limit(limit)
            )
            return [_to_saved(doc) for doc in cursor]
        except PyMongoError as e:
            logger.error("store.list_failed user_id=%s err=%s", user_id, str(e)[:200])
            raise PersistenceError(f"Failed to load saved dashboards: {e}")

    def get(self, user_id: str, dashboard_id: str) -> Optional[SavedDashboard]:
        try:
            oid = ObjectId(dashboard_id)
        except (InvalidId, TypeError):
            return None
        try:
            doc = self.collection.find_one({"_id": oid, "appId": self.app_id, "userId": user_id})
        except PyMongoError as e:
            logger.error("store.get_failed user_id=%s dashboard_id=%s err=%s", user_id, dashboard_id, str(e)[:200])
            raise PersistenceError(f"Failed to load dashboard: {e}")
        return _to_saved(doc) if doc else None


_client: Optional[MongoClient] = None


def get_store() -> DashboardStore:
    """Store backed by the configured MongoDB (client created on first use)."""
    global _client
    if _client is None:
        _client = MongoClient(DATABASE_URL)
    return DashboardStore(_client[DATABASE_NAME][COLLECTION_NAME])
