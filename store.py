# store.py
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from analytics import CommuteEntry, parse_timestamp
from emissions import calculate_co2_savings
from progress import compute_streak, earned_badges

log = logging.getLogger("greencommute.store")


class NotFoundError(LookupError):
    pass


class ConflictError(Exception):
    pass


def _bson_time(dt: Optional[datetime] = None) -> datetime:
    """Naive UTC datetime truncated to milliseconds, as BSON stores it."""
    dt = parse_timestamp(dt) if dt is not None else datetime.now(timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=dt.microsecond // 1000 * 1000)


def _iso(dt: datetime) -> str:
    return parse_timestamp(dt).isoformat()


def _commute_out(doc: Dict[str, Any]) -> CommuteEntry:
    entry: CommuteEntry = {
        "id": str(doc["_id"]),
        "date": _iso(doc["date"]),
        "transportType": doc["transportType"],
        "distance": float(doc["distance"]),
        "co2Saved": float(doc["co2Saved"]),
    }
    if doc.get("duration") is not None:
        entry["duration"] = float(doc["duration"])
    return entry


def _profile_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in doc.items() if k != "_id"}
    out["id"] = doc["_id"]
    for key in ("joinDate", "updatedAt"):
        if isinstance(out.get(key), datetime):
            out[key] = _iso(out[key])
    return out


def _post_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in doc.items() if k not in ("_id", "createdAt")}
    out["id"] = str(doc["_id"])
    out["timestamp"] = _iso(doc["timestamp"])
    out["comments"] = [dict(c, timestamp=_iso(c["timestamp"])) for c in doc.get("comments", [])]
    return out


def _post_key(post_id: str) -> ObjectId:
    if not ObjectId.is_valid(post_id):
        raise NotFoundError(f"post {post_id} not found")
    return ObjectId(post_id)


# namespace for idempotent commute ids
_COMMUTE_NS = uuid.UUID("5f0b8c2e-6a1d-4c8e-9a57-3d2f61c0b7a4")


def _commute_key(user_id: str, request_id: str) -> str:
    # JSON encoding keeps ("a:b", "c") and ("a", "b:c") distinct
    return str(uuid.uuid5(_COMMUTE_NS, json.dumps([user_id, request_id])))


class CommuteStore:
    """
    MongoDB-backed persistence for profiles, the commute log and the social feed.

    The commute log is the canonical record. A profile's `streak` and `badges`
    are rewritten from it on every logged commute, while `totalCO2Saved` is a
    running sum incremented in the same call that inserts the commute.
    """

    def __init__(self, db: Database, *, tz: Optional[tzinfo] = None):
        self.db = db
        self.tz = tz
        self.users = db["users"]
        self.commutes = db["commutes"]
        self.posts = db["posts"]

    def ping(self) -> None:
        self.db.client.admin.command("ping")

    def ensure_indexes(self) -> None:
        self.commutes.create_index([("userId", ASCENDING), ("date", DESCENDING)])
        self.commutes.create_index([("userId", ASCENDING), ("requestId", ASCENDING)])
        self.users.create_index([("totalCO2Saved", DESCENDING)])
        self.posts.create_index([("timestamp", DESCENDING)])

    # ───────────────────────────── Profiles ──────────────────────────────
    def create_profile(self, user_id: str, fields: Dict[str, Any], *, now: Optional[datetime] = None) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "_id": user_id,
            "name": "",
            "email": "",
            "department": "",
            "college": "",
            "bio": "",
            "phone": "",
            "profileImage": "",
            **fields,
            "totalCO2Saved": 0.0,
            "streak": 0,
            "badges": [],
            "followers": [],
            "following": [],
            "emailVerified": False,
            "joinDate": _bson_time(now),
        }
        try:
            self.users.insert_one(doc)
        except DuplicateKeyError:
            raise ConflictError(f"user {user_id} already exists") from None
        log.info("Created profile %s", user_id)
        return _profile_out(doc)

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        doc = self.users.find_one({"_id": user_id})
        if doc is None:
            raise NotFoundError(f"user {user_id} not found")
        return _profile_out(doc)

    def update_profile(self, user_id: str, updates: Dict[str, Any], *, now: Optional[datetime] = None) -> Dict[str, Any]:
        doc = self.users.find_one_and_update(
            {"_id": user_id},
            {"$set": {**updates, "updatedAt": _bson_time(now)}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError(f"user {user_id} not found")
        return _profile_out(doc)

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = (
            self.users.find({}, {"name": 1, "department": 1, "college": 1, "profileImage": 1, "totalCO2Saved": 1})
            .sort("totalCO2Saved", DESCENDING)
            .limit(limit)
        )
        return [
            {
                "id": doc["_id"],
                "name": doc.get("name", ""),
                "department": doc.get("department", ""),
                "college": doc.get("college", ""),
                "profileImage": doc.get("profileImage", ""),
                "totalCO2Saved": doc.get("totalCO2Saved", 0.0),
                "rank": rank,
            }
            for rank, doc in enumerate(cursor, start=1)
        ]

    def follow(self, user_id: str, target_id: str) -> Dict[str, Any]:
        self._require_users(user_id, target_id)
        self.users.update_one({"_id": user_id}, {"$addToSet": {"following": target_id}})
        self.users.update_one({"_id": target_id}, {"$addToSet": {"followers": user_id}})
        return self.get_profile(user_id)

    def unfollow(self, user_id: str, target_id: str) -> Dict[str, Any]:
        self._require_users(user_id, target_id)
        self.users.update_one({"_id": user_id}, {"$pull": {"following": target_id}})
        self.users.update_one({"_id": target_id}, {"$pull": {"followers": user_id}})
        return self.get_profile(user_id)

    def _require_users(self, *user_ids: str) -> None:
        found = {d["_id"] for d in self.users.find({"_id": {"$in": list(user_ids)}}, {"_id": 1})}
        for uid in user_ids:
            if uid not in found:
                raise NotFoundError(f"user {uid} not found")

    # ───────────────────────────── Commutes ──────────────────────────────
    def add_commute(
        self,
        user_id: str,
        commute: Dict[str, Any],
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[CommuteEntry, bool]:
        """
        Log a commute and update the owner's profile.

        Returns `(entry, created)`. A repeated `request_id` for the same user
        returns the originally stored entry with `created=False`. If the
        first attempt stored the entry but failed before crediting the
        profile, the replay credits it.
        """
        self._require_users(user_id)

        ts = _bson_time(now)
        doc: Dict[str, Any] = {
            "userId": user_id,
            "transportType": commute["transportType"],
            "distance": commute["distance"],
            "co2Saved": calculate_co2_savings(commute["transportType"], commute["distance"]),
            "date": ts,
            "createdAt": ts,
            "counted": False,
        }
        if commute.get("duration") is not None:
            doc["duration"] = commute["duration"]
        if request_id:
            doc["_id"] = _commute_key(user_id, request_id)
            doc["requestId"] = request_id

        try:
            res = self.commutes.insert_one(doc)
        except DuplicateKeyError:
            existing = self.commutes.find_one({"userId": user_id, "requestId": request_id})
            if existing is None:
                raise
            log.info("Replayed commute submit %s for %s", request_id, user_id)
            # documents written before the flag existed were always credited
            if not existing.get("counted", True):
                self._credit(existing, now=now)
            return _commute_out(existing), False
        doc["_id"] = res.inserted_id

        self._credit(doc, now=now)
        log.debug("Logged %s commute %s for %s", doc["transportType"], doc["_id"], user_id)
        return _commute_out(doc), True

    def _credit(self, doc: Dict[str, Any], *, now: Optional[datetime] = None) -> None:
        """Add a logged commute to its owner's running total, then mark it counted."""
        profile = self.users.find_one_and_update(
            {"_id": doc["userId"]},
            {"$inc": {"totalCO2Saved": doc["co2Saved"]}},
            return_document=ReturnDocument.AFTER,
        )
        self.commutes.update_one({"_id": doc["_id"]}, {"$set": {"counted": True}})
        self._refresh_progress(doc["userId"], profile.get("totalCO2Saved", 0.0), now=now)

    def _refresh_progress(self, user_id: str, total_co2: float, *, now: Optional[datetime] = None) -> None:
        dates = self.commute_dates(user_id)
        today = parse_timestamp(now).astimezone(self.tz).date() if now is not None else None
        streak = compute_streak(dates, today=today, tz=self.tz)
        badges = earned_badges(len(dates), streak, total_co2)
        update: Dict[str, Any] = {"$set": {"streak": streak}}
        if badges:
            update["$addToSet"] = {"badges": {"$each": badges}}
        self.users.update_one({"_id": user_id}, update)

    def list_commutes(self, user_id: str, limit: int = 50) -> List[CommuteEntry]:
        cursor = self.commutes.find({"userId": user_id}).sort("date", DESCENDING).limit(limit)
        return [_commute_out(d) for d in cursor]

    def commutes_since(self, user_id: str, since: datetime) -> List[CommuteEntry]:
        cursor = self.commutes.find({"userId": user_id, "date": {"$gte": _bson_time(since)}}).sort("date", DESCENDING)
        return [_commute_out(d) for d in cursor]

    def commute_dates(self, user_id: str) -> List[datetime]:
        cursor = self.commutes.find({"userId": user_id}, {"date": 1}).sort("date", DESCENDING)
        return [parse_timestamp(d["date"]) for d in cursor]

    # ────────────────────────────── Posts ────────────────────────────────
    def add_post(self, user_id: str, content: str, post_type: str = "general", *, now: Optional[datetime] = None) -> Dict[str, Any]:
        user = self.users.find_one({"_id": user_id}, {"name": 1, "profileImage": 1})
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        ts = _bson_time(now)
        doc = {
            "userId": user_id,
            "userName": user.get("name", ""),
            "userAvatar": user.get("profileImage", ""),
            "content": content,
            "type": post_type,
            "likes": 0,
            "comments": [],
            "timestamp": ts,
            "createdAt": ts,
        }
        res = self.posts.insert_one(doc)
        doc["_id"] = res.inserted_id
        return _post_out(doc)

    def list_posts(self, limit: int = 20) -> List[Dict[str, Any]]:
        cursor = self.posts.find({}).sort("timestamp", DESCENDING).limit(limit)
        return [_post_out(d) for d in cursor]

    def like_post(self, post_id: str) -> Dict[str, Any]:
        doc = self.posts.find_one_and_update(
            {"_id": _post_key(post_id)},
            {"$inc": {"likes": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError(f"post {post_id} not found")
        return _post_out(doc)

    def add_comment(self, post_id: str, user_id: str, content: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        key = _post_key(post_id)
        user = self.users.find_one({"_id": user_id}, {"name": 1})
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        comment = {
            "id": uuid.uuid4().hex,
            "userId": user_id,
            "userName": user.get("name", ""),
            "content": content,
            "timestamp": _bson_time(now),
        }
        doc = self.posts.find_one_and_update({"_id": key}, {"$push": {"comments": comment}})
        if doc is None:
            raise NotFoundError(f"post {post_id} not found")
        return dict(comment, timestamp=_iso(comment["timestamp"]))

