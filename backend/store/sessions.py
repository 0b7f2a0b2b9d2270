"""Session Store — persisted session records in MongoDB.

Every mutation is conditional on the record still being live, so a
request and a background sweep racing on the same document resolve to
whichever write lands first; the loser sees ``None`` / a zero count and
re-reads instead of overwriting a terminal status.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReplaceOne, ReturnDocument

from schemas.session import (
    LIVE_STATUS_VALUES,
    Session,
    SessionStatus,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

_LIVE_FILTER = {"status": {"$in": LIVE_STATUS_VALUES}}


@dataclass
class SessionSearch:
    """Read-side filter. ``live_or_since`` ORs "still live" with a login floor."""
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    statuses: FrozenSet[SessionStatus] = field(default_factory=frozenset)
    login_from: Optional[datetime] = None
    login_to: Optional[datetime] = None
    live_or_since: Optional[datetime] = None

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.company_id:
            query["company_id"] = self.company_id
        if self.user_id:
            query["user_id"] = self.user_id
        if self.statuses:
            query["status"] = {"$in": sorted(s.value for s in self.statuses)}
        login_range: Dict[str, datetime] = {}
        if self.login_from:
            login_range["$gte"] = self.login_from
        if self.login_to:
            login_range["$lte"] = self.login_to
        if login_range:
            query["login_at"] = login_range
        if self.live_or_since:
            query["$or"] = [_LIVE_FILTER, {"login_at": {"$gte": self.live_or_since}}]
        return query


class SessionStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self._coll = db.sessions

    # ── Reads ─────────────────────────────────────────────────────

    async def get(self, session_id: str) -> Optional[Session]:
        doc = await self._coll.find_one({"session_id": session_id})
        return Session.from_doc(doc) if doc else None

    async def find_live_for_user(self, user_id: str) -> Optional[Session]:
        doc = await self._coll.find_one({"user_id": user_id, **_LIVE_FILTER})
        return Session.from_doc(doc) if doc else None

    async def search(self, search: SessionSearch, skip: int = 0, limit: int = 100) -> Tuple[int, List[Session]]:
        """Total match count and one page, newest login first."""
        query = search.to_query()
        total = await self._coll.count_documents(query)
        cursor = self._coll.find(query).sort("login_at", -1).skip(skip).limit(limit)
        return total, [Session.from_doc(doc) async for doc in cursor]

    async def list_closed_for_user(self, user_id: str, login_from: datetime, login_before: datetime) -> List[Session]:
        """Terminal sessions of one user that logged in within [from, before), oldest first."""
        cursor = self._coll.find({
            "user_id": user_id,
            "status": {"$in": sorted(s.value for s in TERMINAL_STATUSES)},
            "login_at": {"$gte": login_from, "$lt": login_before},
        }).sort("login_at", 1)
        return [Session.from_doc(doc) async for doc in cursor]

    async def list_live(self) -> List[Session]:
        docs = await self._coll.find(_LIVE_FILTER).sort("login_at", 1).to_list(None)
        return [Session.from_doc(doc) for doc in docs]

    async def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in SessionStatus}
        async for row in self._coll.aggregate([{"$group": {"_id": "$status", "n": {"$sum": 1}}}]):
            counts[row["_id"]] = row["n"]
        return counts

    # ── Writes ────────────────────────────────────────────────────

    async def insert(self, session: Session) -> Session:
        """Insert a session. A second live session for the same user raises
        DuplicateKeyError through the partial unique index."""
        await self._coll.insert_one(session.to_doc())
        return session

    async def save_continuations(self, parent_id: str, continuations: List[Session]) -> int:
        """Write the split-off records of ``parent_id``, replacing any left by an
        earlier attempt. Ids are deterministic, so a retry overwrites in place
        and records no longer in the plan are removed."""
        ids = [s.session_id for s in continuations]
        if continuations:
            await self._coll.bulk_write(
                [ReplaceOne({"session_id": s.session_id}, s.to_doc(), upsert=True) for s in continuations],
                ordered=False,
            )
        await self._coll.delete_many({"split_from": parent_id, "session_id": {"$nin": ids}})
        return len(continuations)

    async def delete_continuations(self, parent_id: str) -> int:
        result = await self._coll.delete_many({"split_from": parent_id})
        return result.deleted_count

    async def transition(
        self,
        session_id: str,
        to_status: SessionStatus,
        now: datetime,
        from_statuses: Iterable[SessionStatus] = (SessionStatus.ACTIVE, SessionStatus.SUSPECT),
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[Session]:
        """Move a session to ``to_status`` if it is currently in ``from_statuses``.

        Terminal targets stamp ``logout_at``. Returns the updated record, or
        None when the precondition no longer holds.
        """
        fields: Dict[str, Any] = {
            "status": to_status.value,
            "live": to_status not in TERMINAL_STATUSES,
        }
        if to_status in TERMINAL_STATUSES:
            fields["logout_at"] = now
        if extra:
            fields.update(extra)

        doc = await self._coll.find_one_and_update(
            {"session_id": session_id, "status": {"$in": [s.value for s in from_statuses]}},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.debug("Transition skipped: session=%s to=%s (precondition failed)", session_id, to_status.value)
            return None
        logger.info("Session transition: session=%s -> %s", session_id, to_status.value)
        return Session.from_doc(doc)

    async def record_heartbeat(
        self,
        session_id: str,
        now: Optional[datetime],
        reset_accuracy: bool = True,
    ) -> Optional[Session]:
        """Refresh liveness. With ``reset_accuracy`` the heartbeat was accurate:
        clear the poor-accuracy counter and restore a suspect session to active.
        ``now=None`` applies only the accuracy reset."""
        fields: Dict[str, Any] = {}
        if now is not None:
            fields["last_heartbeat"] = now
        if reset_accuracy:
            fields.update({
                "consecutive_poor_heartbeats": 0,
                "status": SessionStatus.ACTIVE.value,
                "live": True,
            })
        doc = await self._coll.find_one_and_update(
            {"session_id": session_id, **_LIVE_FILTER},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return Session.from_doc(doc) if doc else None

    async def record_poor_heartbeat(self, session_id: str, now: datetime) -> Optional[Session]:
        """Low-confidence heartbeat: refresh liveness and bump the counter atomically."""
        doc = await self._coll.find_one_and_update(
            {"session_id": session_id, **_LIVE_FILTER},
            {
                "$set": {"last_heartbeat": now},
                "$inc": {"consecutive_poor_heartbeats": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return Session.from_doc(doc) if doc else None

    async def close_lapsed(
        self,
        to_status: SessionStatus,
        now: datetime,
        heartbeat_before: datetime,
        login_before: Optional[datetime] = None,
    ) -> int:
        """Bulk-close live sessions with no heartbeat since ``heartbeat_before``
        (or none at all), and, when given, those that logged in before
        ``login_before``. Returns the count closed."""
        lapsed: List[Dict[str, Any]] = [
            {"last_heartbeat": {"$lt": heartbeat_before}},
            {"last_heartbeat": None},
        ]
        if login_before is not None:
            lapsed.append({"login_at": {"$lt": login_before}})
        return await self._close_matching({"$or": lapsed}, to_status, now)

    async def close_live_for_user(self, user_id: str, to_status: SessionStatus, now: datetime) -> int:
        return await self._close_matching({"user_id": user_id}, to_status, now)

    async def _close_matching(self, query: Dict[str, Any], to_status: SessionStatus, now: datetime) -> int:
        result = await self._coll.update_many(
            {"$and": [query, _LIVE_FILTER]},
            {"$set": {"status": to_status.value, "live": False, "logout_at": now}},
        )
        return result.modified_count
