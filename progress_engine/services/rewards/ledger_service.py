"""
Star ledger service.

Append-only record of every star-earning event. The ledger is the system
of record for reward totals: entries are inserted and never updated or
deleted. Corrections are appended as reversal entries.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from common.utils.exceptions import ConflictException, ValidationException
from progress_engine.database.collections import STAR_EARNINGS

logger = logging.getLogger(__name__)

ENTRY_AWARD = "award"
ENTRY_REVERSAL = "reversal"


class StarLedgerService:
    """
    Writes and reads StarEarning entries.

    Every entry carries an idempotencyKey backed by a unique index, so a
    retried or concurrent request can never write the same award twice.
    """

    DESCRIPTION_MAX_LENGTH = 200

    def __init__(self, db: AsyncIOMotorDatabase):
        """
        Initialize StarLedgerService.

        Args:
            db: MongoDB database connection
        """
        self._db = db
        self._ledger_collection = db[STAR_EARNINGS]

    # ─────────────────────────────────────────────────────────────────
    # Idempotency keys
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def award_key(child_id: str, source_type: str, content_id: str, cycle: int = 0) -> str:
        """Key for a single-completion award."""
        return f"award:{child_id}:{source_type}:{content_id}:{cycle}"

    @staticmethod
    def reading_key(child_id: str, book_id: str, cycle: int, reading_number: int) -> str:
        """Key for the stars paid for one counted book reading."""
        return f"reading:{child_id}:{book_id}:{cycle}:{reading_number}"

    @staticmethod
    def bonus_key(child_id: str, book_id: str, cycle: int) -> str:
        """Key for the book completion bonus."""
        return f"bonus:{child_id}:{book_id}:{cycle}"

    @staticmethod
    def reversal_key(award_entry_id: str) -> str:
        """Key for the reversal of one award entry."""
        return f"reversal:{award_entry_id}"

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    async def append(
        self,
        child_id: str,
        stars: int,
        source_type: str,
        content_id: Optional[str],
        content_model: Optional[str],
        idempotency_key: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        entry_type: str = ENTRY_AWARD,
        reverses: Optional[ObjectId] = None,
    ) -> Dict[str, Any]:
        """
        Insert one ledger entry.

        Returns:
            The inserted entry

        Raises:
            ValidationException: If stars is not positive
            ConflictException: If an entry with the same key already exists
        """
        if stars <= 0:
            raise ValidationException(
                message="Ledger entries must carry a positive number of stars",
                code="INVALID_STARS",
            )

        entry = {
            "childId": ObjectId(child_id),
            "stars": int(stars),
            "entryType": entry_type,
            "source": {
                "type": source_type,
                "contentId": ObjectId(content_id) if content_id else None,
                "contentType": content_model,
                "metadata": metadata or {},
            },
            "description": description[: self.DESCRIPTION_MAX_LENGTH],
            "idempotencyKey": idempotency_key,
            "reverses": reverses,
            "createdAt": datetime.now(timezone.utc),
        }

        try:
            result = await self._ledger_collection.insert_one(entry)
        except DuplicateKeyError:
            raise ConflictException(
                message="Ledger entry already exists",
                code="LEDGER_DUPLICATE",
                details={"idempotencyKey": idempotency_key},
            )

        entry["_id"] = result.inserted_id
        logger.info(
            f"Ledger {entry_type}: {stars} stars for child {child_id} "
            f"({source_type}:{content_id}) key={idempotency_key}"
        )
        return entry

    async def record_once(
        self,
        child_id: str,
        stars: int,
        source_type: str,
        content_id: str,
        content_model: str,
        idempotency_key: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Write an award unless one with the same key exists.

        A DuplicateKeyError from a concurrent writer is resolved by reading
        back the winner's entry.

        Returns:
            (entry, created) where created is False when the award already existed
        """
        existing = await self.find_by_key(idempotency_key)
        if existing:
            return existing, False

        try:
            entry = await self.append(
                child_id=child_id,
                stars=stars,
                source_type=source_type,
                content_id=content_id,
                content_model=content_model,
                idempotency_key=idempotency_key,
                description=description,
                metadata=metadata,
            )
            return entry, True
        except ConflictException:
            logger.info(f"Concurrent award detected for key {idempotency_key}, using existing entry")
            existing = await self.find_by_key(idempotency_key)
            return existing, False

    async def append_reversal(self, award_entry: Dict[str, Any], reason: str) -> Tuple[Dict[str, Any], bool]:
        """
        Cancel an award with a compensating entry.

        Returns:
            (reversal entry, created)
        """
        key = self.reversal_key(str(award_entry["_id"]))
        existing = await self.find_by_key(key)
        if existing:
            return existing, False

        source = award_entry.get("source", {})
        content_id = source.get("contentId")

        try:
            entry = await self.append(
                child_id=str(award_entry["childId"]),
                stars=award_entry["stars"],
                source_type=source.get("type"),
                content_id=str(content_id) if content_id else None,
                content_model=source.get("contentType"),
                idempotency_key=key,
                description=reason,
                metadata={"reversedKey": award_entry.get("idempotencyKey")},
                entry_type=ENTRY_REVERSAL,
                reverses=award_entry["_id"],
            )
            return entry, True
        except ConflictException:
            return await self.find_by_key(key), False

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def find_by_key(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        """Get the entry written under an idempotency key."""
        return await self._ledger_collection.find_one({"idempotencyKey": idempotency_key})

    async def find_live_awards(
        self,
        child_id: str,
        source_type: str,
        content_id: str,
    ) -> List[Dict[str, Any]]:
        """
        Get awards for one content unit that have not been reversed.
        """
        cursor = self._ledger_collection.find({
            "childId": ObjectId(child_id),
            "source.type": source_type,
            "source.contentId": ObjectId(content_id),
        })
        entries = await cursor.to_list(length=1000)

        reversed_ids = {
            entry["reverses"] for entry in entries
            if entry.get("entryType") == ENTRY_REVERSAL and entry.get("reverses")
        }
        return [
            entry for entry in entries
            if entry.get("entryType", ENTRY_AWARD) == ENTRY_AWARD and entry["_id"] not in reversed_ids
        ]

    async def get_balance(self, child_id: str) -> int:
        """
        Sum of awards minus reversals for a child.
        """
        pipeline = [
            {"$match": {"childId": ObjectId(child_id)}},
            {"$group": {
                "_id": "$entryType",
                "stars": {"$sum": "$stars"},
            }},
        ]
        results = await self._ledger_collection.aggregate(pipeline).to_list(length=10)

        balance = 0
        for result in results:
            if result["_id"] == ENTRY_REVERSAL:
                balance -= result["stars"]
            else:
                balance += result["stars"]
        return balance

    async def get_history(
        self,
        child_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Get a page of a child's ledger, newest first.

        Returns:
            (formatted entries, total count)
        """
        query = {"childId": ObjectId(child_id)}
        total = await self._ledger_collection.count_documents(query)

        cursor = self._ledger_collection.find(query)
        cursor = cursor.sort("createdAt", -1)
        cursor = cursor.skip((page - 1) * limit)
        cursor = cursor.limit(limit)

        items = await cursor.to_list(length=limit)
        return [self.format_entry(item) for item in items], total

    @staticmethod
    def format_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
        """Format ledger entry for response."""
        source = entry.get("source", {})
        content_id = source.get("contentId")
        return {
            "id": str(entry["_id"]),
            "childId": str(entry["childId"]),
            "stars": entry["stars"],
            "entryType": entry.get("entryType", ENTRY_AWARD),
            "source": {
                "type": source.get("type"),
                "contentId": str(content_id) if content_id else None,
                "contentType": source.get("contentType"),
                "metadata": source.get("metadata", {}),
            },
            "description": entry.get("description"),
            "createdAt": entry.get("createdAt"),
        }
