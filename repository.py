import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorCollection

from models import CheckIn, CheckInState, HabitData, PatternSnapshot, get_check_in_state, parse_day


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HabitRepository(ABC):
    """
    Storage seam for habit documents, one per user.

    The check-in bookkeeping lives here so every backend behaves the same
    way. Subclasses provide whole-document load/store plus targeted writes
    that touch only the fields they name, so a check-in and a snapshot
    written at the same time do not overwrite each other.
    """

    @abstractmethod
    async def get_habit(self, user_id: str) -> Optional[HabitData]:
        ...

    @abstractmethod
    async def save_habit(self, habit: HabitData) -> HabitData:
        ...

    @abstractmethod
    async def list_user_ids(self) -> List[str]:
        ...

    @abstractmethod
    async def set_fields(self, user_id: str, fields: Dict[str, Any]) -> Optional[HabitData]:
        ...

    @abstractmethod
    async def push_check_in(
        self, user_id: str, check_in: CheckIn, fields: Dict[str, Any], reps: int
    ) -> Optional[HabitData]:
        ...

    @abstractmethod
    async def replace_check_in(
        self, user_id: str, day: str, check_in: CheckIn, fields: Dict[str, Any], reps: int
    ) -> Optional[HabitData]:
        """Swap the stored check-in whose date is `day` for `check_in`."""

    @abstractmethod
    async def push_pattern_snapshot(
        self, user_id: str, snapshot: PatternSnapshot, fields: Dict[str, Any]
    ) -> Optional[HabitData]:
        ...

    async def get_check_ins(self, user_id: str, days: Optional[int] = None) -> Tuple[CheckIn, ...]:
        """Check-ins oldest first, optionally only those from the last `days` days."""
        habit = await self.get_habit(user_id)
        if not habit:
            return ()

        check_ins = habit.checkIns
        if days is not None:
            cutoff = (utc_now() - timedelta(days=days)).date()
            check_ins = [c for c in check_ins if parse_day(c.date) >= cutoff]

        return tuple(sorted(check_ins, key=lambda c: parse_day(c.date)))

    async def log_check_in(self, user_id: str, check_in: CheckIn) -> Optional[HabitData]:
        """
        Record a check-in, merging it into an existing record for the same day.

        Returns None when the user has no habit.
        """
        habit = await self.get_habit(user_id)
        if not habit:
            return None

        now = utc_now().isoformat()
        day = parse_day(check_in.date)
        existing = next((c for c in habit.checkIns if parse_day(c.date) == day), None)

        if existing:
            updates = check_in.model_dump(exclude_unset=True, exclude={"id"})
            check_in = existing.model_copy(update=updates)
        else:
            check_in = check_in.model_copy(update={
                "id": check_in.id or f"checkin-{uuid.uuid4().hex}",
                "checkedInAt": check_in.checkedInAt or now,
            })

        fields: Dict[str, Any] = {"updatedAt": now}
        reps = 0
        state = get_check_in_state(check_in)
        if state in (CheckInState.COMPLETED, CheckInState.RECOVERED):
            reps = 1
            fields.update(lastDoneDate=check_in.date, state="active", missedDate=None)
        elif state == CheckInState.MISSED:
            fields.update(state="missed", missedDate=check_in.date)

        if existing:
            return await self.replace_check_in(user_id, existing.date, check_in, fields, reps)
        return await self.push_check_in(user_id, check_in, fields, reps)

    async def save_pattern_snapshot(self, user_id: str, snapshot: PatternSnapshot) -> Optional[HabitData]:
        return await self.push_pattern_snapshot(user_id, snapshot, {
            "latestPatternGeneratedAt": snapshot.generatedAt,
            "updatedAt": utc_now().isoformat(),
        })


class MongoHabitRepository(HabitRepository):
    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def get_habit(self, user_id: str) -> Optional[HabitData]:
        document = await self.collection.find_one({"userId": user_id})
        if not document:
            return None
        del document["_id"]
        return HabitData.model_validate(document)

    async def save_habit(self, habit: HabitData) -> HabitData:
        await self.collection.replace_one(
            {"userId": habit.userId},
            habit.model_dump(mode="json"),
            upsert=True,
        )
        return habit

    async def list_user_ids(self) -> List[str]:
        user_ids = []
        async for document in self.collection.find({}, {"userId": 1}):
            user_ids.append(document["userId"])
        return user_ids

    async def _update(self, query: dict, update: dict) -> Optional[HabitData]:
        update_result = await self.collection.update_one(query, update)
        if update_result.matched_count == 0:
            return None
        return await self.get_habit(query["userId"])

    async def set_fields(self, user_id, fields):
        return await self._update({"userId": user_id}, {"$set": fields})

    async def push_check_in(self, user_id, check_in, fields, reps):
        return await self._update(
            {"userId": user_id},
            {
                "$push": {"checkIns": check_in.model_dump(mode="json")},
                "$set": fields,
                "$inc": {"repsCount": reps},
            },
        )

    async def replace_check_in(self, user_id, day, check_in, fields, reps):
        return await self._update(
            {"userId": user_id, "checkIns.date": day},
            {
                "$set": {"checkIns.$": check_in.model_dump(mode="json"), **fields},
                "$inc": {"repsCount": reps},
            },
        )

    async def push_pattern_snapshot(self, user_id, snapshot, fields):
        return await self._update(
            {"userId": user_id},
            {"$push": {"patternHistory": snapshot.model_dump(mode="json")}, "$set": fields},
        )


class InMemoryHabitRepository(HabitRepository):
    # Writes never await between reading and changing a document
    def __init__(self):
        self._habits: Dict[str, dict] = {}

    async def get_habit(self, user_id: str) -> Optional[HabitData]:
        document = self._habits.get(user_id)
        if document is None:
            return None
        return HabitData.model_validate(copy.deepcopy(document))

    async def save_habit(self, habit: HabitData) -> HabitData:
        self._habits[habit.userId] = habit.model_dump(mode="json")
        return habit

    async def list_user_ids(self) -> List[str]:
        return list(self._habits)

    def _apply(self, user_id: str, fields: dict, reps: int = 0) -> Optional[dict]:
        document = self._habits.get(user_id)
        if document is None:
            return None
        document.update(fields)
        document["repsCount"] += reps
        return document

    async def set_fields(self, user_id, fields):
        if self._apply(user_id, fields) is None:
            return None
        return await self.get_habit(user_id)

    async def push_check_in(self, user_id, check_in, fields, reps):
        document = self._apply(user_id, fields, reps)
        if document is None:
            return None
        document["checkIns"].append(check_in.model_dump(mode="json"))
        return await self.get_habit(user_id)

    async def replace_check_in(self, user_id, day, check_in, fields, reps):
        document = self._habits.get(user_id)
        if document is None:
            return None
        position = next((i for i, c in enumerate(document["checkIns"]) if c["date"] == day), None)
        if position is None:
            return None
        document["checkIns"][position] = check_in.model_dump(mode="json")
        self._apply(user_id, fields, reps)
        return await self.get_habit(user_id)

    async def push_pattern_snapshot(self, user_id, snapshot, fields):
        document = self._apply(user_id, fields)
        if document is None:
            return None
        document["patternHistory"].append(snapshot.model_dump(mode="json"))
        return await self.get_habit(user_id)
