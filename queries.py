"""
Query helpers shared by the medical handlers: id parsing, date windows,
read-time enrichment of user references and JSON rendering of documents.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from pymongo.database import Database

from mongo import USERS


def as_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a path or body. Malformed ids give None, which matches nothing."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def parse_day(value: str) -> date:
    """
    Calendar day named by a `date` query value. Accepts a plain date or a full
    ISO-8601 timestamp; zoned timestamps are read in server local time.
    """
    try:
        moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date")
    if moment.tzinfo is not None:
        moment = moment.astimezone().replace(tzinfo=None)
    return moment.date()


def day_bounds(day: date):
    """Local start and end of a calendar day, both inclusive."""
    start = datetime.combine(day, time.min)
    end = datetime.combine(day, time(23, 59, 59, 999000))
    return start, end


def months_ago(moment: datetime, months: int) -> datetime:
    # Same time of day; a day past the end of the target month rolls into the next one
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    first_of_month = moment.replace(year=year, month=month + 1, day=1)
    return first_of_month + timedelta(days=moment.day - 1)


def _projection(fields: Iterable[str]) -> Dict[str, int]:
    return {field: 1 for field in fields}


def populate(db: Database, docs: List[dict], field: str, fields: List[str]) -> List[dict]:
    """
    Replace the user id stored under `field` in each document with the
    referenced user's selected fields. Dangling references become None.
    """
    ids = {doc.get(field) for doc in docs if doc.get(field) is not None}
    if not ids:
        return docs

    users = db[USERS].find({"_id": {"$in": list(ids)}}, _projection(fields))
    by_id = {user["_id"]: user for user in users}

    for doc in docs:
        if field in doc:
            doc[field] = by_id.get(doc[field])
    return docs


def populate_one(db: Database, doc: Optional[dict], field: str, fields: List[str]) -> Optional[dict]:
    if doc is None:
        return None
    return populate(db, [doc], field, fields)[0]


def populate_prescribers(db: Database, record: Optional[dict], fields: List[str]) -> Optional[dict]:
    """Enrich `prescribedBy` on every medication of a pregnancy record."""
    if record is None:
        return None
    populate(db, record.get("medications", []), "prescribedBy", fields)
    return record


def serialize(value: Any) -> Any:
    """Render documents as JSON-ready data: ObjectIds become strings, datetimes ISO-8601."""
    return jsonable_encoder(value, custom_encoder={ObjectId: str})
