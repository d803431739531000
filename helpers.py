import csv
import io
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson.objectid import ObjectId
from fastapi import HTTPException
from fastapi.responses import StreamingResponse

from database import now


def serialize_doc(doc):
    """Make a Mongo document JSON safe: ``_id`` becomes ``id``, ObjectIds become
    strings and datetimes ISO-8601, at any depth."""
    if not doc:
        return doc
    return _serialize_value(dict(doc))


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = _serialize_value(v)
            elif k == "password_hash":
                continue
            else:
                out[k] = _serialize_value(v)
        return out
    return value


def respond(data: Any = None, message: str = "OK", **extra) -> Dict[str, Any]:
    body = {"success": True, "message": message, "data": data}
    body.update(extra)
    return body


def paginate(cursor, page: int, limit: int):
    page = max(1, page)
    limit = max(1, min(limit, 100))
    return cursor.skip((page - 1) * limit).limit(limit), page, limit


def page_info(total: int, page: int, limit: int) -> Dict[str, Any]:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": pages,
        "has_next": page < pages,
        "has_previous": page > 1,
    }


def percent_change(current: float, previous: float) -> float:
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(dt: datetime) -> datetime:
    return start_of_day(dt).replace(day=1)


def shift_month(dt: datetime, months: int) -> datetime:
    month = dt.month - 1 + months
    year = dt.year + month // 12
    return dt.replace(year=year, month=month % 12 + 1, day=1)


def date_filter_start(name: Optional[str]) -> Optional[datetime]:
    """Lower bound for the ``today|week|month|year`` report filters."""
    current = now()
    if name == "today":
        return start_of_day(current)
    if name == "week":
        return current - timedelta(days=7)
    if name == "month":
        return start_of_month(current)
    if name == "year":
        return start_of_day(current).replace(month=1, day=1)
    return None


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug


def regex(term: str) -> Dict[str, str]:
    return {"$regex": re.escape(term), "$options": "i"}


def require_fields(body: Dict[str, Any], fields: Iterable[str], prefix: str = "Missing required fields"):
    missing = [f for f in fields if body.get(f) in (None, "", [])]
    if missing:
        raise HTTPException(status_code=400, detail=f"{prefix}: {', '.join(missing)}")


def csv_response(filename: str, header: List[str], rows: Iterable[Iterable[Any]]) -> StreamingResponse:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    buffer.seek(0)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def fmt_date(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    return value or ""


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a client supplied datetime to naive UTC for storage."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
