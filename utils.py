from datetime import date, datetime
from io import StringIO
import csv

from exceptions import Forbidden

ADMIN_ROLE = "admin"

# (summary key, CSV header) for registrant exports.
REGISTRANT_COLUMNS = (("id", "ID"), ("name", "Name"), ("email", "Email"))


def parse_event_date(value: str) -> date:
    """Read the calendar date out of an ISO date or datetime string."""
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"Invalid event date: {value!r}") from None


def check_event_permission(event, caller_id: str, caller_role: str):
    """Check if the caller may modify an event (organizer or admin)."""
    if caller_role == ADMIN_ROLE:
        return
    if event.organizer != caller_id:
        raise Forbidden("Not authorized to modify this event")


def format_validation_errors(errors) -> str:
    """Collapse pydantic error dicts into one short message."""
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error["loc"] if part != "body")
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages) or "Invalid input"


def registrants_csv(registrants) -> StringIO:
    """Render registrant summaries as a CSV buffer ready to stream."""
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for _, header in REGISTRANT_COLUMNS])
    writer.writerows([registrant[key] for key, _ in REGISTRANT_COLUMNS] for registrant in registrants)
    buffer.seek(0)
    return buffer
