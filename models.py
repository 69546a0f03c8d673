from dataclasses import dataclass, field
import datetime as dt
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field

from utils import parse_event_date

Category = Literal["Conference", "Workshop", "Seminar", "Social", "Other"]
Role = Literal["user", "admin"]

# Keys a caller may never set through create/update.
IMMUTABLE_FIELDS = {"id", "_id", "organizer", "registeredUsers", "createdAt"}


def _coerce_date(value):
    if isinstance(value, str):
        return parse_event_date(value)
    if isinstance(value, dt.datetime):
        return value.date()
    return value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


EventDate = Annotated[dt.date, BeforeValidator(_coerce_date)]
# Titles are trimmed; other required text is kept as sent but may not be blank.
Title = Annotated[str, BeforeValidator(_strip), Field(min_length=1)]
Text = Annotated[str, AfterValidator(_not_blank)]


class EventCreate(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Python Workshop",
                "description": "Hands-on introduction to FastAPI",
                "date": "2025-05-01",
                "time": "10:00 AM",
                "location": "Room 101",
                "capacity": 50,
                "price": 0,
                "category": "Workshop",
                "image": "",
            }
        },
    )

    title: Title
    description: Text
    date: EventDate
    time: Text
    location: Text
    capacity: int = Field(ge=1)
    price: float = Field(ge=0)
    category: Category
    image: str = ""


class EventUpdate(BaseModel):
    title: Optional[Title] = None
    description: Optional[Text] = None
    date: Optional[EventDate] = None
    time: Optional[Text] = None
    location: Optional[Text] = None
    capacity: Optional[int] = None
    price: Optional[float] = None
    category: Optional[Category] = None
    image: Optional[str] = None


EDITABLE_FIELDS = tuple(EventCreate.model_fields)


@dataclass
class Event:
    id: str
    title: str
    description: str
    date: dt.date
    time: str
    location: str
    capacity: int
    price: float
    organizer: str
    category: str
    image: str = ""
    registered_users: list[str] = field(default_factory=list)
    created_at: Optional[dt.datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "Event":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            date=dt.date.fromisoformat(row["date"]),
            time=row["time"],
            location=row["location"],
            capacity=row["capacity"],
            price=row["price"],
            organizer=row["organizer"],
            category=row["category"],
            image=row["image"],
            registered_users=list(row["registered_users"]),
            created_at=dt.datetime.fromisoformat(row["created_at"]),
        )

    def editable_fields(self) -> dict:
        """Return the fields an organizer may replace, keyed as in request bodies."""
        return {name: getattr(self, name) for name in EDITABLE_FIELDS}

    def to_dict(self, organizer=None, registrants=None) -> dict:
        """Serialise the event; pass resolved organizer/registrants to populate references."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat(),
            "time": self.time,
            "location": self.location,
            "capacity": self.capacity,
            "price": self.price,
            "organizer": organizer if organizer is not None else self.organizer,
            "registeredUsers": registrants if registrants is not None else list(self.registered_users),
            "category": self.category,
            "image": self.image,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class User:
    id: str
    name: str
    email: str
    password: str
    role: str = "user"  # 'admin' or 'user'
    registered_events: list[str] = field(default_factory=list)
    created_at: Optional[dt.datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "User":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password=row["password"],
            role=row["role"],
            registered_events=list(row["registered_events"]),
            created_at=dt.datetime.fromisoformat(row["created_at"]),
        )

    def to_dict(self, registered_events=None) -> dict:
        """Public representation; the password hash is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "registeredEvents": registered_events if registered_events is not None else list(self.registered_events),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
