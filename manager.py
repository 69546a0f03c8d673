import logging

from pydantic import ValidationError as PydanticValidationError

from database import Database, Outcome
from exceptions import Conflict, Forbidden, NotFound, ValidationError
from models import Event, EventCreate, EDITABLE_FIELDS, IMMUTABLE_FIELDS
from utils import check_event_permission, format_validation_errors

logger = logging.getLogger(__name__)

REGISTRATION_ERRORS = {
    Outcome.EVENT_NOT_FOUND: (NotFound, "Event not found"),
    Outcome.USER_NOT_FOUND: (NotFound, "User not found"),
    Outcome.ALREADY_REGISTERED: (Conflict, "Already registered for this event"),
    Outcome.FULL: (Conflict, "Event is full"),
    Outcome.NOT_REGISTERED: (Conflict, "Not registered for this event"),
}


class EventManager:
    def __init__(self, db: Database):
        """Initialize EventManager with an injected store handle."""
        self.db = db

    @staticmethod
    def validate(fields: dict) -> dict:
        """Validate event fields and return them in their stored (JSON) form."""
        try:
            return EventCreate.model_validate(fields).model_dump(mode="json")
        except PydanticValidationError as exc:
            raise ValidationError(format_validation_errors(exc.errors()))

    def create_event(self, fields: dict, caller_id: str) -> Event:
        """Create an event owned by the caller, with no registrants yet."""
        data = self.validate({k: v for k, v in fields.items() if k not in IMMUTABLE_FIELDS})
        event = Event.from_row(self.db.add_event(data, organizer=caller_id))
        logger.info(f"Event {event.id} created by {caller_id}")
        return event

    def list_events(self) -> list[dict]:
        """Retrieve all events by date, with the organizer resolved."""
        events = []
        for row in self.db.list_events():
            organizer = {"id": row["organizer"], "name": row["organizer_name"], "email": row["organizer_email"]}
            events.append(Event.from_row(row).to_dict(organizer=organizer))
        return events

    def require_event(self, event_id: str) -> Event:
        row = self.db.get_event(event_id)
        if row is None:
            raise NotFound("Event not found")
        return Event.from_row(row)

    def get_event(self, event_id: str) -> dict:
        """Retrieve an event with organizer and registrants resolved."""
        event = self.require_event(event_id)
        users = self.db.get_user_summaries([event.organizer, *event.registered_users])
        registrants = [users[uid] for uid in event.registered_users if uid in users]
        organizer = users.get(event.organizer, {"id": event.organizer, "name": None, "email": None})
        return event.to_dict(organizer=organizer, registrants=registrants)

    def update_event(self, event_id: str, fields: dict, caller_id: str, caller_role: str) -> Event:
        """Replace the fields present in ``fields``; organizer or admin only."""
        event = self.require_event(event_id)
        try:
            check_event_permission(event, caller_id, caller_role)
        except Forbidden:
            logger.warning(f"User {caller_id} denied update of event {event_id}")
            raise
        locked = IMMUTABLE_FIELDS & fields.keys()
        if locked:
            raise ValidationError(f"Cannot update {', '.join(sorted(locked))}")
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        data = self.validate({**event.editable_fields(), **fields})
        if data["capacity"] < len(event.registered_users):
            raise ValidationError("Capacity cannot be lower than the number of registered users")
        changes = {k: data[k] for k in fields}
        if not self.db.update_event(event_id, changes):
            # The event vanished or gained registrants between the read and the write.
            self.require_event(event_id)
            raise ValidationError("Capacity cannot be lower than the number of registered users")
        logger.info(f"Event {event_id} updated by {caller_id}")
        return self.require_event(event_id)

    def delete_event(self, event_id: str, caller_id: str, caller_role: str):
        """Delete an event; organizer or admin only. Registrants' lists are cleaned up."""
        event = self.require_event(event_id)
        try:
            check_event_permission(event, caller_id, caller_role)
        except Forbidden:
            logger.warning(f"User {caller_id} denied deletion of event {event_id}")
            raise
        if not self.db.delete_event(event_id):
            raise NotFound("Event not found")
        logger.info(f"Event {event_id} deleted by {caller_id}")

    def register(self, event_id: str, caller_id: str) -> Event:
        """Register the caller for an event."""
        outcome = self.db.register_user(event_id, caller_id)
        if outcome is not Outcome.OK:
            logger.warning(f"Registration of {caller_id} for event {event_id} refused: {outcome.value}")
            error, message = REGISTRATION_ERRORS[outcome]
            raise error(message)
        logger.info(f"User {caller_id} registered for event {event_id}")
        return self.require_event(event_id)

    def unregister(self, event_id: str, caller_id: str) -> Event:
        """Remove the caller from an event's registrants."""
        outcome = self.db.unregister_user(event_id, caller_id)
        if outcome is not Outcome.OK:
            logger.warning(f"Unregistration of {caller_id} from event {event_id} refused: {outcome.value}")
            error, message = REGISTRATION_ERRORS[outcome]
            raise error(message)
        logger.info(f"User {caller_id} unregistered from event {event_id}")
        return self.require_event(event_id)

    def list_registrants(self, event_id: str, caller_id: str, caller_role: str) -> list[dict]:
        """Registrant id/name/email for an event; organizer or admin only."""
        event = self.require_event(event_id)
        check_event_permission(event, caller_id, caller_role)
        return self.db.list_registrants(event_id)
