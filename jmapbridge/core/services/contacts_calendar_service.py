"""Core Service: Contacts and calendar operations.

Both features depend on optional account capabilities, so every call checks
the session first and fails with error_type 'capabilityMissing' when the
account does not offer them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jmapbridge.core.request_engine import RequestEngine
from jmapbridge.core.services.mail_service import check_set_response
from jmapbridge.domain.errors import RequestError
from jmapbridge.domain.models.batch import LogicalOperation, operation, ref
from jmapbridge.domain.models.common import CALENDARS_CAPABILITY, CONTACTS_CAPABILITY
from jmapbridge.domain.models.session import CredentialContext

logger = logging.getLogger(__name__)


def _parse_datetime(value: str, name: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValueError(f"{name} must be an ISO 8601 date-time, got {value!r}")


def _iso_duration(seconds: int) -> str:
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    duration = "P"
    if days:
        duration += f"{days}D"
    if hours or minutes or secs or not days:
        duration += "T"
        if hours:
            duration += f"{hours}H"
        if minutes:
            duration += f"{minutes}M"
        if secs or not (hours or minutes):
            duration += f"{secs}S"
    return duration


def event_timing(start: str, end: str) -> Tuple[str, str, Optional[str]]:
    """Converts start/end date-times into JSCalendar start, duration and time zone.

    Zone-aware values are normalised to UTC; naive values stay floating.

    Raises:
        ValueError: If a value cannot be parsed or end is not after start.
    """
    start_dt = _parse_datetime(start, "start")
    end_dt = _parse_datetime(end, "end")
    if (start_dt.tzinfo is None) != (end_dt.tzinfo is None):
        raise ValueError("start and end must both include a time zone, or both omit it")
    if end_dt <= start_dt:
        raise ValueError("end must be after start")

    time_zone: Optional[str] = None
    if start_dt.tzinfo is not None:
        start_dt = start_dt.astimezone(timezone.utc)
        end_dt = end_dt.astimezone(timezone.utc)
        time_zone = "Etc/UTC"
    seconds = int((end_dt - start_dt).total_seconds())
    local_start = start_dt.replace(tzinfo=None).isoformat(timespec="seconds")
    return local_start, _iso_duration(seconds), time_zone


class ContactsCalendarService:
    """Contact card and calendar event access for one credential context."""

    def __init__(self, engine: RequestEngine, credential: CredentialContext):
        self.engine = engine
        self.credential = credential

    async def _account_for(self, capability: str, feature: str) -> str:
        session = await self.engine.get_session(self.credential)
        if not session.has_capability(capability):
            raise RequestError(
                f"{feature} access is not available for this account",
                error_type="capabilityMissing",
            )
        return session.account_id

    async def _call(self, operations: Sequence[LogicalOperation]) -> List[Dict[str, Any]]:
        results = await self.engine.execute(operations, self.credential)
        return [result.unwrap() for result in results]

    async def _query_and_get(self, prefix: str, account_id: str, filter_: Optional[Dict[str, Any]],
                             limit: int) -> List[Dict[str, Any]]:
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        query_args: Dict[str, Any] = {"accountId": account_id, "limit": limit}
        if filter_:
            query_args["filter"] = filter_
        _, found = await self._call([
            operation(f"{prefix}/query", query_args, "query"),
            operation(f"{prefix}/get", {"accountId": account_id, "ids": ref("query", "/ids")}, "items"),
        ])
        return list(found.get("list", []))

    async def _get_one(self, method: str, account_id: str, item_id: str, what: str) -> Dict[str, Any]:
        (found,) = await self._call([
            operation(method, {"accountId": account_id, "ids": [item_id]}, "item"),
        ])
        items = found.get("list", [])
        if not items:
            raise RequestError(f"{what} {item_id} not found", error_type="notFound")
        return items[0]

    # --- Contacts ---

    async def list_contacts(self, limit: int = 50) -> List[Dict[str, Any]]:
        account_id = await self._account_for(CONTACTS_CAPABILITY, "Contacts")
        return await self._query_and_get("ContactCard", account_id, None, limit)

    async def get_contact(self, contact_id: str) -> Dict[str, Any]:
        if not contact_id:
            raise ValueError("contact_id is required")
        account_id = await self._account_for(CONTACTS_CAPABILITY, "Contacts")
        return await self._get_one("ContactCard/get", account_id, contact_id, "Contact")

    async def search_contacts(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        if not query:
            raise ValueError("query is required")
        account_id = await self._account_for(CONTACTS_CAPABILITY, "Contacts")
        return await self._query_and_get("ContactCard", account_id, {"text": query}, limit)

    # --- Calendars ---

    async def list_calendars(self) -> List[Dict[str, Any]]:
        account_id = await self._account_for(CALENDARS_CAPABILITY, "Calendar")
        (calendars,) = await self._call([
            operation("Calendar/get", {"accountId": account_id, "ids": None}, "calendars"),
        ])
        return list(calendars.get("list", []))

    async def list_calendar_events(self, calendar_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        account_id = await self._account_for(CALENDARS_CAPABILITY, "Calendar")
        filter_ = {"inCalendars": [calendar_id]} if calendar_id else None
        return await self._query_and_get("CalendarEvent", account_id, filter_, limit)

    async def get_calendar_event(self, event_id: str) -> Dict[str, Any]:
        if not event_id:
            raise ValueError("event_id is required")
        account_id = await self._account_for(CALENDARS_CAPABILITY, "Calendar")
        return await self._get_one("CalendarEvent/get", account_id, event_id, "Calendar event")

    async def create_calendar_event(
        self,
        calendar_id: str,
        title: str,
        start: str,
        end: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        participants: Optional[Sequence[str]] = None,
    ) -> str:
        """Creates a JSCalendar event and returns its server-assigned id.

        Args:
            calendar_id: Calendar to create the event in.
            title: Event title.
            start: ISO 8601 start date-time.
            end: ISO 8601 end date-time, after start.
            description: Optional free-text description.
            location: Optional location name.
            participants: Optional attendee email addresses.
        """
        if not calendar_id or not title or not start or not end:
            raise ValueError("calendar_id, title, start and end are required")
        local_start, duration, time_zone = event_timing(start, end)
        account_id = await self._account_for(CALENDARS_CAPABILITY, "Calendar")

        event: Dict[str, Any] = {
            "@type": "Event",
            "calendarIds": {calendar_id: True},
            "title": title,
            "start": local_start,
            "duration": duration,
            "timeZone": time_zone,
        }
        if description:
            event["description"] = description
        if location:
            event["locations"] = {"1": {"@type": "Location", "name": location}}
        if participants:
            event["participants"] = {
                f"p{index}": {
                    "@type": "Participant",
                    "email": address,
                    "sendTo": {"imip": f"mailto:{address}"},
                    "roles": {"attendee": True},
                }
                for index, address in enumerate(participants, start=1)
            }

        (created,) = await self._call([
            operation("CalendarEvent/set", {"accountId": account_id, "create": {"event": event}}, "createEvent"),
        ])
        check_set_response(created, "create calendar event")
        event_id = (created.get("created") or {}).get("event", {}).get("id")
        if not event_id:
            raise RequestError("Calendar event was not created", error_type="notCreated")
        logger.info(f"Calendar event created: {event_id}")
        return event_id
