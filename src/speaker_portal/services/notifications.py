"""Notification creation, delivery, email fallback and read-state."""

import asyncio
import math
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

import pydantic
import structlog

from ..domain.errors import NotAuthorized, NotFound, ValidationError
from ..domain.models import (
    Notification,
    NotificationKind,
    NotificationPage,
    NotificationPayload,
    ReminderPayload,
    RsvpUpdatePayload,
    utcnow,
)
from ..metrics import EMAIL_FAILURES, EMAILS_SENT, NOTIFICATIONS_CREATED
from ..realtime.bus import LiveBus
from ..realtime.events import build_notification_event, user_topic
from ..repositories.base import EventStore, Store, UserDirectory
from .mailer import DEFAULT_TEMPLATE, Mailer

logger = structlog.get_logger()

# Kinds that also go out by email, with the template used for each.
EMAIL_TEMPLATES = {
    NotificationKind.REMINDER: "event-reminder",
    NotificationKind.INVITATION: "event-invitation",
    NotificationKind.CANCELLED: "event-cancelled",
}


class NotificationCenter:
    def __init__(
        self,
        store: Store,
        bus: LiveBus,
        mailer: Mailer,
        directory: Optional[UserDirectory] = None,
        events: Optional[EventStore] = None,
        email_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.bus = bus
        self.mailer = mailer
        self.directory = directory or store
        self.events = events
        self.email_timeout = email_timeout

    async def notify(
        self,
        user_id: UUID,
        title: str,
        message: str,
        kind: NotificationKind,
        payload: Optional[NotificationPayload] = None,
    ) -> Notification:
        """Persist a notification, push it live and schedule the email fallback."""
        try:
            notification = Notification(
                user_id=user_id, title=title, message=message, kind=kind, payload=payload
            )
        except pydantic.ValidationError as e:
            raise ValidationError(str(e))

        stored = await self.store.add_notification(notification)
        NOTIFICATIONS_CREATED.inc()
        logger.info(
            "notification_created",
            notification_id=str(stored.id),
            user_id=str(user_id),
            kind=kind.value,
        )

        self.bus.emit(user_topic(user_id), build_notification_event(stored))
        if kind in EMAIL_TEMPLATES:
            self.bus.delivery.submit(f"mail:{user_id}", self._send_email, stored, timed=False)
        return stored

    async def _send_email(self, notification: Notification) -> None:
        """Email fallback; failures are counted and logged, never re-raised."""
        try:
            user = await self.directory.get_user(notification.user_id)
            if user is None:
                logger.warning("email_recipient_unknown", user_id=str(notification.user_id))
                return
            await asyncio.wait_for(
                self.mailer.send(
                    to=user.email,
                    subject=notification.title,
                    template_kind=EMAIL_TEMPLATES.get(notification.kind, DEFAULT_TEMPLATE),
                    template_data=self._template_data(notification, user.name),
                ),
                timeout=self.email_timeout,
            )
            EMAILS_SENT.inc()
        except Exception as e:
            EMAIL_FAILURES.inc()
            logger.warning(
                "delivery_warning",
                target=f"mail:{notification.user_id}",
                notification_id=str(notification.id),
                error=str(e) or type(e).__name__,
            )

    @staticmethod
    def _template_data(notification: Notification, user_name: str) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "user_name": user_name,
            "title": notification.title,
            "message": notification.message,
        }
        if notification.payload is not None:
            data.update(notification.payload.model_dump(exclude={"kind"}))
        event_date = data.get("event_date")
        if isinstance(event_date, datetime):
            data["event_day"] = event_date.strftime("%A, %B %d, %Y")
            data["event_time"] = event_date.strftime("%H:%M %Z").strip()
        return data

    async def _owned(self, user_id: UUID, notification_id: UUID) -> Notification:
        notification = await self.store.get_notification(notification_id)
        if notification is None:
            raise NotFound("Notification not found")
        if notification.user_id != user_id:
            logger.warning(
                "notification_access_denied",
                notification_id=str(notification_id),
                user_id=str(user_id),
            )
            raise NotAuthorized("Not authorized to modify this notification")
        return notification

    async def mark_read(self, user_id: UUID, notification_id: UUID) -> Notification:
        notification = await self._owned(user_id, notification_id)
        if notification.is_read:
            return notification
        return await self.store.mark_notification_read(notification_id)

    async def mark_all_read(self, user_id: UUID) -> int:
        count = await self.store.mark_all_notifications_read(user_id)
        logger.info("notifications_marked_read", user_id=str(user_id), count=count)
        return count

    async def delete(self, user_id: UUID, notification_id: UUID) -> None:
        await self._owned(user_id, notification_id)
        await self.store.delete_notification(notification_id)
        logger.info("notification_deleted", notification_id=str(notification_id))

    async def unread_count(self, user_id: UUID) -> int:
        return await self.store.count_notifications(user_id, unread_only=True)

    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, page: int = 1, limit: int = 20
    ) -> NotificationPage:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        notifications = await self.store.list_notifications(
            user_id, unread_only=unread_only, limit=limit, offset=(page - 1) * limit
        )
        total = await self.store.count_notifications(user_id, unread_only=unread_only)
        return NotificationPage(
            notifications=notifications,
            unread_count=await self.unread_count(user_id),
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit),
        )

    async def send_event_reminder(self, event_id: UUID) -> int:
        """Remind every confirmed attendee; returns how many were notified."""
        if self.events is None:
            raise ValidationError("No event store configured")
        event = await self.events.get_event(event_id)
        if event is None:
            logger.warning("reminder_event_not_found", event_id=str(event_id))
            return 0

        hours = round((event.date - utcnow()).total_seconds() / 3600)
        for attendee_id in event.attendee_ids:
            await self.notify(
                attendee_id,
                title="Event Reminder",
                message=f'"{event.title}" starts in {hours} hours',
                kind=NotificationKind.REMINDER,
                payload=ReminderPayload(
                    event_id=event.id,
                    event_title=event.title,
                    event_date=event.date,
                    meeting_link=event.meeting_link,
                    hours_until_event=hours,
                ),
            )
        return len(event.attendee_ids)

    async def notify_rsvp(self, event_id: UUID, attendee_id: UUID, status: str) -> Optional[Notification]:
        """Tell the organizer about a confirmed RSVP; other statuses are silent."""
        if status.lower() != "yes":
            return None
        if self.events is None:
            raise ValidationError("No event store configured")
        event = await self.events.get_event(event_id)
        if event is None:
            raise NotFound("Event not found")
        attendee = await self.directory.get_user(attendee_id)
        name = attendee.name if attendee else "A speaker"
        return await self.notify(
            event.organizer_id,
            title="New RSVP",
            message=f'{name} has confirmed attendance to your event "{event.title}"',
            kind=NotificationKind.RSVP_UPDATE,
            payload=RsvpUpdatePayload(event_id=event.id, rsvp_status=status.lower()),
        )
