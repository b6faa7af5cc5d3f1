import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from eventdesk import clock
from eventdesk.config import settings
from eventdesk.errors import AlreadyUsed, Cancelled, Expired, Forbidden, TicketNotFound
from eventdesk.models import (
    TICKET_CANCELLED,
    TICKET_ISSUED,
    TICKET_USED,
    ClassEvent,
    Enrollment,
    Meetup,
    MeetupMember,
    Ticket,
    User,
)
from eventdesk.qr import generate_qr_code_data, generate_ticket_number, verify_signature

logger = logging.getLogger(__name__)

EXPIRY_GRACE = timedelta(hours=24)
DEFAULT_TICKET_LIFETIME = timedelta(days=30)


@dataclass
class VerificationResult:
    ticket: Ticket
    owner: User
    class_event: Optional[ClassEvent] = None
    meetup: Optional[Meetup] = None
    checked_in: bool = False

    def to_dict(self) -> dict:
        ticket = {
            "id": self.ticket.id,
            "ticketNumber": self.ticket.ticket_number,
            "status": self.ticket.status,
            "usedAt": clock.isoformat(self.ticket.used_at),
        }
        if self.checked_in:
            return {
                "ticket": ticket,
                "user": self.owner.public_profile(),
                "message": "Check-in successful",
            }
        ticket["expiresAt"] = clock.isoformat(self.ticket.expires_at)
        return {
            "ticket": ticket,
            "user": self.owner.public_profile(),
            "class": self.class_event.summary() if self.class_event else None,
            "meetup": self.meetup.summary() if self.meetup else None,
        }


def find_ticket_by_payload(db: Session, qr_code_data: str) -> Optional[Ticket]:
    return db.scalars(select(Ticket).where(Ticket.qr_code == qr_code_data)).first()


def conditional_update_status(
    db: Session,
    ticket_id: str,
    expected_status: str,
    new_status: str,
    used_at: Optional[datetime] = None,
) -> bool:
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.status == expected_status)
        .values(status=new_status, used_at=used_at)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _check_status(ticket: Ticket, now: datetime) -> None:
    if ticket.status == TICKET_USED:
        raise AlreadyUsed(used_at=ticket.used_at)
    if ticket.status == TICKET_CANCELLED:
        raise Cancelled()
    expires_at = clock.as_utc(ticket.expires_at)
    if expires_at is not None and now > expires_at:
        raise Expired()


def can_scan(ticket: Ticket, scanner_id: str) -> bool:
    if ticket.class_id is not None:
        event = ticket.class_event
        if event is None:
            return False
        return scanner_id == event.instructor_id or (
            event.venue is not None and scanner_id == event.venue.account_id
        )
    if ticket.meetup_id is not None:
        event = ticket.meetup
        if event is None:
            return False
        return scanner_id == event.host_id or (
            event.venue is not None and scanner_id == event.venue.account_id
        )
    return False


def check_in(db: Session, ticket: Ticket, now: datetime) -> None:
    if conditional_update_status(db, ticket.id, TICKET_ISSUED, TICKET_USED, used_at=now):
        db.refresh(ticket)
        return
    # Another scanner won the race, or the ticket was cancelled meanwhile.
    db.refresh(ticket)
    if ticket.status == TICKET_CANCELLED:
        raise Cancelled()
    raise AlreadyUsed(used_at=ticket.used_at)


def verify_ticket(
    db: Session,
    qr_code_data: str,
    scanner_id: str,
    commit: bool,
    now: Optional[datetime] = None,
    secret: Optional[str] = None,
) -> VerificationResult:
    """Verify a scanned payload and, when ``commit`` is set, check the ticket in.

    Checks run in a fixed order and the first failure wins: payload format,
    signature, ticket lookup, ticket state, scanner authorization. Every
    failure is raised as a ``TicketRejected`` subclass.
    """
    now = clock.as_utc(now) if now is not None else clock.now()
    verify_signature(qr_code_data, secret if secret is not None else settings.validate_qr_secret())

    ticket = find_ticket_by_payload(db, qr_code_data)
    if ticket is None:
        raise TicketNotFound()

    _check_status(ticket, now)

    if not can_scan(ticket, scanner_id):
        logger.info("scanner %s may not check in ticket %s", scanner_id, ticket.id)
        if settings.conceal_ticket_existence:
            raise TicketNotFound()
        raise Forbidden()

    if not commit:
        return VerificationResult(
            ticket=ticket,
            owner=ticket.user,
            class_event=ticket.class_event,
            meetup=ticket.meetup,
        )

    check_in(db, ticket, now)
    logger.info("ticket %s checked in by %s", ticket.ticket_number, scanner_id)
    return VerificationResult(ticket=ticket, owner=ticket.user, checked_in=True)


def ticket_expiry(end_time: Optional[datetime], now: datetime) -> datetime:
    if end_time is not None:
        return clock.as_utc(end_time) + EXPIRY_GRACE
    return now + DEFAULT_TICKET_LIFETIME


def has_physical_location(event) -> bool:
    if event.venue_id:
        return True
    if event.latitude is not None and event.longitude is not None:
        return True
    return bool(getattr(event, "location", None))


def _issue(db: Session, now: Optional[datetime], secret: Optional[str], **fields) -> Ticket:
    now = now or clock.now()
    qr_code = generate_qr_code_data(
        fields.get("enrollment_id"),
        fields.get("meetup_member_id"),
        fields.get("class_id"),
        fields.get("meetup_id"),
        fields["user_id"],
        secret if secret is not None else settings.validate_qr_secret(),
        timestamp=int(now.timestamp() * 1000),
    )
    ticket = Ticket(
        ticket_number=generate_ticket_number(now),
        qr_code=qr_code,
        status=TICKET_ISSUED,
        created_at=now,
        **fields,
    )
    db.add(ticket)
    db.flush()
    return ticket


def issue_class_ticket(
    db: Session,
    enrollment: Enrollment,
    class_event: ClassEvent,
    secret: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Ticket:
    now = now or clock.now()
    return _issue(
        db,
        now,
        secret,
        user_id=enrollment.user_id,
        class_id=class_event.id,
        enrollment_id=enrollment.id,
        price=class_event.price or 0,
        expires_at=ticket_expiry(class_event.end_time, now),
    )


def issue_meetup_ticket(
    db: Session,
    member: MeetupMember,
    meetup: Meetup,
    secret: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Ticket:
    now = now or clock.now()
    return _issue(
        db,
        now,
        secret,
        user_id=member.user_id,
        meetup_id=meetup.id,
        meetup_member_id=member.id,
        price=meetup.venue_approved_price or meetup.price_per_person or 0,
        expires_at=ticket_expiry(meetup.end_time, now),
    )
