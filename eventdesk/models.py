from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from eventdesk.clock import now
from eventdesk.db import Base

ID_TYPE = String(36)
MONEY_TYPE = Numeric(12, 2)

TICKET_ISSUED = "ISSUED"
TICKET_USED = "USED"
TICKET_CANCELLED = "CANCELLED"


def _new_id() -> str:
    return uuid4().hex


class User(Base):
    __tablename__ = "app_user"

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    first_name: Mapped[str | None] = mapped_column(Text)
    last_name: Mapped[str | None] = mapped_column(Text)
    display_name: Mapped[str | None] = mapped_column(Text)
    avatar: Mapped[str | None] = mapped_column(Text)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def public_profile(self) -> dict:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "displayName": self.display_name,
            "avatar": self.avatar,
        }


class Venue(Base):
    __tablename__ = "venue"

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    # The user account that operates the venue and may scan its tickets.
    account_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)


class ClassEvent(Base):
    __tablename__ = "class_event"

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    instructor_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False
    )
    venue_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("venue.id"))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    price: Mapped[Numeric | None] = mapped_column(MONEY_TYPE)
    start_time: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))

    instructor: Mapped[User] = relationship(foreign_keys=[instructor_id])
    venue: Mapped[Venue | None] = relationship()

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "instructor": _person(self.instructor),
            "venue": _venue(self.venue),
        }


class Meetup(Base):
    __tablename__ = "meetup"

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    host_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False
    )
    venue_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("venue.id"))
    location: Mapped[str | None] = mapped_column(Text)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    price_per_person: Mapped[Numeric | None] = mapped_column(MONEY_TYPE)
    venue_approved_price: Mapped[Numeric | None] = mapped_column(MONEY_TYPE)
    start_time: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))

    host: Mapped[User] = relationship(foreign_keys=[host_id])
    venue: Mapped[Venue | None] = relationship()

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "host": _person(self.host),
            "venue": _venue(self.venue),
        }


class Enrollment(Base):
    __tablename__ = "enrollment"
    __table_args__ = (UniqueConstraint("class_id", "user_id", name="uq_enrollment_class_user"),)

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    class_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("class_event.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False
    )
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False, default=now)


class MeetupMember(Base):
    __tablename__ = "meetup_member"
    __table_args__ = (UniqueConstraint("meetup_id", "user_id", name="uq_meetup_member_meetup_user"),)

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    meetup_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("meetup.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False
    )
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False, default=now)


class Ticket(Base):
    __tablename__ = "ticket"
    __table_args__ = (
        CheckConstraint(
            "(class_id IS NULL) <> (meetup_id IS NULL)", name="ck_ticket_single_event"
        ),
        CheckConstraint(
            "status IN ('ISSUED', 'USED', 'CANCELLED')", name="ck_ticket_status"
        ),
    )

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    # The exact serialized QR payload; also the scan lookup key.
    qr_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False, index=True
    )
    class_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("class_event.id"))
    meetup_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("meetup.id"))
    enrollment_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("enrollment.id"))
    meetup_member_id: Mapped[str | None] = mapped_column(
        ID_TYPE, ForeignKey("meetup_member.id")
    )
    price: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TICKET_ISSUED)
    expires_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    used_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False, default=now)

    user: Mapped[User] = relationship()
    class_event: Mapped[ClassEvent | None] = relationship()
    meetup: Mapped[Meetup | None] = relationship()


class Payment(Base):
    __tablename__ = "payment"

    id: Mapped[str] = mapped_column(ID_TYPE, primary_key=True, default=_new_id)
    payment_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(
        ID_TYPE, ForeignKey("app_user.id"), nullable=False, index=True
    )
    class_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("class_event.id"))
    meetup_id: Mapped[str | None] = mapped_column(ID_TYPE, ForeignKey("meetup.id"))
    gross_amount: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    venue_rent: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
    commission_percent: Mapped[Numeric] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    processing_fee: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    net_amount: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    payout_amount: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    currency_code: Mapped[str] = mapped_column(Text, nullable=False, default="USD")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False, default=now)


class PlatformSetting(Base):
    __tablename__ = "platform_setting"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now, onupdate=now
    )


def _person(user: User | None) -> dict | None:
    if user is None:
        return None
    return {"id": user.id, "displayName": user.display_name}


def _venue(venue: Venue | None) -> dict | None:
    if venue is None:
        return None
    return {"id": venue.id, "name": venue.name}
