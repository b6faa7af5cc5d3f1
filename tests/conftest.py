from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eventdesk.db import Base
from eventdesk.models import ClassEvent, Enrollment, Meetup, MeetupMember, User, Venue

SECRET = "test-qr-secret"
NOW = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)


def make_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session():
    engine = make_engine()
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


def make_world(db) -> SimpleNamespace:
    owner = User(first_name="Ana", last_name="Lopez", display_name="ana", avatar="a.png")
    instructor = User(display_name="coach")
    venue_account = User(display_name="studio-account")
    host = User(display_name="host")
    stranger = User(display_name="stranger")
    admin = User(display_name="admin", is_admin=True)
    db.add_all([owner, instructor, venue_account, host, stranger, admin])
    db.flush()

    venue = Venue(name="Riverside Studio", account_id=venue_account.id)
    db.add(venue)
    db.flush()

    class_event = ClassEvent(
        title="Morning Yoga",
        instructor_id=instructor.id,
        venue_id=venue.id,
        price=25,
        start_time=NOW + timedelta(hours=1),
        end_time=NOW + timedelta(hours=2),
    )
    online_class = ClassEvent(title="Online Pilates", instructor_id=instructor.id)
    meetup = Meetup(
        title="Sunday Run",
        host_id=host.id,
        venue_id=venue.id,
        price_per_person=10,
        venue_approved_price=12,
    )
    db.add_all([class_event, online_class, meetup])
    db.flush()
    return SimpleNamespace(
        owner=owner,
        instructor=instructor,
        venue_account=venue_account,
        host=host,
        stranger=stranger,
        admin=admin,
        venue=venue,
        class_event=class_event,
        online_class=online_class,
        meetup=meetup,
    )


def enroll(db, world, user=None) -> Enrollment:
    enrollment = Enrollment(class_id=world.class_event.id, user_id=(user or world.owner).id, created_at=NOW)
    db.add(enrollment)
    db.flush()
    return enrollment


def join(db, world, user=None) -> MeetupMember:
    member = MeetupMember(meetup_id=world.meetup.id, user_id=(user or world.owner).id, created_at=NOW)
    db.add(member)
    db.flush()
    return member


@pytest.fixture
def world(session):
    world = make_world(session)
    session.commit()
    return world
