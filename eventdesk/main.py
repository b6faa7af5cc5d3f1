from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventdesk import clock
from eventdesk.config import settings
from eventdesk.db import SessionLocal
from eventdesk.errors import TicketRejected
from eventdesk.models import ClassEvent, Enrollment, Meetup, MeetupMember, Payment, Ticket, User
from eventdesk.payments import generate_payment_number, get_payment_breakdown, resolve_commission_percent
from eventdesk.platform_settings import set_commission_percent
from eventdesk.tickets import (
    has_physical_location,
    issue_class_ticket,
    issue_meetup_ticket,
    verify_ticket,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    # Refuse to start with the development QR secret outside development.
    settings.validate_qr_secret()
    yield


app = FastAPI(title="Eventdesk", lifespan=lifespan)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def _ok(data: Any) -> dict:
    return {"success": True, "data": data, "meta": _meta()}


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_now() -> datetime:
    return clock.now()


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def get_admin_user(
    user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)
) -> User:
    user = db.get(User, user_id)
    if not user or not user.is_admin:
        raise HTTPException(status_code=403, detail="admin access required")
    return user


@app.exception_handler(TicketRejected)
async def ticket_rejected_handler(request: Request, exc: TicketRejected) -> JSONResponse:
    logger.info("ticket rejected on %s: %s", request.url.path, exc.reason)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


class PlatformSettingsUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"commissionPercent": 4}}}
    commission_percent: float = Field(alias="commissionPercent", ge=0, le=100)


@app.get("/api/settings/platform", tags=["Settings"])
def get_platform_settings(db: Session = Depends(get_db)) -> dict:
    return _ok({"commissionPercent": float(resolve_commission_percent(db))})


@app.patch("/api/settings/platform", tags=["Settings"])
def update_platform_settings(
    payload: PlatformSettingsUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict:
    try:
        percent = set_commission_percent(db, payload.commission_percent)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("commission percent set to %s by %s", percent, admin.id)
    return _ok({"commissionPercent": float(percent)})


def _require_event(
    db: Session, class_id: Optional[str], meetup_id: Optional[str], required: bool
) -> None:
    if class_id and meetup_id:
        raise HTTPException(status_code=400, detail="pass either classId or meetupId, not both")
    if required and not class_id and not meetup_id:
        raise HTTPException(status_code=400, detail="classId or meetupId is required")
    if class_id and not db.get(ClassEvent, class_id):
        raise HTTPException(status_code=404, detail="class not found")
    if meetup_id and not db.get(Meetup, meetup_id):
        raise HTTPException(status_code=404, detail="meetup not found")


@app.get("/api/payments/breakdown", tags=["Payments"])
def get_breakdown(
    amount: Decimal = Query(gt=0),
    class_id: Optional[str] = Query(default=None, alias="classId"),
    meetup_id: Optional[str] = Query(default=None, alias="meetupId"),
    db: Session = Depends(get_db),
) -> dict:
    _require_event(db, class_id, meetup_id, required=False)
    return _ok(get_payment_breakdown(db, amount).to_dict())


def _payment_data(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "paymentNumber": payment.payment_number,
        "userId": payment.user_id,
        "classId": payment.class_id,
        "meetupId": payment.meetup_id,
        "grossAmount": float(payment.gross_amount),
        "venueRent": float(payment.venue_rent),
        "commissionPercent": float(payment.commission_percent),
        "commissionAmount": float(payment.commission_amount),
        "processingFee": float(payment.processing_fee),
        "netAmount": float(payment.net_amount),
        "payoutAmount": float(payment.payout_amount),
        "currencyCode": payment.currency_code,
        "status": payment.status,
        "createdAt": clock.isoformat(payment.created_at),
    }


class PaymentCreate(BaseModel):
    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {"example": {"amount": 50.0, "classId": "c0ffee"}},
    }
    amount: Decimal = Field(gt=0)
    class_id: Optional[str] = Field(default=None, alias="classId")
    meetup_id: Optional[str] = Field(default=None, alias="meetupId")


@app.post("/api/payments", tags=["Payments"], status_code=201)
def create_payment(
    payload: PaymentCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict:
    _require_event(db, payload.class_id, payload.meetup_id, required=True)
    if not db.get(User, user_id):
        raise HTTPException(status_code=404, detail="user not found")
    breakdown = get_payment_breakdown(db, payload.amount)
    payment = Payment(
        payment_number=generate_payment_number(now),
        user_id=user_id,
        class_id=payload.class_id,
        meetup_id=payload.meetup_id,
        gross_amount=breakdown.gross_amount,
        venue_rent=breakdown.venue_rent,
        commission_percent=breakdown.commission_percent,
        commission_amount=breakdown.commission_amount,
        processing_fee=breakdown.processing_fee,
        net_amount=breakdown.net_amount,
        payout_amount=breakdown.payout_amount,
        status="PENDING",
        created_at=now,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    logger.info("payment %s created for %s", payment.payment_number, user_id)
    return _ok({**_payment_data(payment), "breakdown": breakdown.to_dict()})


@app.get("/api/payments/revenue", tags=["Payments"])
def get_platform_revenue(
    admin: User = Depends(get_admin_user), db: Session = Depends(get_db)
) -> dict:
    row = db.execute(
        select(
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.gross_amount), 0),
            func.coalesce(func.sum(Payment.commission_amount), 0),
            func.coalesce(func.sum(Payment.processing_fee), 0),
            func.coalesce(func.sum(Payment.payout_amount), 0),
        )
    ).one()
    count, gross, commission, fees, payouts = row
    return _ok(
        {
            "paymentCount": count,
            "grossAmount": float(gross),
            "platformRevenue": float(commission),
            "processingFees": float(fees),
            "payoutAmount": float(payouts),
        }
    )


@app.get("/api/payments", tags=["Payments"])
def list_user_payments(
    user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)
) -> dict:
    rows = db.scalars(
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id)
    ).all()
    return _ok([_payment_data(row) for row in rows])


@app.get("/api/payments/{payment_id}", tags=["Payments"])
def get_payment(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    payment = db.get(Payment, payment_id)
    if not payment or payment.user_id != user_id:
        raise HTTPException(status_code=404, detail="payment not found")
    return _ok(_payment_data(payment))


def _ticket_summary(ticket: Optional[Ticket]) -> Optional[dict]:
    if ticket is None:
        return None
    return {
        "id": ticket.id,
        "ticketNumber": ticket.ticket_number,
        "qrCode": ticket.qr_code,
        "status": ticket.status,
        "expiresAt": clock.isoformat(ticket.expires_at),
    }


@app.post("/api/classes/{class_id}/enroll", tags=["Classes"], status_code=201)
def enroll_in_class(
    class_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict:
    class_event = db.get(ClassEvent, class_id)
    if not class_event:
        raise HTTPException(status_code=404, detail="class not found")
    if not db.get(User, user_id):
        raise HTTPException(status_code=404, detail="user not found")
    enrollment = Enrollment(class_id=class_id, user_id=user_id, created_at=now)
    db.add(enrollment)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="already enrolled") from exc
    ticket = None
    if has_physical_location(class_event):
        ticket = issue_class_ticket(db, enrollment, class_event, now=now)
    db.commit()
    return _ok(
        {
            "id": enrollment.id,
            "classId": enrollment.class_id,
            "userId": enrollment.user_id,
            "createdAt": clock.isoformat(enrollment.created_at),
            "ticket": _ticket_summary(ticket),
        }
    )


@app.post("/api/meetups/{meetup_id}/join", tags=["Meetups"], status_code=201)
def join_meetup(
    meetup_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict:
    meetup = db.get(Meetup, meetup_id)
    if not meetup:
        raise HTTPException(status_code=404, detail="meetup not found")
    if not db.get(User, user_id):
        raise HTTPException(status_code=404, detail="user not found")
    member = MeetupMember(meetup_id=meetup_id, user_id=user_id, created_at=now)
    db.add(member)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="already joined") from exc
    ticket = None
    if has_physical_location(meetup):
        ticket = issue_meetup_ticket(db, member, meetup, now=now)
    db.commit()
    return _ok(
        {
            "id": member.id,
            "meetupId": member.meetup_id,
            "userId": member.user_id,
            "createdAt": clock.isoformat(member.created_at),
            "ticket": _ticket_summary(ticket),
        }
    )


class QRCodeRequest(BaseModel):
    model_config = {"json_schema_extra": {"example": {"qrCodeData": "{\"enrollmentId\":...}"}}}
    qr_code_data: Optional[str] = Field(default=None, alias="qrCodeData")


def _qr_code_data(payload: QRCodeRequest) -> str:
    if not payload.qr_code_data:
        raise HTTPException(status_code=400, detail="QR code data is required")
    return payload.qr_code_data


@app.post("/api/tickets/scan", tags=["Tickets"])
def scan_qr_code(
    payload: QRCodeRequest,
    scanner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict:
    result = verify_ticket(db, _qr_code_data(payload), scanner_id, commit=True, now=now)
    return _ok(result.to_dict())


@app.post("/api/tickets/validate", tags=["Tickets"])
def validate_qr_code(
    payload: QRCodeRequest,
    scanner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict:
    result = verify_ticket(db, _qr_code_data(payload), scanner_id, commit=False, now=now)
    return _ok(result.to_dict())
