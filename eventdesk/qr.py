import hashlib
import hmac
import json
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from eventdesk.errors import InvalidFormat, InvalidSignature

# HMAC input order; the stored payload string is the lookup key at scan time.
SIGNED_FIELDS = (
    "enrollmentId",
    "meetupMemberId",
    "classId",
    "meetupId",
    "userId",
    "timestamp",
)


class SignedTicketPayload(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)

    # Keys are always present; the values may be null.
    enrollment_id: Optional[str] = Field(alias="enrollmentId")
    meetup_member_id: Optional[str] = Field(alias="meetupMemberId")
    class_id: Optional[str] = Field(alias="classId")
    meetup_id: Optional[str] = Field(alias="meetupId")
    user_id: str = Field(alias="userId", min_length=1)
    timestamp: int = Field(ge=0)
    hash: str = Field(pattern=r"^[0-9a-f]{64}$")

    @model_validator(mode="after")
    def _single_event_reference(self) -> "SignedTicketPayload":
        if (self.class_id is None) == (self.meetup_id is None):
            raise ValueError("exactly one of classId and meetupId must be set")
        return self

    def signed_fields(self) -> dict:
        return {
            "enrollmentId": self.enrollment_id,
            "meetupMemberId": self.meetup_member_id,
            "classId": self.class_id,
            "meetupId": self.meetup_id,
            "userId": self.user_id,
            "timestamp": self.timestamp,
        }


def canonical_message(fields: dict) -> str:
    ordered = {name: fields.get(name) for name in SIGNED_FIELDS}
    return json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)


def sign(message: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_qr_code_data(
    enrollment_id: Optional[str],
    meetup_member_id: Optional[str],
    class_id: Optional[str],
    meetup_id: Optional[str],
    user_id: str,
    secret: str,
    timestamp: Optional[int] = None,
) -> str:
    fields = {
        "enrollmentId": enrollment_id,
        "meetupMemberId": meetup_member_id,
        "classId": class_id,
        "meetupId": meetup_id,
        "userId": user_id,
        "timestamp": int(time.time() * 1000) if timestamp is None else timestamp,
    }
    message = canonical_message(fields)
    return json.dumps(
        {**fields, "hash": sign(message, secret)}, separators=(",", ":"), ensure_ascii=False
    )


def parse_payload(raw: str) -> SignedTicketPayload:
    try:
        return SignedTicketPayload.model_validate_json(raw)
    except ValidationError as exc:
        raise InvalidFormat() from exc


def verify_signature(raw: str, secret: str) -> SignedTicketPayload:
    payload = parse_payload(raw)
    expected = sign(canonical_message(payload.signed_fields()), secret)
    if not hmac.compare_digest(expected, payload.hash):
        raise InvalidSignature()
    return payload


def generate_ticket_number(now: Optional[datetime] = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"TKT-{year}-{secrets.randbelow(1_000_000):06d}"
