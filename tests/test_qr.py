import hashlib
import hmac
import json
import re

import pytest

from eventdesk.errors import InvalidFormat, InvalidSignature
from eventdesk.qr import (
    SIGNED_FIELDS,
    canonical_message,
    generate_qr_code_data,
    generate_ticket_number,
    parse_payload,
    sign,
    verify_signature,
)

SECRET = "unit-secret"


def _class_payload(**overrides) -> str:
    args = {
        "enrollment_id": "enr-1",
        "meetup_member_id": None,
        "class_id": "cls-1",
        "meetup_id": None,
        "user_id": "usr-1",
        "secret": SECRET,
        "timestamp": 1767225600000,
    }
    args.update(overrides)
    return generate_qr_code_data(**args)


def _resign(fields: dict, secret: str = SECRET) -> str:
    return json.dumps({**fields, "hash": sign(canonical_message(fields), secret)}, separators=(",", ":"))


def test_payload_layout_and_hash() -> None:
    raw = _class_payload()
    assert raw == (
        '{"enrollmentId":"enr-1","meetupMemberId":null,"classId":"cls-1","meetupId":null,'
        '"userId":"usr-1","timestamp":1767225600000,"hash":"' + json.loads(raw)["hash"] + '"}'
    )
    message = (
        '{"enrollmentId":"enr-1","meetupMemberId":null,"classId":"cls-1",'
        '"meetupId":null,"userId":"usr-1","timestamp":1767225600000}'
    )
    expected = hmac.new(SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()
    assert json.loads(raw)["hash"] == expected
    assert list(json.loads(raw)) == [*SIGNED_FIELDS, "hash"]


def test_verify_signature_round_trip() -> None:
    payload = verify_signature(_class_payload(), SECRET)
    assert payload.class_id == "cls-1"
    assert payload.user_id == "usr-1"
    assert payload.meetup_id is None


def test_meetup_payload_verifies() -> None:
    raw = _class_payload(enrollment_id=None, class_id=None, meetup_member_id="mm-1", meetup_id="mtp-1")
    assert verify_signature(raw, SECRET).meetup_id == "mtp-1"


def test_wrong_secret_is_rejected() -> None:
    with pytest.raises(InvalidSignature):
        verify_signature(_class_payload(), "another-secret")


def test_canonical_order_ignores_input_order() -> None:
    fields = json.loads(_class_payload())
    fields.pop("hash")
    shuffled = dict(reversed(list(fields.items())))
    assert canonical_message(shuffled) == canonical_message(fields)


def test_non_ascii_is_signed_unescaped() -> None:
    raw = _class_payload(user_id="usuário")
    assert "usuário" in raw
    assert verify_signature(raw, SECRET).user_id == "usuário"


def test_every_single_byte_mutation_fails() -> None:
    raw = _class_payload()
    for index, char in enumerate(raw):
        mutated = raw[:index] + ("x" if char != "x" else "y") + raw[index + 1:]
        with pytest.raises((InvalidSignature, InvalidFormat)):
            verify_signature(mutated, SECRET)


def test_tampered_value_with_valid_shape_fails_signature() -> None:
    fields = json.loads(_class_payload())
    fields["userId"] = "usr-2"
    with pytest.raises(InvalidSignature):
        verify_signature(json.dumps(fields, separators=(",", ":")), SECRET)


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json",
        "[]",
        '"just a string"',
        "null",
    ],
)
def test_malformed_input_is_invalid_format(raw: str) -> None:
    with pytest.raises(InvalidFormat):
        parse_payload(raw)


def _fields() -> dict:
    fields = json.loads(_class_payload())
    fields.pop("hash")
    return fields


def test_missing_key_is_invalid_format() -> None:
    fields = _fields()
    fields.pop("meetupId")
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))


def test_unknown_key_is_invalid_format() -> None:
    fields = _fields()
    fields["seat"] = "A1"
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))


def test_both_event_references_is_invalid_format() -> None:
    fields = _fields()
    fields["meetupId"] = "mtp-1"
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))


def test_no_event_reference_is_invalid_format() -> None:
    fields = _fields()
    fields["classId"] = None
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))


def test_wrong_types_are_invalid_format() -> None:
    fields = _fields()
    fields["timestamp"] = "1767225600000"
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))
    fields = _fields()
    fields["userId"] = ""
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))
    fields = _fields()
    fields["classId"] = 7
    with pytest.raises(InvalidFormat):
        parse_payload(_resign(fields))


def test_uppercase_hash_is_invalid_format() -> None:
    data = json.loads(_class_payload())
    data["hash"] = data["hash"].upper()
    with pytest.raises(InvalidFormat):
        parse_payload(json.dumps(data, separators=(",", ":")))


def test_ticket_number_format() -> None:
    assert re.fullmatch(r"TKT-\d{4}-\d{6}", generate_ticket_number())
