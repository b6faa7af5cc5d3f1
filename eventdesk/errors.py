from typing import Any, Optional

from eventdesk.clock import isoformat


class EventdeskError(Exception):
    pass


class ConfigurationError(EventdeskError):
    pass


class SettingsUnavailable(EventdeskError):
    """Platform settings could not be read. Callers fall back to defaults."""


class TicketRejected(EventdeskError):
    """Base for every reportable outcome of ticket verification.

    ``reason`` is the stable code clients switch on, ``message`` is the
    human-readable text and ``context()`` holds extra response fields.
    """

    reason = "TICKET_REJECTED"
    message = "Ticket rejected"
    status_code = 400

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def context(self) -> dict[str, Any]:
        return {}

    def to_response(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.reason,
            "message": self.message,
            **self.context(),
        }


class InvalidFormat(TicketRejected):
    reason = "INVALID_FORMAT"
    message = "Invalid QR code format"


class InvalidSignature(TicketRejected):
    reason = "INVALID_SIGNATURE"
    message = "Invalid QR code"


class TicketNotFound(TicketRejected):
    reason = "TICKET_NOT_FOUND"
    message = "Ticket not found"
    status_code = 404


class AlreadyUsed(TicketRejected):
    reason = "ALREADY_USED"
    message = "Ticket already used"

    def __init__(self, used_at=None, message: Optional[str] = None) -> None:
        self.used_at = used_at
        super().__init__(message)

    def context(self) -> dict[str, Any]:
        return {"checkedInAt": isoformat(self.used_at)}


class Cancelled(TicketRejected):
    reason = "CANCELLED"
    message = "Ticket cancelled"


class Expired(TicketRejected):
    reason = "EXPIRED"
    message = "Ticket expired"


class Forbidden(TicketRejected):
    reason = "FORBIDDEN"
    message = "Unauthorized to check in this ticket"
    status_code = 403
