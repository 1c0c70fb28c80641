from __future__ import annotations

from typing import Any, Dict


class LifeLinkError(Exception):
    """Base for every typed failure the engine surfaces to callers."""

    code = "LIFELINK_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.context:
            body["context"] = self.context
        return body


class ValidationError(LifeLinkError):
    code = "VALIDATION_ERROR"
    status_code = 422


class InvalidTransition(LifeLinkError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, requisition_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Requisition {requisition_id} cannot move from {current} to {target}",
            requisition_id=requisition_id,
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class NotNotified(LifeLinkError):
    code = "NOT_NOTIFIED"
    status_code = 409

    def __init__(self, requisition_id: str, donor_id: str) -> None:
        super().__init__(
            "Donor was never notified about this requisition",
            requisition_id=requisition_id,
            donor_id=donor_id,
        )


class RequisitionNotActive(LifeLinkError):
    code = "REQUISITION_NOT_ACTIVE"
    status_code = 409

    def __init__(self, requisition_id: str, status: str) -> None:
        super().__init__(
            f"This requisition is no longer active ({status})",
            requisition_id=requisition_id,
            status=status,
        )
        self.status = status


class ConcurrentUpdate(LifeLinkError):
    code = "CONCURRENT_UPDATE"
    status_code = 409


class RequisitionNotFound(LifeLinkError):
    code = "REQUISITION_NOT_FOUND"
    status_code = 404

    def __init__(self, requisition_id: str) -> None:
        super().__init__("Blood requisition not found", requisition_id=requisition_id)


class DonorNotFound(LifeLinkError):
    code = "DONOR_NOT_FOUND"
    status_code = 404

    def __init__(self, donor_id: str) -> None:
        super().__init__("Donor profile not found", donor_id=donor_id)


class NotificationNotFound(LifeLinkError):
    code = "NOTIFICATION_NOT_FOUND"
    status_code = 404

    def __init__(self, notification_id: str) -> None:
        super().__init__("Notification not found", notification_id=notification_id)


class NotRequisitionOwner(LifeLinkError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, requisition_id: str) -> None:
        super().__init__("Only the requester can manage this requisition", requisition_id=requisition_id)


class NotNotificationRecipient(LifeLinkError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, notification_id: str) -> None:
        super().__init__("You can only update your own notifications", notification_id=notification_id)


class TransportError(LifeLinkError):
    """Raised by transport adapters; the notifier records it per donor and never re-raises."""

    code = "TRANSPORT_FAILED"
    status_code = 502


class UndeliverableMessage(TransportError):
    """A message that no amount of retrying can deliver, such as a donor without a phone number."""

    code = "UNDELIVERABLE"
    status_code = 422
