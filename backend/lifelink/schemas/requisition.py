from __future__ import annotations

from typing import Any, Dict


def requisition_document(requisition: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(requisition.get("_id")),
        "requester_id": requisition.get("requester_id"),
        "patient_name": requisition.get("patient_name"),
        "hospital_name": requisition.get("hospital_name"),
        "contact_number": requisition.get("contact_number"),
        "alternate_number": requisition.get("alternate_number"),
        "required_blood_group": requisition.get("required_blood_group"),
        "units_needed": requisition.get("units_needed"),
        "urgency_level": requisition.get("urgency_level"),
        "medical_condition": requisition.get("medical_condition"),
        "location": requisition.get("location"),
        "additional_notes": requisition.get("additional_notes"),
        "required_by_date": requisition.get("required_by_date"),
        "allow_contact_reveal": requisition.get("allow_contact_reveal", True),
        "status": requisition.get("status"),
        "willing_donors_count": requisition.get("willing_donors_count", 0),
        "version": requisition.get("version", 0),
        "created_at": requisition.get("created_at"),
        "updated_at": requisition.get("updated_at"),
        "closed_at": requisition.get("closed_at"),
    }


def notification_document(notification: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(notification.get("_id")),
        "requisition_id": notification.get("requisition_id"),
        "donor_id": notification.get("donor_id"),
        "title": notification.get("title"),
        "message": notification.get("message"),
        "status": notification.get("status"),
        "created_at": notification.get("created_at"),
        "sent_at": notification.get("sent_at"),
        "delivered_at": notification.get("delivered_at"),
        "read_at": notification.get("read_at"),
        "dispatched_at": notification.get("dispatched_at"),
        "dispatch_attempts": notification.get("dispatch_attempts", 0),
        "dispatch_rounds": notification.get("dispatch_rounds", 0),
        "retry_eligible": notification.get("retry_eligible", False),
        "last_error": notification.get("last_error"),
    }


def response_document(response: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(response.get("_id")),
        "requisition_id": response.get("requisition_id"),
        "donor_id": response.get("donor_id"),
        "response": response.get("response"),
        "message": response.get("message"),
        "responded_at": response.get("responded_at"),
        "contact_revealed": response.get("contact_revealed", False),
        "contact_phone": response.get("contact_phone"),
    }
