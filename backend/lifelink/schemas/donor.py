from __future__ import annotations

from typing import Any, Dict


def donor_document(donor: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(donor.get("_id")),
        "name": donor.get("name"),
        "phone": donor.get("phone"),
        "blood_group": donor.get("blood_group"),
        "is_blood_donor": donor.get("is_blood_donor", False),
        "last_donation_date": donor.get("last_donation_date"),
        "location": donor.get("location"),
        "show_phone": donor.get("show_phone", False),
        "total_donations": donor.get("total_donations", 0),
        "total_units": donor.get("total_units", 0),
        "created_at": donor.get("created_at"),
        "updated_at": donor.get("updated_at"),
    }


def donation_document(donation: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(donation.get("_id")),
        "donor_id": donation.get("donor_id"),
        "donation_date": donation.get("donation_date"),
        "location": donation.get("location"),
        "units": donation.get("units", 1),
        "notes": donation.get("notes"),
        "created_at": donation.get("created_at"),
    }
