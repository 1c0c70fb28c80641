"""Red-cell donor/recipient compatibility for the eight ABO/Rh groups."""

from __future__ import annotations

from typing import Dict, FrozenSet, List

from ..models.blood import BloodGroup

O_NEG, O_POS = BloodGroup.O_NEGATIVE, BloodGroup.O_POSITIVE
A_NEG, A_POS = BloodGroup.A_NEGATIVE, BloodGroup.A_POSITIVE
B_NEG, B_POS = BloodGroup.B_NEGATIVE, BloodGroup.B_POSITIVE
AB_NEG, AB_POS = BloodGroup.AB_NEGATIVE, BloodGroup.AB_POSITIVE

# Key: donor group. Value: recipient groups that donor can give to.
CAN_DONATE_TO: Dict[BloodGroup, FrozenSet[BloodGroup]] = {
    O_NEG: frozenset(BloodGroup),
    O_POS: frozenset({O_POS, A_POS, B_POS, AB_POS}),
    A_NEG: frozenset({A_NEG, A_POS, AB_NEG, AB_POS}),
    A_POS: frozenset({A_POS, AB_POS}),
    B_NEG: frozenset({B_NEG, B_POS, AB_NEG, AB_POS}),
    B_POS: frozenset({B_POS, AB_POS}),
    AB_NEG: frozenset({AB_NEG, AB_POS}),
    AB_POS: frozenset({AB_POS}),
}

_missing = set(BloodGroup) - set(CAN_DONATE_TO)
if _missing:
    raise RuntimeError(f"Compatibility table is missing donor groups: {sorted(g.value for g in _missing)}")

CAN_RECEIVE_FROM: Dict[BloodGroup, FrozenSet[BloodGroup]] = {
    recipient: frozenset(donor for donor, recipients in CAN_DONATE_TO.items() if recipient in recipients)
    for recipient in BloodGroup
}


def is_compatible(donor_group: BloodGroup | str | None, recipient_group: BloodGroup | str | None) -> bool:
    """True when a donor of ``donor_group`` may give to a ``recipient_group`` patient.

    An unknown or missing group on either side is never compatible.
    """
    try:
        donor = BloodGroup.parse(donor_group)
        recipient = BloodGroup.parse(recipient_group)
    except ValueError:
        return False
    if donor is None or recipient is None:
        return False
    return recipient in CAN_DONATE_TO[donor]


def compatible_donor_groups(recipient_group: BloodGroup | str) -> List[BloodGroup]:
    recipient = BloodGroup.parse(recipient_group)
    return [group for group in BloodGroup if group in CAN_RECEIVE_FROM[recipient]]


def compatible_recipient_groups(donor_group: BloodGroup | str) -> List[BloodGroup]:
    donor = BloodGroup.parse(donor_group)
    return [group for group in BloodGroup if group in CAN_DONATE_TO[donor]]
