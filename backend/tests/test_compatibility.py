import pytest

from lifelink.matching.compatibility import (
    CAN_DONATE_TO,
    compatible_donor_groups,
    compatible_recipient_groups,
    is_compatible,
)
from lifelink.models.blood import BloodGroup


@pytest.mark.parametrize("group", list(BloodGroup))
def test_o_negative_gives_to_everyone(group):
    assert is_compatible(BloodGroup.O_NEGATIVE, group)


@pytest.mark.parametrize("group", list(BloodGroup))
def test_ab_positive_receives_from_everyone(group):
    assert is_compatible(group, BloodGroup.AB_POSITIVE)


def test_ab_positive_only_gives_to_ab_positive():
    assert compatible_recipient_groups("AB+") == [BloodGroup.AB_POSITIVE]


def test_o_positive_gives_to_positive_groups():
    assert set(compatible_recipient_groups("O+")) == {
        BloodGroup.O_POSITIVE,
        BloodGroup.A_POSITIVE,
        BloodGroup.B_POSITIVE,
        BloodGroup.AB_POSITIVE,
    }


def test_negative_recipient_never_takes_positive_blood():
    assert not is_compatible("O+", "O-")
    assert not is_compatible("A+", "A-")
    assert compatible_donor_groups("O-") == [BloodGroup.O_NEGATIVE]


def test_o_positive_recipient_donors():
    assert compatible_donor_groups(BloodGroup.O_POSITIVE) == [BloodGroup.O_NEGATIVE, BloodGroup.O_POSITIVE]


def test_table_covers_every_group():
    assert set(CAN_DONATE_TO) == set(BloodGroup)


def test_unknown_or_missing_groups_are_incompatible():
    assert not is_compatible(None, "O+")
    assert not is_compatible("O-", None)
    assert not is_compatible("Z+", "O+")


@pytest.mark.parametrize(
    "raw, expected",
    [("O+", BloodGroup.O_POSITIVE), ("ab-", BloodGroup.AB_NEGATIVE), ("B pos", BloodGroup.B_POSITIVE),
     ("A_NEGATIVE", BloodGroup.A_NEGATIVE), ("O\u2212", BloodGroup.O_NEGATIVE), ("AB\u2212", BloodGroup.AB_NEGATIVE)],
)
def test_blood_group_parse_accepts_common_spellings(raw, expected):
    assert BloodGroup.parse(raw) is expected
