from fractions import Fraction

import pytest

from stepcoin.core.errors import ValidationError
from stepcoin.features.rates.tiers import DEFAULT_TIER_TABLE, TierTable
from stepcoin.models.tier import TierDefinition


def test_default_table_has_nine_phases():
    assert len(DEFAULT_TIER_TABLE) == 9
    assert DEFAULT_TIER_TABLE.max_ordinal == 9
    assert DEFAULT_TIER_TABLE.get(1).label == "Paisa Phase"
    assert DEFAULT_TIER_TABLE.get(9).base_rate == Fraction(30)


def test_rates_and_requirements_increase():
    tiers = list(DEFAULT_TIER_TABLE)
    assert [t.base_rate for t in tiers] == sorted(t.base_rate for t in tiers)
    assert [t.step_requirement for t in tiers] == sorted(t.step_requirement for t in tiers)


def test_terminal_and_next():
    assert DEFAULT_TIER_TABLE.is_terminal(9)
    assert not DEFAULT_TIER_TABLE.is_terminal(8)
    assert DEFAULT_TIER_TABLE.next(9) is None
    assert DEFAULT_TIER_TABLE.next(1).ordinal == 2


def test_unknown_ordinal_raises():
    with pytest.raises(ValidationError):
        DEFAULT_TIER_TABLE.get(0)


def test_gapped_ordinals_rejected():
    with pytest.raises(ValueError):
        TierTable([
            TierDefinition(1, "One", "1", Fraction(1), 10),
            TierDefinition(3, "Three", "3", Fraction(3), 10),
        ])


def test_non_positive_rate_rejected():
    with pytest.raises(ValueError):
        TierTable([TierDefinition(1, "Free", "0", Fraction(0), 10)])
