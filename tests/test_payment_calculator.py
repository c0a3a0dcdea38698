from decimal import Decimal

import pytest

from services.errors import PaymentStructureError
from services.payment_calculator import PaymentStructure, calculate_split, platform_fee_for


class TestCalculateSplit:
    def test_default_structure_splits_tax_inclusive_total_in_half(self):
        split = calculate_split(Decimal("10000"))

        assert split.tax_amount == Decimal("1800.00")
        assert split.total_with_tax == Decimal("11800.00")
        assert split.upfront_amount == Decimal("5900.00")
        assert split.completion_amount == Decimal("5900.00")
        assert split.bonus_amount == Decimal("0.00")

    @pytest.mark.parametrize("compensation, structure", [
        (Decimal("333.33"), PaymentStructure(upfront=33, completion=67)),
        (Decimal("1.45"), PaymentStructure()),
        (Decimal("0.01"), PaymentStructure()),
        (Decimal("9999.99"), PaymentStructure(upfront=30, completion=70)),
    ])
    def test_parts_sum_to_total_within_one_minor_unit(self, compensation, structure):
        split = calculate_split(compensation, structure)

        assert abs(split.upfront_amount + split.completion_amount - split.total_with_tax) <= Decimal("0.01")

    def test_odd_cent_compensation_rounds_each_part_on_its_own(self):
        # 1.45 * 1.18 = 1.711; half of it is 0.8555 -> 0.86 for both parts
        split = calculate_split(Decimal("1.45"))

        assert split.total_with_tax == Decimal("1.71")
        assert split.upfront_amount == Decimal("0.86")
        assert split.completion_amount == Decimal("0.86")

    def test_parts_round_half_up(self):
        # 0.01 * 1.18 * 50% = 0.0059 -> 0.01
        split = calculate_split(Decimal("0.01"))

        assert split.upfront_amount == Decimal("0.01")
        assert split.completion_amount == Decimal("0.01")

    def test_bonus_is_computed_on_tax_inclusive_total(self):
        split = calculate_split(10000, PaymentStructure(upfront=50, completion=50, bonus=10))

        assert split.bonus_amount == Decimal("1180.00")

    def test_custom_tax_rate(self):
        split = calculate_split(Decimal("1000"), tax_rate=Decimal("0"))

        assert split.total_with_tax == Decimal("1000.00")
        assert split.upfront_amount == Decimal("500.00")

    def test_zero_compensation_gives_zero_amounts(self):
        split = calculate_split(Decimal("0"))

        assert split.upfront_amount == Decimal("0.00")
        assert split.completion_amount == Decimal("0.00")

    def test_negative_compensation_is_rejected(self):
        with pytest.raises(PaymentStructureError):
            calculate_split(Decimal("-1"))

    def test_amount_for_payment_type(self):
        split = calculate_split(Decimal("10000"), PaymentStructure(upfront=30, completion=70, bonus=5))

        assert split.amount_for("upfront") == Decimal("3540.00")
        assert split.amount_for("completion") == Decimal("8260.00")
        assert split.amount_for("bonus") == Decimal("590.00")


class TestPaymentStructure:
    def test_missing_structure_uses_defaults(self):
        structure = PaymentStructure.from_campaign(None)

        assert (structure.upfront, structure.completion) == (50, 50)
        assert not structure.has_bonus

    def test_from_campaign_json(self):
        structure = PaymentStructure.from_campaign({"upfront": 40, "completion": 60, "bonus": 10})

        assert structure == PaymentStructure(upfront=40, completion=60, bonus=10)
        assert structure.has_bonus

    def test_null_bonus_means_no_bonus(self):
        structure = PaymentStructure.from_campaign({"upfront": 50, "completion": 50, "bonus": None})

        assert structure.bonus == 0

    @pytest.mark.parametrize("raw", [
        {"upfront": 60, "completion": 60},
        {"upfront": 50, "completion": 50, "bonus": 150},
        {"upfront": -10, "completion": 110},
        {"upfront": "half", "completion": 50},
    ])
    def test_invalid_structures_are_rejected(self, raw):
        with pytest.raises(PaymentStructureError):
            PaymentStructure.from_campaign(raw)


def test_platform_fee_is_commission_on_payment_amount():
    assert platform_fee_for(Decimal("5900.00")) == Decimal("295.00")
    assert platform_fee_for(Decimal("100"), Decimal("0.1")) == Decimal("10.00")
