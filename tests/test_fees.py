"""
Tests for the fee calculator.
"""

from decimal import Decimal

import pytest

from modules.fees import FeeCalculator
from modules.utils import ValidationError


class TestFeeCalculation:

    def test_reference_cheque(self):
        result = FeeCalculator.calculate('4850.00', '2.00', '1.00')

        assert result['customer_fee'] == Decimal('97.00')
        assert result['net_payable_to_customer'] == Decimal('4753.00')
        assert result['vendor_fee'] == Decimal('48.50')
        assert result['amount_to_receive_from_vendor'] == Decimal('4801.50')
        assert result['profit'] == Decimal('48.50')

    def test_fees_round_half_up_at_the_cent(self):
        result = FeeCalculator.calculate('100.50', '2.5', '0')

        # 100.50 * 2.5% = 2.5125
        assert result['customer_fee'] == Decimal('2.51')
        result = FeeCalculator.calculate('0.90', '2.5', '0')
        # 0.90 * 2.5% = 0.0225
        assert result['customer_fee'] == Decimal('0.02')
        result = FeeCalculator.calculate('1.00', '12.5', '0')
        # 1.00 * 12.5% = 0.125
        assert result['customer_fee'] == Decimal('0.13')

    @pytest.mark.parametrize('amount,cf,vf', [
        ('0.01', '0', '0'),
        ('999.99', '3.33', '1.11'),
        ('12345.67', '100', '0'),
        ('7.77', '33.33', '66.67'),
    ])
    def test_parts_add_up_to_the_cheque_amount(self, amount, cf, vf):
        result = FeeCalculator.calculate(amount, cf, vf)

        assert result['customer_fee'] + result['net_payable_to_customer'] == Decimal(amount)
        assert result['vendor_fee'] + result['amount_to_receive_from_vendor'] == Decimal(amount)
        assert result['profit'] == result['customer_fee'] - result['vendor_fee']

    def test_profit_can_be_negative(self):
        result = FeeCalculator.calculate('1000', '1', '3')

        assert result['profit'] == Decimal('-20.00')

    def test_amount_is_rounded_to_the_cent_first(self):
        result = FeeCalculator.calculate('100.005', '0', '0')

        assert result['cheque_amount'] == Decimal('100.01')
        assert result['net_payable_to_customer'] == Decimal('100.01')

    def test_serialize_uses_two_decimals(self):
        result = FeeCalculator.serialize(FeeCalculator.calculate(4850, 2, 1))

        assert result['profit'] == '48.50'
        assert result['cheque_amount'] == '4850.00'


class TestFeeValidation:

    @pytest.mark.parametrize('amount', ['0', '-5', '0.004', None, '', 'abc', 'NaN', 'Infinity'])
    def test_rejects_bad_amounts(self, amount):
        with pytest.raises(ValidationError):
            FeeCalculator.calculate(amount, '1', '1')

    @pytest.mark.parametrize('cf,vf', [('-1', '1'), ('1', '-0.01'), ('100.01', '1'), ('1', '150')])
    def test_rejects_out_of_range_percentages(self, cf, vf):
        with pytest.raises(ValidationError):
            FeeCalculator.calculate('100', cf, vf)

    def test_zero_and_hundred_percent_are_allowed(self):
        result = FeeCalculator.calculate('100', '100', '0')

        assert result['net_payable_to_customer'] == Decimal('0.00')
        assert result['profit'] == Decimal('100.00')
