"""
Fee calculation for cheque transactions
"""

from decimal import Decimal

from modules.utils import ValidationError, to_decimal, to_money

HUNDRED = Decimal('100')


class FeeCalculator:
    """Customer fee, vendor fee and profit for a cheque."""

    @staticmethod
    def validate(cheque_amount, customer_fee_percentage, vendor_fee_percentage):
        amount = to_money(to_decimal(cheque_amount, 'cheque_amount'))
        if amount <= 0:
            raise ValidationError('cheque_amount must be greater than zero')

        customer_pct = to_decimal(customer_fee_percentage, 'customer_fee_percentage')
        vendor_pct = to_decimal(vendor_fee_percentage, 'vendor_fee_percentage')
        for field, pct in (('customer_fee_percentage', customer_pct),
                           ('vendor_fee_percentage', vendor_pct)):
            if pct < 0 or pct > HUNDRED:
                raise ValidationError(f'{field} must be between 0 and 100')

        return amount, customer_pct, vendor_pct

    @staticmethod
    def calculate(cheque_amount, customer_fee_percentage, vendor_fee_percentage):
        amount, customer_pct, vendor_pct = FeeCalculator.validate(
            cheque_amount, customer_fee_percentage, vendor_fee_percentage
        )

        customer_fee = to_money(amount * customer_pct / HUNDRED)
        vendor_fee = to_money(amount * vendor_pct / HUNDRED)

        return {
            'cheque_amount': amount,
            'customer_fee': customer_fee,
            'net_payable_to_customer': amount - customer_fee,
            'vendor_fee': vendor_fee,
            'amount_to_receive_from_vendor': amount - vendor_fee,
            'profit': customer_fee - vendor_fee,
        }

    @staticmethod
    def serialize(breakdown):
        return {key: f"{value:.2f}" for key, value in breakdown.items()}
