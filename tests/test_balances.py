"""
Tests for customer and vendor balances.
"""

from decimal import Decimal
from types import SimpleNamespace

from conftest import add_transaction
from modules.balances import aggregate_customer, aggregate_vendor, serialize_balance, BalanceAggregator
from modules.payments import PaymentAllocator


def _row(**values):
    return SimpleNamespace(**values)


class TestAggregation:

    def test_customer_balance_is_owed_minus_paid(self):
        transactions = [
            _row(net_payable_to_customer=Decimal('100.00'), paid_to_customer=Decimal('100.00')),
            _row(net_payable_to_customer=Decimal('200.00'), paid_to_customer=Decimal('0.00')),
        ]

        balance = aggregate_customer(transactions)

        assert balance['total_owed'] == Decimal('300.00')
        assert balance['total_paid'] == Decimal('100.00')
        assert balance['balance'] == Decimal('200.00')
        assert balance['transaction_count'] == 2

    def test_vendor_balance_is_receivable_minus_received(self):
        transactions = [
            _row(amount_to_receive_from_vendor=Decimal('99.00'), received_from_vendor=Decimal('50.00')),
            _row(amount_to_receive_from_vendor=Decimal('198.00'), received_from_vendor=None),
        ]

        balance = aggregate_vendor(transactions)

        assert balance['balance'] == Decimal('247.00')
        assert balance['total_received'] == Decimal('50.00')

    def test_empty_inputs_give_zero(self):
        assert aggregate_customer([])['balance'] == Decimal('0')
        assert serialize_balance(aggregate_vendor([]))['balance'] == '0.00'

    def test_unallocated_deposits(self):
        deposits = [_row(amount=Decimal('150.00'), allocations=[_row(amount=Decimal('100.00'))])]

        balance = aggregate_customer([], deposits)

        assert balance['unallocated_deposits'] == Decimal('50.00')


class TestBalanceAggregator:

    def test_balances_follow_deposits(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')
        add_transaction(app, parties.customer_id, parties.vendor_id, '200.00')
        with app.app_context():
            PaymentAllocator.record_customer_deposit({'customer_id': parties.customer_id, 'amount': '300'})

            balance = BalanceAggregator.customer_balance(parties.customer_id)

            assert balance['total_owed'] == Decimal('294.00')
            assert balance['balance'] == Decimal('0.00')
            assert balance['unallocated_deposits'] == Decimal('6.00')
            assert balance['customer_name'] == 'Atlas Construction'

    def test_vendor_balance(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')
        with app.app_context():
            balance = BalanceAggregator.vendor_balance(parties.vendor_id)

            assert balance['balance'] == Decimal('99.00')
            assert balance['vendor_name'] == 'Quick Cash'


class TestBalanceRoutes:

    def test_customer_balances(self, app, user_client, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')

        response = user_client.get('/api/balances/customers')

        data = response.get_json()['data']
        assert data[0]['balance'] == '98.00'
        assert data[0]['transaction_count'] == 1

    def test_vendor_balance_by_id(self, app, user_client, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')

        response = user_client.get(f'/api/balances/vendors/{parties.vendor_id}')

        assert response.get_json()['data']['total_receivable'] == '99.00'

    def test_unknown_customer_returns_404(self, user_client):
        assert user_client.get('/api/balances/customers/404').status_code == 404
