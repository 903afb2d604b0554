"""
Customer and vendor balances computed from stored transactions
"""

from decimal import Decimal
import logging

from flask import jsonify
from flask_login import login_required

from database.models import Customer, Vendor, ChequeTransaction, CustomerDeposit, VendorPayment
from modules.auth import permission_required
from modules.ledger import ChequeLedger
from modules.utils import ZERO, money_str

logger = logging.getLogger(__name__)


def sum_field(rows, field):
    return sum(((getattr(row, field) or ZERO) for row in rows), ZERO)


def unallocated_amount(records):
    """Amount of deposits or payments not yet applied to any transaction."""
    total = ZERO
    for record in records:
        allocated = sum((a.amount for a in record.allocations), ZERO)
        total += (record.amount or ZERO) - allocated
    return total


def aggregate_customer(transactions, deposits=()):
    total_owed = sum_field(transactions, 'net_payable_to_customer')
    total_paid = sum_field(transactions, 'paid_to_customer')
    return {
        'transaction_count': len(transactions),
        'total_owed': total_owed,
        'total_paid': total_paid,
        'balance': total_owed - total_paid,
        'unallocated_deposits': unallocated_amount(deposits),
    }


def aggregate_vendor(transactions, payments=()):
    total_receivable = sum_field(transactions, 'amount_to_receive_from_vendor')
    total_received = sum_field(transactions, 'received_from_vendor')
    return {
        'transaction_count': len(transactions),
        'total_receivable': total_receivable,
        'total_received': total_received,
        'balance': total_receivable - total_received,
        'unallocated_payments': unallocated_amount(payments),
    }


def serialize_balance(balance):
    return {key: money_str(value) if isinstance(value, Decimal) else value
            for key, value in balance.items()}


class BalanceAggregator:

    @staticmethod
    def customer_balance(customer_id):
        customer = ChequeLedger.get_customer(customer_id)
        transactions = ChequeTransaction.query.filter_by(customer_id=customer.customer_id).all()
        deposits = CustomerDeposit.query.filter_by(customer_id=customer.customer_id).all()
        balance = aggregate_customer(transactions, deposits)
        balance.update(customer_id=customer.customer_id, customer_name=customer.customer_name)
        return balance

    @staticmethod
    def vendor_balance(vendor_id):
        vendor = ChequeLedger.get_vendor(vendor_id)
        transactions = ChequeTransaction.query.filter_by(vendor_id=vendor.vendor_id).all()
        payments = VendorPayment.query.filter_by(vendor_id=vendor.vendor_id).all()
        balance = aggregate_vendor(transactions, payments)
        balance.update(vendor_id=vendor.vendor_id, vendor_name=vendor.vendor_name)
        return balance

    @staticmethod
    def all_customer_balances():
        customers = Customer.query.order_by(Customer.customer_name).all()
        return [BalanceAggregator.customer_balance(c.customer_id) for c in customers]

    @staticmethod
    def all_vendor_balances():
        vendors = Vendor.query.order_by(Vendor.vendor_name).all()
        return [BalanceAggregator.vendor_balance(v.vendor_id) for v in vendors]


def register_balance_routes(app):

    @app.route('/api/balances/customers')
    @login_required
    @permission_required('view')
    def get_customer_balances():
        balances = BalanceAggregator.all_customer_balances()
        return jsonify({'success': True, 'data': [serialize_balance(b) for b in balances]})

    @app.route('/api/balances/customers/<int:customer_id>')
    @login_required
    @permission_required('view')
    def get_customer_balance(customer_id):
        return jsonify({'success': True, 'data': serialize_balance(BalanceAggregator.customer_balance(customer_id))})

    @app.route('/api/balances/vendors')
    @login_required
    @permission_required('view')
    def get_vendor_balances():
        balances = BalanceAggregator.all_vendor_balances()
        return jsonify({'success': True, 'data': [serialize_balance(b) for b in balances]})

    @app.route('/api/balances/vendors/<vendor_id>')
    @login_required
    @permission_required('view')
    def get_vendor_balance(vendor_id):
        return jsonify({'success': True, 'data': serialize_balance(BalanceAggregator.vendor_balance(vendor_id))})

    return app
