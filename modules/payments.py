"""
Customer deposits, vendor payments and profit withdrawals with FIFO allocation
"""

import logging
from datetime import date

from flask import jsonify, request
from flask_login import login_required

from database.models import (
    db, ChequeTransaction, CustomerDeposit, VendorPayment, ProfitWithdrawal,
    CustomerDepositAllocation, VendorPaymentAllocation, ProfitWithdrawalAllocation
)
from modules.auth import permission_required
from modules.ledger import ChequeLedger
from modules.utils import (
    record_audit_log, ValidationError, NotFoundError, ZERO,
    to_decimal, to_money, parse_date, parse_int, require_fields
)

logger = logging.getLogger(__name__)


def _positive_amount(value):
    amount = to_money(to_decimal(value, 'amount'))
    if amount <= 0:
        raise ValidationError('amount must be greater than zero')
    return amount


def allocate_fifo(amount, transactions, outstanding, apply):
    """Spread amount over transactions in order; returns (allocations, remaining)."""
    remaining = amount
    allocations = []
    for transaction in transactions:
        if remaining <= 0:
            break
        due = outstanding(transaction)
        if due <= 0:
            continue
        allocated = min(remaining, due)
        apply(transaction, allocated)
        allocations.append((transaction, allocated))
        remaining -= allocated
    return allocations, remaining


def _fifo_order(query):
    return query.order_by(ChequeTransaction.date.asc(), ChequeTransaction.transaction_id.asc())


class PaymentAllocator:
    """Records money movements and applies them to open transactions, oldest first."""

    @staticmethod
    def record_customer_deposit(data):
        require_fields(data, ['customer_id', 'amount'])
        customer = ChequeLedger.get_customer(parse_int(data.get('customer_id'), 'customer_id'))
        deposit = CustomerDeposit(
            customer_id=customer.customer_id,
            amount=_positive_amount(data.get('amount')),
            notes=data.get('notes')
        )
        deposit.date = parse_date(data.get('date')) or date.today()
        db.session.add(deposit)
        db.session.flush()

        transactions = _fifo_order(ChequeTransaction.query.filter(
            ChequeTransaction.customer_id == customer.customer_id,
            ChequeTransaction.net_payable_to_customer > ChequeTransaction.paid_to_customer
        )).all()

        def apply(transaction, allocated):
            transaction.paid_to_customer = (transaction.paid_to_customer or ZERO) + allocated

        allocations, remaining = allocate_fifo(
            deposit.amount, transactions, lambda t: t.remaining_to_customer, apply
        )
        for transaction, allocated in allocations:
            db.session.add(CustomerDepositAllocation(
                deposit_id=deposit.deposit_id,
                transaction_id=transaction.transaction_id,
                amount=allocated
            ))
        deposit.fully_allocated = remaining <= 0

        db.session.commit()
        record_audit_log('create', 'customer_deposits', deposit.deposit_id, None, deposit.to_dict())
        logger.info(f"Deposit {deposit.deposit_id} allocated to {len(allocations)} transactions")
        return deposit

    @staticmethod
    def record_vendor_payment(data):
        require_fields(data, ['vendor_id', 'amount'])
        vendor = ChequeLedger.get_vendor(str(data.get('vendor_id')))
        payment = VendorPayment(
            vendor_id=vendor.vendor_id,
            amount=_positive_amount(data.get('amount')),
            notes=data.get('notes')
        )
        payment.date = parse_date(data.get('date')) or date.today()
        db.session.add(payment)
        db.session.flush()

        transactions = _fifo_order(ChequeTransaction.query.filter(
            ChequeTransaction.vendor_id == vendor.vendor_id,
            ChequeTransaction.amount_to_receive_from_vendor > ChequeTransaction.received_from_vendor
        )).all()

        def apply(transaction, allocated):
            transaction.received_from_vendor = (transaction.received_from_vendor or ZERO) + allocated

        allocations, remaining = allocate_fifo(
            payment.amount, transactions, lambda t: t.remaining_from_vendor, apply
        )
        for transaction, allocated in allocations:
            db.session.add(VendorPaymentAllocation(
                payment_id=payment.payment_id,
                transaction_id=transaction.transaction_id,
                amount=allocated
            ))
        payment.fully_allocated = remaining <= 0

        db.session.commit()
        record_audit_log('create', 'vendor_payments', payment.payment_id, None, payment.to_dict())
        logger.info(f"Vendor payment {payment.payment_id} allocated to {len(allocations)} transactions")
        return payment

    @staticmethod
    def record_profit_withdrawal(data):
        require_fields(data, ['amount'])
        withdrawal = ProfitWithdrawal(
            amount=_positive_amount(data.get('amount')),
            notes=data.get('notes')
        )
        withdrawal.date = parse_date(data.get('date')) or date.today()
        db.session.add(withdrawal)
        db.session.flush()

        transactions = _fifo_order(ChequeTransaction.query.filter(
            ChequeTransaction.profit > ChequeTransaction.profit_withdrawn
        )).all()

        def apply(transaction, allocated):
            transaction.profit_withdrawn = (transaction.profit_withdrawn or ZERO) + allocated

        allocations, remaining = allocate_fifo(
            withdrawal.amount, transactions, lambda t: t.unrealized_profit, apply
        )
        for transaction, allocated in allocations:
            db.session.add(ProfitWithdrawalAllocation(
                withdrawal_id=withdrawal.withdrawal_id,
                transaction_id=transaction.transaction_id,
                amount=allocated
            ))
        withdrawal.fully_allocated = remaining <= 0

        db.session.commit()
        record_audit_log('create', 'profit_withdrawals', withdrawal.withdrawal_id, None, withdrawal.to_dict())
        return withdrawal

    # ======================= Listings =======================

    @staticmethod
    def list_customer_deposits(customer_id=None):
        query = CustomerDeposit.query
        if customer_id is not None:
            query = query.filter_by(customer_id=customer_id)
        return query.order_by(CustomerDeposit.date.desc(), CustomerDeposit.deposit_id.desc()).all()

    @staticmethod
    def list_vendor_payments(vendor_id=None):
        query = VendorPayment.query
        if vendor_id:
            query = query.filter_by(vendor_id=vendor_id)
        return query.order_by(VendorPayment.date.desc(), VendorPayment.payment_id.desc()).all()

    @staticmethod
    def list_profit_withdrawals():
        return ProfitWithdrawal.query.order_by(
            ProfitWithdrawal.date.desc(), ProfitWithdrawal.withdrawal_id.desc()
        ).all()

    @staticmethod
    def allocation_details(record):
        data = record.to_dict()
        data['allocations'] = [{
            'allocation_id': allocation.allocation_id,
            'transaction_id': allocation.transaction_id,
            'cheque_number': allocation.transaction.cheque_number if allocation.transaction else None,
            'amount': f"{allocation.amount:.2f}",
        } for allocation in record.allocations]
        return data

    @staticmethod
    def get_record(model, record_id, label):
        record = db.session.get(model, record_id)
        if not record:
            raise NotFoundError(f'{label} not found')
        return record


# ======================= API routes =======================

def register_payment_routes(app):

    @app.route('/api/deposits')
    @login_required
    @permission_required('view')
    def get_deposits():
        customer_id = parse_int(request.args.get('customer_id'), 'customer_id')
        deposits = PaymentAllocator.list_customer_deposits(customer_id)
        return jsonify({'success': True, 'data': [d.to_dict() for d in deposits]})

    @app.route('/api/deposits', methods=['POST'])
    @login_required
    @permission_required('create')
    def create_deposit():
        deposit = PaymentAllocator.record_customer_deposit(request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': PaymentAllocator.allocation_details(deposit),
                        'message': 'Deposit recorded'}), 201

    @app.route('/api/deposits/<int:deposit_id>/allocations')
    @login_required
    @permission_required('view')
    def get_deposit_allocations(deposit_id):
        deposit = PaymentAllocator.get_record(CustomerDeposit, deposit_id, 'Deposit')
        return jsonify({'success': True, 'data': PaymentAllocator.allocation_details(deposit)})

    @app.route('/api/vendor-payments')
    @login_required
    @permission_required('view')
    def get_vendor_payments():
        payments = PaymentAllocator.list_vendor_payments(request.args.get('vendor_id'))
        return jsonify({'success': True, 'data': [p.to_dict() for p in payments]})

    @app.route('/api/vendor-payments', methods=['POST'])
    @login_required
    @permission_required('create')
    def create_vendor_payment():
        payment = PaymentAllocator.record_vendor_payment(request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': PaymentAllocator.allocation_details(payment),
                        'message': 'Vendor payment recorded'}), 201

    @app.route('/api/vendor-payments/<int:payment_id>/allocations')
    @login_required
    @permission_required('view')
    def get_vendor_payment_allocations(payment_id):
        payment = PaymentAllocator.get_record(VendorPayment, payment_id, 'Vendor payment')
        return jsonify({'success': True, 'data': PaymentAllocator.allocation_details(payment)})

    @app.route('/api/profit-withdrawals')
    @login_required
    @permission_required('view')
    def get_profit_withdrawals():
        withdrawals = PaymentAllocator.list_profit_withdrawals()
        return jsonify({'success': True, 'data': [w.to_dict() for w in withdrawals]})

    @app.route('/api/profit-withdrawals', methods=['POST'])
    @login_required
    @permission_required('create')
    def create_profit_withdrawal():
        withdrawal = PaymentAllocator.record_profit_withdrawal(request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': PaymentAllocator.allocation_details(withdrawal),
                        'message': 'Profit withdrawal recorded'}), 201

    @app.route('/api/profit-withdrawals/<int:withdrawal_id>/allocations')
    @login_required
    @permission_required('view')
    def get_profit_withdrawal_allocations(withdrawal_id):
        withdrawal = PaymentAllocator.get_record(ProfitWithdrawal, withdrawal_id, 'Profit withdrawal')
        return jsonify({'success': True, 'data': PaymentAllocator.allocation_details(withdrawal)})

    return app
