"""
Customers, vendors and cheque transactions
"""

import re
import logging

from flask import jsonify, request
from flask_login import login_required

from database.models import (
    db, Customer, Vendor, ChequeTransaction, TRANSACTION_STATUSES,
    CustomerDepositAllocation, VendorPaymentAllocation, ProfitWithdrawalAllocation
)
from modules.auth import permission_required
from modules.fees import FeeCalculator
from modules.utils import (
    record_audit_log, ValidationError, NotFoundError, ConflictError,
    to_decimal, parse_date, parse_int, require_fields
)

logger = logging.getLogger(__name__)

CALCULATED_FIELDS = ('customer_fee', 'net_payable_to_customer', 'vendor_fee',
                     'amount_to_receive_from_vendor', 'profit')


def _fee_percentage(value):
    pct = to_decimal(value, 'fee_percentage')
    if pct < 0 or pct > 100:
        raise ValidationError('fee_percentage must be between 0 and 100')
    return pct


def _name(data, field):
    value = (data.get(field) or '').strip()
    if not value:
        raise ValidationError(f'{field} is required')
    return value


def vendor_code_prefix(vendor_name):
    """First three letters of the name, upper-cased and padded with X."""
    letters = re.sub(r'[^A-Z]', '', (vendor_name or '').upper())[:3]
    if not letters:
        return 'VND'
    return letters.ljust(3, 'X')


def generate_vendor_id(vendor_name):
    prefix = vendor_code_prefix(vendor_name)
    sequence = Vendor.query.count() + 1
    vendor_id = f"{prefix}{sequence}"
    while db.session.get(Vendor, vendor_id) is not None:
        sequence += 1
        vendor_id = f"{prefix}{sequence}"
    return vendor_id


class ChequeLedger:
    """Customer, vendor and transaction repository."""

    # ======================= Customers =======================

    @staticmethod
    def list_customers():
        return Customer.query.order_by(Customer.customer_name).all()

    @staticmethod
    def get_customer(customer_id):
        customer = db.session.get(Customer, customer_id)
        if not customer:
            raise NotFoundError('Customer not found')
        return customer

    @staticmethod
    def create_customer(data):
        customer = Customer(
            customer_name=_name(data, 'customer_name'),
            contact_info=data.get('contact_info'),
            fee_percentage=_fee_percentage(data.get('fee_percentage'))
        )
        db.session.add(customer)
        db.session.commit()
        record_audit_log('create', 'customers', customer.customer_id, None, customer.to_dict())
        return customer

    @staticmethod
    def update_customer(customer_id, data):
        customer = ChequeLedger.get_customer(customer_id)
        old_data = customer.to_dict()

        if 'customer_name' in data:
            customer.customer_name = _name(data, 'customer_name')
        if 'contact_info' in data:
            customer.contact_info = data.get('contact_info')
        if 'fee_percentage' in data:
            customer.fee_percentage = _fee_percentage(data.get('fee_percentage'))

        db.session.commit()
        record_audit_log('update', 'customers', customer.customer_id, old_data, customer.to_dict())
        return customer

    @staticmethod
    def delete_customer(customer_id):
        customer = ChequeLedger.get_customer(customer_id)
        if customer.transactions.count() > 0:
            raise ConflictError('Cannot delete a customer that has transactions')
        if customer.deposits.count() > 0:
            raise ConflictError('Cannot delete a customer that has deposits')

        old_data = customer.to_dict()
        db.session.delete(customer)
        db.session.commit()
        record_audit_log('delete', 'customers', customer_id, old_data, None)

    # ======================= Vendors =======================

    @staticmethod
    def list_vendors():
        return Vendor.query.order_by(Vendor.vendor_name).all()

    @staticmethod
    def get_vendor(vendor_id):
        vendor = db.session.get(Vendor, vendor_id)
        if not vendor:
            raise NotFoundError('Vendor not found')
        return vendor

    @staticmethod
    def create_vendor(data):
        vendor_name = _name(data, 'vendor_name')
        vendor = Vendor(
            vendor_id=generate_vendor_id(vendor_name),
            vendor_name=vendor_name,
            contact_info=data.get('contact_info'),
            fee_percentage=_fee_percentage(data.get('fee_percentage'))
        )
        db.session.add(vendor)
        db.session.commit()
        record_audit_log('create', 'vendors', vendor.vendor_id, None, vendor.to_dict())
        return vendor

    @staticmethod
    def update_vendor(vendor_id, data):
        vendor = ChequeLedger.get_vendor(vendor_id)
        old_data = vendor.to_dict()

        if 'vendor_name' in data:
            vendor.vendor_name = _name(data, 'vendor_name')
        if 'contact_info' in data:
            vendor.contact_info = data.get('contact_info')
        if 'fee_percentage' in data:
            vendor.fee_percentage = _fee_percentage(data.get('fee_percentage'))

        db.session.commit()
        record_audit_log('update', 'vendors', vendor.vendor_id, old_data, vendor.to_dict())
        return vendor

    @staticmethod
    def delete_vendor(vendor_id):
        vendor = ChequeLedger.get_vendor(vendor_id)
        if vendor.transactions.count() > 0:
            raise ConflictError('Cannot delete a vendor that has transactions')
        if vendor.payments.count() > 0:
            raise ConflictError('Cannot delete a vendor that has payments')

        old_data = vendor.to_dict()
        db.session.delete(vendor)
        db.session.commit()
        record_audit_log('delete', 'vendors', vendor_id, old_data, None)

    # ======================= Transactions =======================

    @staticmethod
    def preview_fees(customer_id, vendor_id, cheque_amount):
        customer = ChequeLedger.get_customer(customer_id)
        vendor = ChequeLedger.get_vendor(vendor_id)
        return FeeCalculator.calculate(cheque_amount, customer.fee_percentage, vendor.fee_percentage)

    @staticmethod
    def _validate_status(status):
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(TRANSACTION_STATUSES)}")
        return status

    @staticmethod
    def _apply_fees(transaction, breakdown):
        transaction.cheque_amount = breakdown['cheque_amount']
        for field in CALCULATED_FIELDS:
            setattr(transaction, field, breakdown[field])

    @staticmethod
    def list_transactions(customer_id=None, vendor_id=None, status=None,
                          start_date=None, end_date=None, limit=None, offset=0):
        query = ChequeTransaction.query
        if customer_id is not None:
            query = query.filter(ChequeTransaction.customer_id == customer_id)
        if vendor_id:
            query = query.filter(ChequeTransaction.vendor_id == vendor_id)
        if status:
            query = query.filter(ChequeTransaction.status == ChequeLedger._validate_status(status))
        if start_date:
            query = query.filter(ChequeTransaction.date >= start_date)
        if end_date:
            query = query.filter(ChequeTransaction.date <= end_date)

        query = query.order_by(ChequeTransaction.date.desc(), ChequeTransaction.transaction_id.desc())
        if offset:
            query = query.offset(offset)
        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def get_transaction(transaction_id):
        transaction = db.session.get(ChequeTransaction, transaction_id)
        if not transaction:
            raise NotFoundError('Transaction not found')
        return transaction

    @staticmethod
    def create_transaction(data):
        require_fields(data, ['customer_id', 'vendor_id', 'cheque_number', 'cheque_amount'])
        customer = ChequeLedger.get_customer(parse_int(data.get('customer_id'), 'customer_id'))
        vendor = ChequeLedger.get_vendor(str(data.get('vendor_id')))

        breakdown = FeeCalculator.calculate(
            data.get('cheque_amount'), customer.fee_percentage, vendor.fee_percentage
        )

        transaction = ChequeTransaction(
            customer_id=customer.customer_id,
            vendor_id=vendor.vendor_id,
            cheque_number=str(data.get('cheque_number')).strip(),
            status=ChequeLedger._validate_status(data.get('status') or 'pending')
        )
        transaction_date = parse_date(data.get('date'))
        if transaction_date:
            transaction.date = transaction_date
        ChequeLedger._apply_fees(transaction, breakdown)

        db.session.add(transaction)
        db.session.commit()
        record_audit_log('create', 'cheque_transactions', transaction.transaction_id, None,
                         transaction.to_dict())
        logger.info(f"Transaction {transaction.transaction_id} created for cheque {transaction.cheque_number}")
        return transaction

    @staticmethod
    def update_transaction(transaction_id, data):
        """Apply editable fields; fees follow amount, customer and vendor."""
        transaction = ChequeLedger.get_transaction(transaction_id)
        old_data = transaction.to_dict()

        recalculate = False
        if 'customer_id' in data:
            customer = ChequeLedger.get_customer(parse_int(data.get('customer_id'), 'customer_id'))
            recalculate = recalculate or customer.customer_id != transaction.customer_id
            transaction.customer_id = customer.customer_id
        if 'vendor_id' in data:
            vendor = ChequeLedger.get_vendor(str(data.get('vendor_id')))
            recalculate = recalculate or vendor.vendor_id != transaction.vendor_id
            transaction.vendor_id = vendor.vendor_id

        amount = transaction.cheque_amount
        if 'cheque_amount' in data:
            amount = data.get('cheque_amount')
            recalculate = True

        if 'cheque_number' in data:
            cheque_number = str(data.get('cheque_number') or '').strip()
            if not cheque_number:
                raise ValidationError('cheque_number is required')
            transaction.cheque_number = cheque_number
        if 'status' in data:
            transaction.status = ChequeLedger._validate_status(data.get('status'))
        if 'date' in data:
            transaction.date = parse_date(data.get('date')) or transaction.date

        if recalculate:
            customer = ChequeLedger.get_customer(transaction.customer_id)
            vendor = ChequeLedger.get_vendor(transaction.vendor_id)
            breakdown = FeeCalculator.calculate(amount, customer.fee_percentage, vendor.fee_percentage)
            ChequeLedger._apply_fees(transaction, breakdown)

        db.session.commit()
        record_audit_log('update', 'cheque_transactions', transaction.transaction_id, old_data,
                         transaction.to_dict())
        return transaction

    @staticmethod
    def delete_transaction(transaction_id):
        transaction = ChequeLedger.get_transaction(transaction_id)
        old_data = transaction.to_dict()

        for model in (CustomerDepositAllocation, VendorPaymentAllocation, ProfitWithdrawalAllocation):
            model.query.filter_by(transaction_id=transaction_id).delete(synchronize_session=False)

        db.session.delete(transaction)
        db.session.commit()
        record_audit_log('delete', 'cheque_transactions', transaction_id, old_data, None)


# ======================= API routes =======================

def transaction_filters(args):
    return {
        'customer_id': parse_int(args.get('customer_id'), 'customer_id'),
        'vendor_id': args.get('vendor_id') or None,
        'status': args.get('status') or None,
        'start_date': parse_date(args.get('start_date'), 'start_date'),
        'end_date': parse_date(args.get('end_date'), 'end_date'),
        'limit': parse_int(args.get('limit'), 'limit', minimum=1),
        'offset': parse_int(args.get('offset'), 'offset', default=0, minimum=0),
    }


def register_ledger_routes(app):

    # ----- customers -----

    @app.route('/api/customers')
    @login_required
    @permission_required('view')
    def get_customers():
        customers = ChequeLedger.list_customers()
        return jsonify({'success': True, 'data': [c.to_dict() for c in customers]})

    @app.route('/api/customers/<int:customer_id>')
    @login_required
    @permission_required('view')
    def get_customer(customer_id):
        return jsonify({'success': True, 'data': ChequeLedger.get_customer(customer_id).to_dict()})

    @app.route('/api/customers', methods=['POST'])
    @login_required
    @permission_required('create')
    def create_customer():
        customer = ChequeLedger.create_customer(request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': customer.to_dict(), 'message': 'Customer created'}), 201

    @app.route('/api/customers/<int:customer_id>', methods=['PUT', 'PATCH'])
    @login_required
    @permission_required('edit')
    def update_customer(customer_id):
        customer = ChequeLedger.update_customer(customer_id, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': customer.to_dict()})

    @app.route('/api/customers/<int:customer_id>', methods=['DELETE'])
    @login_required
    @permission_required('delete')
    def delete_customer(customer_id):
        ChequeLedger.delete_customer(customer_id)
        return jsonify({'success': True, 'message': 'Customer deleted'})

    # ----- vendors -----

    @app.route('/api/vendors')
    @login_required
    @permission_required('view')
    def get_vendors():
        vendors = ChequeLedger.list_vendors()
        return jsonify({'success': True, 'data': [v.to_dict() for v in vendors]})

    @app.route('/api/vendors/<vendor_id>')
    @login_required
    @permission_required('view')
    def get_vendor(vendor_id):
        return jsonify({'success': True, 'data': ChequeLedger.get_vendor(vendor_id).to_dict()})

    @app.route('/api/vendors', methods=['POST'])
    @login_required
    @permission_required('create')
    def create_vendor():
        vendor = ChequeLedger.create_vendor(request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': vendor.to_dict(), 'message': 'Vendor created'}), 201

    @app.route('/api/vendors/<vendor_id>', methods=['PUT', 'PATCH'])
    @login_required
    @permission_required('edit')
    def update_vendor(vendor_id):
        vendor = ChequeLedger.update_vendor(vendor_id, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': vendor.to_dict()})

    @app.route('/api/vendors/<vendor_id>', methods=['DELETE'])
    @login_required
    @permission_required('delete')
    def delete_vendor(vendor_id):
        ChequeLedger.delete_vendor(vendor_id)
        return jsonify({'success': True, 'message': 'Vendor deleted'})

    # ----- transactions -----

    @app.route('/api/fees/preview', methods=['POST'])
    @login_required
    @permission_required('view')
    def preview_fees():
        data = request.get_json(silent=True) or {}
        require_fields(data, ['customer_id', 'vendor_id', 'cheque_amount'])
        breakdown = ChequeLedger.preview_fees(
            parse_int(data.get('customer_id'), 'customer_id'),
            str(data.get('vendor_id')),
            data.get('cheque_amount')
        )
        return jsonify({'success': True, 'data': FeeCalculator.serialize(breakdown)})

    @app.route('/api/transactions')
    @login_required
    @permission_required('view')
    def get_transactions():
        transactions = ChequeLedger.list_transactions(**transaction_filters(request.args))
        return jsonify({'success': True, 'data': [t.to_dict(with_names=True) for t in transactions]})

    @app.route('/api/transactions/<int:transaction_id>')
    @login_required
    @permission_required('view')
    def get_transaction(transaction_id):
        transaction = ChequeLedger.get_transaction(transaction_id)
        return jsonify({'success': True, 'data': transaction.to_dict(with_names=True)})

    @app.route('/api/transactions', methods=['POST'])
    @login_required
    @permission_required('create')
    def create_transaction():
        transaction = ChequeLedger.create_transaction(request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': transaction.to_dict(with_names=True),
                        'message': 'Transaction created'}), 201

    @app.route('/api/transactions/<int:transaction_id>', methods=['PUT', 'PATCH'])
    @login_required
    @permission_required('edit')
    def update_transaction(transaction_id):
        transaction = ChequeLedger.update_transaction(transaction_id, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': transaction.to_dict(with_names=True)})

    @app.route('/api/transactions/<int:transaction_id>', methods=['DELETE'])
    @login_required
    @permission_required('delete')
    def delete_transaction(transaction_id):
        ChequeLedger.delete_transaction(transaction_id)
        return jsonify({'success': True, 'message': 'Transaction deleted'})

    return app
