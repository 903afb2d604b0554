from datetime import datetime, date
from decimal import Decimal
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

USER_ROLES = ('superuser', 'admin', 'user')
TRANSACTION_STATUSES = ('pending', 'completed', 'bounced')

MONEY = db.Numeric(10, 2)
PERCENT = db.Numeric(5, 2)
ZERO = Decimal('0.00')


def _money(value):
    return f"{Decimal(value or 0):.2f}"


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'users'
    user_id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')  # superuser, admin, user
    first_name = db.Column(db.String(255))
    last_name = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    conversations = db.relationship('UserConversation', backref='user', lazy=True,
                                    cascade='all, delete-orphan')

    def get_id(self):
        return str(self.user_id)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self):
        return ' '.join(part for part in (self.first_name, self.last_name) if part) or self.username

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'is_active': bool(self.is_active),
            'last_login': _iso(self.last_login),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.username}>'


class UserConversation(db.Model):
    __tablename__ = 'user_conversations'
    conversation_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False, index=True)
    title = db.Column(db.String(255), default='New Conversation')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'conversation_id': self.conversation_id,
            'user_id': self.user_id,
            'title': self.title,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Customer(db.Model):
    __tablename__ = 'customers'
    customer_id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(255), nullable=False, index=True)
    contact_info = db.Column(db.String(255))
    fee_percentage = db.Column(PERCENT, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = db.relationship('ChequeTransaction', backref='customer', lazy='dynamic')
    deposits = db.relationship('CustomerDeposit', backref='customer', lazy='dynamic')

    def to_dict(self):
        return {
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'contact_info': self.contact_info,
            'fee_percentage': _money(self.fee_percentage),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Customer {self.customer_id}: {self.customer_name}>'


class Vendor(db.Model):
    __tablename__ = 'vendors'
    vendor_id = db.Column(db.String(20), primary_key=True)
    vendor_name = db.Column(db.String(255), nullable=False, index=True)
    contact_info = db.Column(db.String(255))
    fee_percentage = db.Column(PERCENT, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = db.relationship('ChequeTransaction', backref='vendor', lazy='dynamic')
    payments = db.relationship('VendorPayment', backref='vendor', lazy='dynamic')

    def to_dict(self):
        return {
            'vendor_id': self.vendor_id,
            'vendor_name': self.vendor_name,
            'contact_info': self.contact_info,
            'fee_percentage': _money(self.fee_percentage),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Vendor {self.vendor_id}: {self.vendor_name}>'


class ChequeTransaction(db.Model):
    __tablename__ = 'cheque_transactions'
    transaction_id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.customer_id'), nullable=False, index=True)
    vendor_id = db.Column(db.String(20), db.ForeignKey('vendors.vendor_id'), nullable=False, index=True)
    cheque_number = db.Column(db.String(50), nullable=False, index=True)
    cheque_amount = db.Column(MONEY, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, completed, bounced

    # Calculated by FeeCalculator, never written by callers
    customer_fee = db.Column(MONEY, nullable=False)
    net_payable_to_customer = db.Column(MONEY, nullable=False)
    vendor_fee = db.Column(MONEY, nullable=False)
    amount_to_receive_from_vendor = db.Column(MONEY, nullable=False)
    profit = db.Column(MONEY, nullable=False)

    # Running totals, only increased by allocations
    paid_to_customer = db.Column(MONEY, nullable=False, default=ZERO)
    received_from_vendor = db.Column(MONEY, nullable=False, default=ZERO)
    profit_withdrawn = db.Column(MONEY, nullable=False, default=ZERO)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def remaining_to_customer(self):
        return (self.net_payable_to_customer or ZERO) - (self.paid_to_customer or ZERO)

    @property
    def remaining_from_vendor(self):
        return (self.amount_to_receive_from_vendor or ZERO) - (self.received_from_vendor or ZERO)

    @property
    def unrealized_profit(self):
        return (self.profit or ZERO) - (self.profit_withdrawn or ZERO)

    def to_dict(self, with_names=False):
        data = {
            'transaction_id': self.transaction_id,
            'date': _iso(self.date),
            'customer_id': self.customer_id,
            'vendor_id': self.vendor_id,
            'cheque_number': self.cheque_number,
            'cheque_amount': _money(self.cheque_amount),
            'status': self.status,
            'customer_fee': _money(self.customer_fee),
            'net_payable_to_customer': _money(self.net_payable_to_customer),
            'vendor_fee': _money(self.vendor_fee),
            'amount_to_receive_from_vendor': _money(self.amount_to_receive_from_vendor),
            'profit': _money(self.profit),
            'paid_to_customer': _money(self.paid_to_customer),
            'received_from_vendor': _money(self.received_from_vendor),
            'profit_withdrawn': _money(self.profit_withdrawn),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if with_names:
            data['customer'] = {'customer_name': self.customer.customer_name if self.customer else None}
            data['vendor'] = {'vendor_name': self.vendor.vendor_name if self.vendor else None}
        return data

    def __repr__(self):
        return f'<ChequeTransaction {self.transaction_id}: {self.cheque_number}>'


class CustomerDeposit(db.Model):
    __tablename__ = 'customer_deposits'
    deposit_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.customer_id'), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, default=date.today)
    amount = db.Column(MONEY, nullable=False)
    fully_allocated = db.Column(db.Boolean, default=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    allocations = db.relationship('CustomerDepositAllocation', backref='deposit', lazy=True,
                                  cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'deposit_id': self.deposit_id,
            'customer_id': self.customer_id,
            'date': _iso(self.date),
            'amount': _money(self.amount),
            'fully_allocated': bool(self.fully_allocated),
            'notes': self.notes,
            'allocated_amount': _money(sum((a.amount for a in self.allocations), ZERO)),
        }


class VendorPayment(db.Model):
    __tablename__ = 'vendor_payments'
    payment_id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.String(20), db.ForeignKey('vendors.vendor_id'), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, default=date.today)
    amount = db.Column(MONEY, nullable=False)
    fully_allocated = db.Column(db.Boolean, default=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    allocations = db.relationship('VendorPaymentAllocation', backref='payment', lazy=True,
                                  cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'payment_id': self.payment_id,
            'vendor_id': self.vendor_id,
            'date': _iso(self.date),
            'amount': _money(self.amount),
            'fully_allocated': bool(self.fully_allocated),
            'notes': self.notes,
            'allocated_amount': _money(sum((a.amount for a in self.allocations), ZERO)),
        }


class ProfitWithdrawal(db.Model):
    __tablename__ = 'profit_withdrawals'
    withdrawal_id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, default=date.today)
    amount = db.Column(MONEY, nullable=False)
    fully_allocated = db.Column(db.Boolean, default=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    allocations = db.relationship('ProfitWithdrawalAllocation', backref='withdrawal', lazy=True,
                                  cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'withdrawal_id': self.withdrawal_id,
            'date': _iso(self.date),
            'amount': _money(self.amount),
            'fully_allocated': bool(self.fully_allocated),
            'notes': self.notes,
            'allocated_amount': _money(sum((a.amount for a in self.allocations), ZERO)),
        }


class CustomerDepositAllocation(db.Model):
    __tablename__ = 'customer_deposit_allocations'
    allocation_id = db.Column(db.Integer, primary_key=True)
    deposit_id = db.Column(db.Integer, db.ForeignKey('customer_deposits.deposit_id'), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('cheque_transactions.transaction_id'), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    transaction = db.relationship('ChequeTransaction')


class VendorPaymentAllocation(db.Model):
    __tablename__ = 'vendor_payment_allocations'
    allocation_id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey('vendor_payments.payment_id'), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('cheque_transactions.transaction_id'), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    transaction = db.relationship('ChequeTransaction')


class ProfitWithdrawalAllocation(db.Model):
    __tablename__ = 'profit_withdrawal_allocations'
    allocation_id = db.Column(db.Integer, primary_key=True)
    withdrawal_id = db.Column(db.Integer, db.ForeignKey('profit_withdrawals.withdrawal_id'), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('cheque_transactions.transaction_id'), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    transaction = db.relationship('ChequeTransaction')


class AIMessage(db.Model):
    __tablename__ = 'ai_messages'
    message_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.user_id', ondelete='SET NULL'), index=True)
    conversation_id = db.Column(db.String(100), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)  # user, assistant
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'message_id': self.message_id,
            'user_id': self.user_id,
            'conversation_id': self.conversation_id,
            'role': self.role,
            'content': self.content,
            'created_at': _iso(self.created_at),
        }


class TelegramUser(db.Model):
    __tablename__ = 'telegram_users'
    telegram_id = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False, index=True)
    username = db.Column(db.String(255))
    first_name = db.Column(db.String(255))
    last_name = db.Column(db.String(255))
    role = db.Column(db.String(20))
    last_activity = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('telegram_accounts', cascade='all, delete-orphan'))


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.user_id', ondelete='SET NULL'), index=True)
    action = db.Column(db.String(100), nullable=False, index=True)  # create, update, delete, login, logout
    table_name = db.Column(db.String(50), index=True)
    record_id = db.Column(db.String(50), index=True)
    old_values = db.Column(db.Text)
    new_values = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f'<AuditLog {self.action} on {self.table_name}>'
