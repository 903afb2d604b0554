"""
Pytest fixtures for the cheque ledger test suite.

Provides:
- An application built from TestingConfig on in-memory SQLite
- Test clients logged in as each role
- Seeded customers, vendors and transactions
- A fake OpenAI client installed through app.extensions
"""

import json
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from config import TestingConfig
from database.models import db, User, Customer, Vendor, ChequeTransaction
from modules.fees import FeeCalculator

PASSWORD = 'password123'


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(app, username, role='user', password=PASSWORD, is_active=True):
    with app.app_context():
        user = User(username=username, email=f'{username}@example.com', role=role, is_active=is_active)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.user_id


def login(client, username, password=PASSWORD):
    response = client.post('/api/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def superuser_id(app):
    with app.app_context():
        return User.query.filter_by(username=TestingConfig.DEFAULT_SUPERUSER_USERNAME).first().user_id


@pytest.fixture
def admin_id(app):
    return create_user(app, 'alice', role='admin')


@pytest.fixture
def user_id(app):
    return create_user(app, 'bob', role='user')


@pytest.fixture
def superuser_client(app, superuser_id):
    return login(app.test_client(), TestingConfig.DEFAULT_SUPERUSER_USERNAME,
                 TestingConfig.DEFAULT_SUPERUSER_PASSWORD)


@pytest.fixture
def admin_client(app, admin_id):
    return login(app.test_client(), 'alice')


@pytest.fixture
def user_client(app, user_id):
    return login(app.test_client(), 'bob')


@pytest.fixture
def parties(app):
    """One customer at 2% and one vendor at 1%."""
    with app.app_context():
        customer = Customer(customer_name='Atlas Construction', contact_info='555-0100',
                            fee_percentage=Decimal('2.00'))
        vendor = Vendor(vendor_id='QUI1', vendor_name='Quick Cash', contact_info='555-0200',
                        fee_percentage=Decimal('1.00'))
        db.session.add_all([customer, vendor])
        db.session.commit()
        return SimpleNamespace(customer_id=customer.customer_id, vendor_id=vendor.vendor_id)


def add_transaction(app, customer_id, vendor_id, amount, on=None, cheque_number=None,
                    customer_pct='2.00', vendor_pct='1.00', status='pending'):
    with app.app_context():
        breakdown = FeeCalculator.calculate(amount, customer_pct, vendor_pct)
        transaction = ChequeTransaction(
            customer_id=customer_id,
            vendor_id=vendor_id,
            cheque_number=cheque_number or f'CHQ-{amount}',
            date=on or date(2024, 3, 1),
            status=status,
            **breakdown
        )
        db.session.add(transaction)
        db.session.commit()
        return transaction.transaction_id


# ======================= Fake OpenAI =======================

class FakeCompletions:

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError('no scripted response left')
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeTranscriptions:

    def __init__(self, text):
        self.text = text
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(text=self.text)


class FakeOpenAI:

    def __init__(self, responses=(), transcript=''):
        self.chat = SimpleNamespace(completions=FakeCompletions(responses))
        self.audio = SimpleNamespace(transcriptions=FakeTranscriptions(transcript))

    @property
    def calls(self):
        return self.chat.completions.calls


def chat_response(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def tool_call(call_id, name, arguments):
    return SimpleNamespace(
        id=call_id,
        type='function',
        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
    )


@pytest.fixture
def fake_openai(app):
    def install(*responses, transcript=''):
        client = FakeOpenAI(responses, transcript)
        app.extensions['openai_client'] = client
        return client
    return install
