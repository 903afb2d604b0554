"""
Tests for the business summary, profit rollups and named reports.
"""

from datetime import date
from decimal import Decimal

import pytest

import modules.reports as reports
from conftest import add_transaction
from database.models import db, Customer, Vendor
from modules.payments import PaymentAllocator
from modules.reports import ReportBuilder, rollup_profit, period_key, build_summary, report_filters
from modules.utils import NotFoundError, ValidationError


def _broken_source(*args, **kwargs):
    raise RuntimeError('database is locked')


@pytest.fixture
def rivals(app, parties):
    """A second customer and vendor, each with one cheque in April."""
    with app.app_context():
        customer = Customer(customer_name='Birch Roofing', fee_percentage=Decimal('2.00'))
        vendor = Vendor(vendor_id='FAS2', vendor_name='Fast Funds', fee_percentage=Decimal('1.00'))
        db.session.add_all([customer, vendor])
        db.session.commit()
        customer_id = customer.customer_id
    add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 3, 1))
    add_transaction(app, customer_id, 'FAS2', '300.00', on=date(2024, 4, 1))
    return customer_id


class TestSummary:

    def test_empty_ledger_reports_zeroes(self, app_ctx):
        result = ReportBuilder.business_summary()

        assert result.available is True
        assert result.data['total_transactions'] == 0
        assert result.data['total_profit'] == Decimal('0')
        assert result.to_response()['data']['outstanding_balance'] == '0.00'

    def test_summary_totals(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')
        add_transaction(app, parties.customer_id, parties.vendor_id, '200.00', status='completed')
        with app.app_context():
            PaymentAllocator.record_profit_withdrawal({'amount': '1.50'})

            summary = ReportBuilder.business_summary().data

            assert summary['total_transactions'] == 2
            assert summary['total_cheque_amount'] == Decimal('300.00')
            assert summary['total_profit'] == Decimal('3.00')
            assert summary['pending_count'] == 1
            assert summary['completed_count'] == 1
            assert summary['realized_profit'] == Decimal('1.50')
            assert summary['unrealized_profit'] == Decimal('1.50')
            assert summary['outstanding_to_customers'] == Decimal('294.00')
            assert summary['total_customers'] == 1
            assert summary['total_vendors'] == 1

    def test_unreadable_source_marks_summary_unavailable(self, app_ctx, monkeypatch):
        monkeypatch.setattr(reports, 'load_transactions', _broken_source)

        result = ReportBuilder.business_summary()

        assert result.available is False
        assert result.data == build_summary([], 0, 0)
        response = result.to_response()
        assert response['success'] is True
        assert 'unavailable' in response['message']


class TestRollups:

    @pytest.mark.parametrize('period,key', [
        ('daily', '2024-03-06'),
        ('weekly', '2024-W10'),
        ('monthly', '2024-03'),
    ])
    def test_period_keys(self, period, key):
        assert period_key(date(2024, 3, 6), period) == key

    def test_weekly_buckets_carry_week_start(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 3, 4))
        add_transaction(app, parties.customer_id, parties.vendor_id, '200.00', on=date(2024, 3, 6))
        add_transaction(app, parties.customer_id, parties.vendor_id, '300.00', on=date(2024, 3, 11))
        with app.app_context():
            rows = ReportBuilder.profit_rollup('weekly').data

            assert [row['period'] for row in rows] == ['2024-W10', '2024-W11']
            assert rows[0]['week_start'] == date(2024, 3, 4)
            assert rows[0]['transaction_count'] == 2
            assert rows[0]['total_amount'] == Decimal('300.00')
            assert rows[0]['total_profit'] == Decimal('3.00')
            assert rows[1]['unrealized_profit'] == Decimal('3.00')

    def test_date_range_limits_buckets(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 1, 15))
        add_transaction(app, parties.customer_id, parties.vendor_id, '200.00', on=date(2024, 2, 15))
        with app.app_context():
            rows = ReportBuilder.profit_rollup('monthly', start_date=date(2024, 2, 1)).data

            assert [row['period'] for row in rows] == ['2024-02']
            assert 'week_start' not in rows[0]

    def test_unknown_period(self, app_ctx):
        with pytest.raises(ValidationError):
            ReportBuilder.profit_rollup('yearly')
        with pytest.raises(ValidationError):
            rollup_profit([], 'hourly')


class TestNamedReports:

    def test_catalog_lists_every_report(self):
        names = [entry['name'] for entry in ReportBuilder.catalog()]

        assert 'customer_balances' in names
        assert 'weekly_profit_summary' in names
        assert len(names) == len(reports.REPORT_CATALOG)

    def test_unknown_report(self, app_ctx):
        with pytest.raises(NotFoundError):
            ReportBuilder.named_report('tax_returns')

    def test_customer_balances_report(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')
        add_transaction(app, parties.customer_id, parties.vendor_id, '200.00')
        with app.app_context():
            PaymentAllocator.record_customer_deposit({'customer_id': parties.customer_id, 'amount': '98'})

            result = ReportBuilder.named_report('customer_balances')

            assert result.total == 1
            row = result.data[0]
            assert row['customer_name'] == 'Atlas Construction'
            assert row['total_owed'] == Decimal('294.00')
            assert row['remaining_balance'] == Decimal('196.00')

    def test_transaction_status_report(self, app, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 3, 1))
        add_transaction(app, parties.customer_id, parties.vendor_id, '200.00', on=date(2024, 3, 2))
        with app.app_context():
            PaymentAllocator.record_customer_deposit({'customer_id': parties.customer_id, 'amount': '50'})

            rows = ReportBuilder.named_report('transaction_status_report').data

            assert [row['overall_status'] for row in rows] == ['New', 'In Progress']
            assert rows[1]['customer_payment_status'] == 'Partially Paid'
            assert rows[1]['profit_status'] == 'Unrealized'

    def test_pagination(self, app, parties):
        for day in (1, 2, 3):
            add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 3, day))
        with app.app_context():
            result = ReportBuilder.named_report('customer_detailed_transactions', limit=2, offset=1)

            assert result.total == 3
            assert [row['date'] for row in result.data] == [date(2024, 3, 2), date(2024, 3, 3)]

    def test_failure_marks_report_unavailable(self, app_ctx, monkeypatch):
        monkeypatch.setattr(reports, 'load_transactions', _broken_source)

        result = ReportBuilder.named_report('profit_by_vendor')

        assert result.available is False
        assert result.data == []
        assert result.total == 0


class TestReportFilters:

    def test_customer_filter(self, app, parties, rivals):
        with app.app_context():
            result = ReportBuilder.named_report('customer_detailed_transactions',
                                                filters={'customer_id': rivals})

            assert result.total == 1
            assert {row['customer_id'] for row in result.data} == {rivals}

    def test_vendor_filter(self, app, parties, rivals):
        with app.app_context():
            rows = ReportBuilder.named_report('vendor_detailed_transactions',
                                              filters={'vendor_id': parties.vendor_id}).data

            assert [row['vendor_name'] for row in rows] == ['Quick Cash']

    def test_date_range(self, app, parties, rivals):
        with app.app_context():
            rows = ReportBuilder.named_report('monthly_profit_summary', filters={
                'start_date': date(2024, 4, 1), 'end_date': date(2024, 4, 30)
            }).data

            assert [row['period'] for row in rows] == ['2024-04']

    def test_deposit_summary_by_customer(self, app, parties, rivals):
        with app.app_context():
            PaymentAllocator.record_customer_deposit({'customer_id': parties.customer_id, 'amount': '50'})
            PaymentAllocator.record_customer_deposit({'customer_id': rivals, 'amount': '70'})

            rows = ReportBuilder.named_report('customer_deposits_summary',
                                              filters={'customer_id': rivals}).data

            assert [(row['customer_name'], row['total_amount']) for row in rows] == \
                [('Birch Roofing', Decimal('70.00'))]

    def test_parse_query_filters(self):
        filters = report_filters({'customer_id': '3', 'vendor_id': ' QUI1 ', 'start_date': '2024-03-01'})

        assert filters == {'customer_id': 3, 'vendor_id': 'QUI1', 'start_date': date(2024, 3, 1)}
        assert report_filters({}) == {}

    @pytest.mark.parametrize('args', [
        {'customer_id': 'abc'},
        {'start_date': '03/01/2024'},
        {'start_date': '2024-04-01', 'end_date': '2024-03-01'},
    ])
    def test_bad_query_filters(self, args):
        with pytest.raises(ValidationError):
            report_filters(args)


class TestReportRoutes:

    def test_filtered_report_route(self, app, user_client, parties, rivals):
        response = user_client.get('/api/report/data/customer_detailed_transactions',
                                   query_string={'customer_id': parties.customer_id})

        body = response.get_json()
        assert body['total'] == 1
        assert {row['customer_id'] for row in body['data']} == {parties.customer_id}

    def test_row_limit_setting_pages_report_data(self, app, user_client, parties):
        for day in (1, 2):
            add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 3, day))
        app.config['REPORT_ROW_LIMIT'] = 1

        body = user_client.get('/api/report/data/customer_detailed_transactions').get_json()

        assert body['total'] == 2
        assert len(body['data']) == 1
        assert 'CURRENCY' not in app.config
        assert 'REPORT_DATE_FORMAT' not in app.config

    def test_filtered_report_route_rejects_bad_dates(self, user_client):
        response = user_client.get('/api/report/data/profit_by_vendor?start_date=yesterday')

        assert response.status_code == 400

    def test_summary_route(self, user_client):
        response = user_client.get('/api/summary')

        body = response.get_json()
        assert body['success'] is True
        assert body['available'] is True
        assert body['data']['total_transactions'] == 0

    def test_report_data_route(self, app, user_client, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')

        response = user_client.get('/api/report/data/profit_by_customer')

        body = response.get_json()
        assert body['total'] == 1
        assert body['title'] == 'Profit by Customer'
        assert body['data'][0]['total_potential_profit'] == '1.00'

    def test_unknown_report_route(self, user_client):
        assert user_client.get('/api/report/data/nope').status_code == 404

    def test_weekly_route(self, app, user_client, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00', on=date(2024, 3, 6))

        response = user_client.get('/api/reports/profit/weekly')

        row = response.get_json()['data'][0]
        assert row['period'] == '2024-W10'
        assert row['week_start'] == '2024-03-04'

    def test_bad_period_route(self, user_client):
        assert user_client.get('/api/reports/profit/yearly').status_code == 400

    def test_excel_export(self, app, user_client, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')

        response = user_client.get('/api/reports/vendor_balances/export/excel')

        assert response.status_code == 200
        assert response.data[:2] == b'PK'

    def test_pdf_export(self, app, user_client, parties):
        add_transaction(app, parties.customer_id, parties.vendor_id, '100.00')

        response = user_client.get('/api/reports/outstanding_balances/export/pdf')

        assert response.status_code == 200
        assert response.data.startswith(b'%PDF')
