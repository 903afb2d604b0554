"""
Business summary, profit rollups and named reports
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
import io
import logging

from flask import current_app, send_file, jsonify, request
import pandas as pd

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet

from flask_login import login_required
from modules.auth import permission_required

from database.models import (
    db, Customer, Vendor, ChequeTransaction, CustomerDeposit, VendorPayment
)
from modules.utils import NotFoundError, ValidationError, ZERO, money_str, parse_date, parse_int


# ================= LOGGER =================
logger = logging.getLogger(__name__)

PERIODS = ('daily', 'weekly', 'monthly')


@dataclass
class ReportResult:
    """Report payload plus whether its data source could be read."""
    data: object
    available: bool = True
    error: str = None
    total: int = None
    extra: dict = field(default_factory=dict)

    def to_response(self):
        response = {'success': True, 'available': self.available, 'data': serialize(self.data)}
        if self.total is not None:
            response['total'] = self.total
        if self.error:
            response['message'] = self.error
        response.update(self.extra)
        return response


def serialize(value):
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def _d(value):
    return value if value is not None else ZERO


# ==========================================================
#                     Data access
# ==========================================================
def report_filters(args):
    """Party and date filters from a query string; absent keys are left out."""
    filters = {
        'customer_id': parse_int(args.get('customer_id'), 'customer_id'),
        'vendor_id': (args.get('vendor_id') or '').strip() or None,
        'start_date': parse_date(args.get('start_date'), 'start_date'),
        'end_date': parse_date(args.get('end_date'), 'end_date'),
    }
    if filters['start_date'] and filters['end_date'] and filters['start_date'] > filters['end_date']:
        raise ValidationError('start_date must be on or before end_date')
    return {key: value for key, value in filters.items() if value is not None}


def _filtered(model, start_date=None, end_date=None, customer_id=None, vendor_id=None):
    query = model.query
    if start_date:
        query = query.filter(model.date >= start_date)
    if end_date:
        query = query.filter(model.date <= end_date)
    if customer_id is not None and hasattr(model, 'customer_id'):
        query = query.filter(model.customer_id == customer_id)
    if vendor_id is not None and hasattr(model, 'vendor_id'):
        query = query.filter(model.vendor_id == vendor_id)
    return query


def load_transactions(start_date=None, end_date=None, customer_id=None, vendor_id=None):
    query = _filtered(ChequeTransaction, start_date, end_date, customer_id, vendor_id)
    return query.order_by(ChequeTransaction.date.asc(), ChequeTransaction.transaction_id.asc()).all()


def load_deposits(start_date=None, end_date=None, customer_id=None, vendor_id=None):
    query = _filtered(CustomerDeposit, start_date, end_date, customer_id)
    return query.order_by(CustomerDeposit.date.asc(), CustomerDeposit.deposit_id.asc()).all()


def load_payments(start_date=None, end_date=None, customer_id=None, vendor_id=None):
    query = _filtered(VendorPayment, start_date, end_date, vendor_id=vendor_id)
    return query.order_by(VendorPayment.date.asc(), VendorPayment.payment_id.asc()).all()


# ==========================================================
#                     Summary and rollups
# ==========================================================
def empty_summary():
    return build_summary([], 0, 0)


def build_summary(transactions, customer_count, vendor_count):
    summary = OrderedDict([
        ('total_transactions', 0),
        ('total_cheque_amount', ZERO),
        ('total_profit', ZERO),
        ('pending_count', 0),
        ('completed_count', 0),
        ('bounced_count', 0),
        ('total_payable_to_customers', ZERO),
        ('total_paid_to_customers', ZERO),
        ('outstanding_to_customers', ZERO),
        ('total_receivable_from_vendors', ZERO),
        ('total_received_from_vendors', ZERO),
        ('outstanding_balance', ZERO),
        ('realized_profit', ZERO),
        ('unrealized_profit', ZERO),
        ('total_customers', customer_count),
        ('total_vendors', vendor_count),
    ])

    for t in transactions:
        summary['total_transactions'] += 1
        summary['total_cheque_amount'] += _d(t.cheque_amount)
        summary['total_profit'] += _d(t.profit)
        status_key = f'{t.status}_count'
        if status_key in summary:
            summary[status_key] += 1
        summary['total_payable_to_customers'] += _d(t.net_payable_to_customer)
        summary['total_paid_to_customers'] += _d(t.paid_to_customer)
        summary['outstanding_to_customers'] += max(t.remaining_to_customer, ZERO)
        summary['total_receivable_from_vendors'] += _d(t.amount_to_receive_from_vendor)
        summary['total_received_from_vendors'] += _d(t.received_from_vendor)
        summary['outstanding_balance'] += max(t.remaining_from_vendor, ZERO)
        summary['realized_profit'] += _d(t.profit_withdrawn)
        summary['unrealized_profit'] += t.unrealized_profit

    return summary


def period_key(value, period):
    """Bucket label for a date: ISO date, ISO week (YYYY-Www) or YYYY-MM."""
    if period == 'daily':
        return value.isoformat()
    if period == 'weekly':
        iso = value.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if period == 'monthly':
        return f"{value.year}-{value.month:02d}"
    raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")


def rollup_profit(transactions, period, start_date=None, end_date=None):
    if period not in PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")
    buckets = {}
    for t in transactions:
        if start_date and t.date < start_date:
            continue
        if end_date and t.date > end_date:
            continue
        key = period_key(t.date, period)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = OrderedDict([('period', key)])
            if period == 'weekly':
                bucket['week_start'] = t.date - timedelta(days=t.date.weekday())
            bucket.update([
                ('transaction_count', 0),
                ('total_amount', ZERO),
                ('total_profit', ZERO),
                ('realized_profit', ZERO),
                ('unrealized_profit', ZERO),
            ])
            buckets[key] = bucket
        bucket['transaction_count'] += 1
        bucket['total_amount'] += _d(t.cheque_amount)
        bucket['total_profit'] += _d(t.profit)
        bucket['realized_profit'] += _d(t.profit_withdrawn)
        bucket['unrealized_profit'] += t.unrealized_profit

    return [buckets[key] for key in sorted(buckets)]


# ==========================================================
#                     Named reports
# ==========================================================
def progress_status(total, done, full_label, partial_label, none_label='Pending'):
    if _d(total) <= _d(done):
        return full_label
    if _d(done) > 0:
        return partial_label
    return none_label


def _group(transactions, key):
    groups = OrderedDict()
    for t in transactions:
        groups.setdefault(key(t), []).append(t)
    return groups


def customer_balances_report(transactions):
    rows = []
    for customer_id, items in _group(transactions, lambda t: t.customer_id).items():
        total_owed = sum((_d(t.net_payable_to_customer) for t in items), ZERO)
        total_paid = sum((_d(t.paid_to_customer) for t in items), ZERO)
        rows.append(OrderedDict([
            ('customer_id', customer_id),
            ('customer_name', items[0].customer.customer_name),
            ('total_owed', total_owed),
            ('total_paid', total_paid),
            ('remaining_balance', total_owed - total_paid),
        ]))
    return sorted(rows, key=lambda r: r['customer_name'])


def vendor_balances_report(transactions):
    rows = []
    for vendor_id, items in _group(transactions, lambda t: t.vendor_id).items():
        total_to_receive = sum((_d(t.amount_to_receive_from_vendor) for t in items), ZERO)
        total_received = sum((_d(t.received_from_vendor) for t in items), ZERO)
        rows.append(OrderedDict([
            ('vendor_id', vendor_id),
            ('vendor_name', items[0].vendor.vendor_name),
            ('total_to_receive', total_to_receive),
            ('total_received', total_received),
            ('pending_amount', total_to_receive - total_received),
        ]))
    return sorted(rows, key=lambda r: r['vendor_name'])


def _profit_rows(groups, id_field, name_field, name_of):
    rows = []
    for party_id, items in groups.items():
        rows.append(OrderedDict([
            (id_field, party_id),
            (name_field, name_of(items[0])),
            ('total_potential_profit', sum((_d(t.profit) for t in items), ZERO)),
            ('total_realized_profit', sum((_d(t.profit_withdrawn) for t in items), ZERO)),
            ('unrealized_profit', sum((t.unrealized_profit for t in items), ZERO)),
            ('transaction_count', len(items)),
        ]))
    return sorted(rows, key=lambda r: r['total_potential_profit'], reverse=True)


def profit_by_customer_report(transactions):
    return _profit_rows(_group(transactions, lambda t: t.customer_id), 'customer_id', 'customer_name',
                        lambda t: t.customer.customer_name)


def profit_by_vendor_report(transactions):
    return _profit_rows(_group(transactions, lambda t: t.vendor_id), 'vendor_id', 'vendor_name',
                        lambda t: t.vendor.vendor_name)


def transaction_status_report(transactions):
    rows = []
    for t in sorted(transactions, key=lambda t: (-t.date.toordinal(), t.transaction_id)):
        customer_done = _d(t.net_payable_to_customer) <= _d(t.paid_to_customer)
        vendor_done = _d(t.amount_to_receive_from_vendor) <= _d(t.received_from_vendor)
        profit_done = _d(t.profit) <= _d(t.profit_withdrawn)
        if customer_done and vendor_done and profit_done:
            overall = 'Completed'
        elif _d(t.paid_to_customer) > 0 or _d(t.received_from_vendor) > 0 or _d(t.profit_withdrawn) > 0:
            overall = 'In Progress'
        else:
            overall = 'New'
        rows.append(OrderedDict([
            ('transaction_id', t.transaction_id),
            ('date', t.date),
            ('customer_name', t.customer.customer_name),
            ('cheque_number', t.cheque_number),
            ('cheque_amount', _d(t.cheque_amount)),
            ('status', t.status),
            ('net_payable_to_customer', _d(t.net_payable_to_customer)),
            ('paid_to_customer', _d(t.paid_to_customer)),
            ('remaining_to_customer', t.remaining_to_customer),
            ('customer_payment_status', progress_status(
                t.net_payable_to_customer, t.paid_to_customer, 'Fully Paid', 'Partially Paid')),
            ('vendor_name', t.vendor.vendor_name),
            ('amount_to_receive_from_vendor', _d(t.amount_to_receive_from_vendor)),
            ('received_from_vendor', _d(t.received_from_vendor)),
            ('remaining_from_vendor', t.remaining_from_vendor),
            ('vendor_payment_status', progress_status(
                t.amount_to_receive_from_vendor, t.received_from_vendor, 'Fully Received', 'Partially Received')),
            ('profit', _d(t.profit)),
            ('profit_withdrawn', _d(t.profit_withdrawn)),
            ('unrealized_profit', t.unrealized_profit),
            ('profit_status', progress_status(
                t.profit, t.profit_withdrawn, 'Fully Realized', 'Partially Realized', 'Unrealized')),
            ('overall_status', overall),
        ]))
    return rows


def outstanding_balances_report(transactions):
    customers = OrderedDict()
    vendors = OrderedDict()
    for t in transactions:
        if t.remaining_to_customer > 0:
            name = t.customer.customer_name
            customers[name] = customers.get(name, ZERO) + t.remaining_to_customer
        if t.remaining_from_vendor > 0:
            name = t.vendor.vendor_name
            vendors[name] = vendors.get(name, ZERO) + t.remaining_from_vendor

    rows = []
    for balance_type, amounts in (('Customer Balance', customers), ('Vendor Balance', vendors)):
        for name, amount in sorted(amounts.items(), key=lambda item: item[1], reverse=True):
            rows.append(OrderedDict([('balance_type', balance_type), ('name', name),
                                     ('outstanding_amount', amount)]))
    return rows


def customer_detailed_report(transactions):
    rows = []
    for t in sorted(transactions, key=lambda t: (t.customer.customer_name, t.date, t.transaction_id)):
        rows.append(OrderedDict([
            ('customer_id', t.customer_id),
            ('customer_name', t.customer.customer_name),
            ('transaction_id', t.transaction_id),
            ('date', t.date),
            ('cheque_number', t.cheque_number),
            ('cheque_amount', _d(t.cheque_amount)),
            ('fee_percentage', _d(t.customer.fee_percentage)),
            ('customer_fee', _d(t.customer_fee)),
            ('net_payable_to_customer', _d(t.net_payable_to_customer)),
            ('paid_to_customer', _d(t.paid_to_customer)),
            ('remaining_balance', t.remaining_to_customer),
            ('payment_status', progress_status(
                t.net_payable_to_customer, t.paid_to_customer, 'Fully Paid', 'Partially Paid')),
        ]))
    return rows


def vendor_detailed_report(transactions):
    rows = []
    for t in sorted(transactions, key=lambda t: (t.vendor.vendor_name, t.date, t.transaction_id)):
        rows.append(OrderedDict([
            ('vendor_id', t.vendor_id),
            ('vendor_name', t.vendor.vendor_name),
            ('transaction_id', t.transaction_id),
            ('date', t.date),
            ('cheque_number', t.cheque_number),
            ('cheque_amount', _d(t.cheque_amount)),
            ('fee_percentage', _d(t.vendor.fee_percentage)),
            ('vendor_fee', _d(t.vendor_fee)),
            ('amount_to_receive_from_vendor', _d(t.amount_to_receive_from_vendor)),
            ('received_from_vendor', _d(t.received_from_vendor)),
            ('remaining_balance', t.remaining_from_vendor),
            ('payment_status', progress_status(
                t.amount_to_receive_from_vendor, t.received_from_vendor, 'Fully Received', 'Partially Received')),
        ]))
    return rows


def _money_summary(records, id_field, name_field, party_of):
    groups = OrderedDict()
    for record in records:
        party_id, party_name = party_of(record)
        key = (party_name, party_id, f"{record.date.year}-{record.date.month:02d}")
        groups.setdefault(key, []).append(record)

    rows = []
    for (party_name, party_id, month) in sorted(groups):
        items = groups[(party_name, party_id, month)]
        rows.append(OrderedDict([
            (id_field, party_id),
            (name_field, party_name),
            ('month', month),
            ('count', len(items)),
            ('total_amount', sum((_d(r.amount) for r in items), ZERO)),
            ('fully_allocated_amount', sum((_d(r.amount) for r in items if r.fully_allocated), ZERO)),
            ('not_fully_allocated_amount', sum((_d(r.amount) for r in items if not r.fully_allocated), ZERO)),
        ]))
    return rows


def deposits_summary_report(deposits):
    return _money_summary(deposits, 'customer_id', 'customer_name',
                          lambda d: (d.customer_id, d.customer.customer_name))


def payments_summary_report(payments):
    return _money_summary(payments, 'vendor_id', 'vendor_name',
                          lambda p: (p.vendor_id, p.vendor.vendor_name))


def _from_transactions(builder):
    return lambda filters: builder(load_transactions(**filters))


def _rollup(period):
    return lambda filters: rollup_profit(load_transactions(**filters), period,
                                         filters.get('start_date'), filters.get('end_date'))


REPORT_CATALOG = OrderedDict([
    ('customer_balances', ('Customer Balances', _from_transactions(customer_balances_report))),
    ('vendor_balances', ('Vendor Balances', _from_transactions(vendor_balances_report))),
    ('daily_profit_summary', ('Daily Profit Summary', _rollup('daily'))),
    ('weekly_profit_summary', ('Weekly Profit Summary', _rollup('weekly'))),
    ('monthly_profit_summary', ('Monthly Profit Summary', _rollup('monthly'))),
    ('profit_by_customer', ('Profit by Customer', _from_transactions(profit_by_customer_report))),
    ('profit_by_vendor', ('Profit by Vendor', _from_transactions(profit_by_vendor_report))),
    ('transaction_status_report', ('Transaction Status', _from_transactions(transaction_status_report))),
    ('outstanding_balances', ('Outstanding Balances', _from_transactions(outstanding_balances_report))),
    ('customer_detailed_transactions', ('Customer Detailed Transactions',
                                        _from_transactions(customer_detailed_report))),
    ('vendor_detailed_transactions', ('Vendor Detailed Transactions',
                                      _from_transactions(vendor_detailed_report))),
    ('customer_deposits_summary', ('Customer Deposits Summary',
                                   lambda filters: deposits_summary_report(load_deposits(**filters)))),
    ('vendor_payments_summary', ('Vendor Payments Summary',
                                 lambda filters: payments_summary_report(load_payments(**filters)))),
])


# ==========================================================
#                     Report Builder
# ==========================================================
class ReportBuilder:
    """Report reads that degrade to empty results instead of raising."""

    @staticmethod
    def _unavailable(empty, name, e):
        db.session.rollback()
        logger.error(f"Error building {name}: {e}")
        return ReportResult(data=empty, available=False, error=f'{name} is temporarily unavailable')

    @staticmethod
    def business_summary():
        try:
            summary = build_summary(load_transactions(), Customer.query.count(), Vendor.query.count())
            return ReportResult(data=summary)
        except Exception as e:
            return ReportBuilder._unavailable(empty_summary(), 'business summary', e)

    @staticmethod
    def profit_rollup(period, start_date=None, end_date=None):
        if period not in PERIODS:
            raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")
        try:
            rows = rollup_profit(load_transactions(start_date, end_date), period, start_date, end_date)
            return ReportResult(data=rows)
        except Exception as e:
            return ReportBuilder._unavailable([], f'{period} profit summary', e)

    @staticmethod
    def catalog():
        return [{'name': name, 'title': title} for name, (title, _) in REPORT_CATALOG.items()]

    @staticmethod
    def named_report(name, limit=None, offset=0, filters=None):
        if name not in REPORT_CATALOG:
            raise NotFoundError(f'Unknown report: {name}')
        title, builder = REPORT_CATALOG[name]
        try:
            rows = builder(filters or {})
        except Exception as e:
            result = ReportBuilder._unavailable([], title, e)
            result.total = 0
            return result

        total = len(rows)
        end = offset + limit if limit else None
        return ReportResult(data=rows[offset:end], total=total, extra={'title': title})


# ==========================================================
#                   Excel / PDF exports
# ==========================================================
def _export_value(value):
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


class ExcelReportGenerator:

    @staticmethod
    def generate(name, filters=None):
        try:
            result = ReportBuilder.named_report(name, filters=filters)
            if not result.available:
                return None

            df = pd.DataFrame([{k: _export_value(v) for k, v in row.items()} for row in result.data])
            output = io.BytesIO()

            with pd.ExcelWriter(output, engine='openpyxl') as writer:
                df.to_excel(writer, index=False, sheet_name=REPORT_CATALOG[name][0][:31])

            output.seek(0)
            return output

        except NotFoundError:
            raise
        except Exception as e:
            logger.error(f"Excel export error for {name}: {e}")
            return None


class PDFReportGenerator:

    @staticmethod
    def cell(value):
        if isinstance(value, Decimal):
            return f"{value:,.2f}"
        if hasattr(value, 'isoformat'):
            return value.isoformat()
        return '' if value is None else str(value)

    @staticmethod
    def generate(name, filters=None):
        try:
            result = ReportBuilder.named_report(name, filters=filters)
            if not result.available:
                return None

            title = REPORT_CATALOG[name][0]
            buffer = io.BytesIO()
            doc = SimpleDocTemplate(buffer, pagesize=landscape(A4))
            styles = getSampleStyleSheet()
            story = [
                Paragraph(current_app.config.get('COMPANY_NAME', ''), styles['Heading1']),
                Paragraph(title, styles['Heading2']),
                Spacer(1, 20),
            ]

            if result.data:
                headers = list(result.data[0].keys())
                table_data = [[h.replace('_', ' ').title() for h in headers]]
                for row in result.data:
                    table_data.append([PDFReportGenerator.cell(row[h]) for h in headers])

                table = Table(table_data, repeatRows=1)
                table.setStyle(TableStyle([
                    ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
                    ('FONTSIZE', (0, 0), (-1, -1), 7),
                    ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey)
                ]))
                story.append(table)
            else:
                story.append(Paragraph('No data', styles['Normal']))

            doc.build(story)
            buffer.seek(0)
            return buffer

        except NotFoundError:
            raise
        except Exception as e:
            logger.error(f"PDF export error for {name}: {e}")
            return None


# ==========================================================
#                       API ROUTES
# ==========================================================
def register_report_routes(app):

    @app.route('/api/summary')
    @login_required
    @permission_required('view')
    def get_summary():
        return jsonify(ReportBuilder.business_summary().to_response())

    @app.route('/api/reports')
    @login_required
    @permission_required('report')
    def get_report_catalog():
        return jsonify({'success': True, 'data': ReportBuilder.catalog()})

    @app.route('/api/reports/profit/<period>')
    @login_required
    @permission_required('report')
    def get_profit_rollup(period):
        result = ReportBuilder.profit_rollup(
            period,
            parse_date(request.args.get('start_date'), 'start_date'),
            parse_date(request.args.get('end_date'), 'end_date')
        )
        return jsonify(result.to_response())

    @app.route('/api/report/data/<name>')
    @login_required
    @permission_required('report')
    def get_report_data(name):
        limit = parse_int(request.args.get('limit'), 'limit',
                          default=current_app.config.get('REPORT_ROW_LIMIT', 100), minimum=1)
        offset = parse_int(request.args.get('offset'), 'offset', default=0, minimum=0)
        filters = report_filters(request.args)
        return jsonify(ReportBuilder.named_report(name, limit, offset, filters).to_response())

    @app.route('/api/reports/<name>/export/excel')
    @login_required
    @permission_required('report')
    def export_report_excel(name):
        output = ExcelReportGenerator.generate(name, report_filters(request.args))
        if not output:
            return jsonify({'success': False, 'message': 'Failed to generate Excel file'}), 500

        return send_file(
            output,
            as_attachment=True,
            download_name=f'{name}.xlsx',
            mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )

    @app.route('/api/reports/<name>/export/pdf')
    @login_required
    @permission_required('report')
    def export_report_pdf(name):
        pdf = PDFReportGenerator.generate(name, report_filters(request.args))
        if not pdf:
            return jsonify({'success': False, 'message': 'Failed to generate PDF'}), 500

        return send_file(
            pdf,
            as_attachment=True,
            download_name=f'{name}.pdf',
            mimetype='application/pdf'
        )

    return app
