from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import logging

from flask import request, has_request_context
from flask_login import current_user

from database.models import AuditLog, db

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


class LedgerError(Exception):
    """Base error carrying the HTTP status it maps to."""
    status_code = 400

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationError(LedgerError):
    status_code = 400


class PermissionDeniedError(LedgerError):
    status_code = 403


class NotFoundError(LedgerError):
    status_code = 404


class ConflictError(LedgerError):
    status_code = 409


class ServiceUnavailableError(LedgerError):
    status_code = 503


def to_decimal(value, field='amount'):
    """Parse a JSON number or numeric string into a Decimal."""
    if value is None or value == '' or isinstance(value, bool):
        raise ValidationError(f'{field} is required')
    try:
        result = Decimal(str(value).replace(',', '').strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not result.is_finite():
        raise ValidationError(f'{field} must be a number')
    return result


def to_money(value):
    """Round to the cent, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value):
    return f"{to_money(value or ZERO):.2f}"


def parse_date(value, field='date'):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field} must use the YYYY-MM-DD format')


def parse_int(value, field, default=None, minimum=None):
    if value is None or value == '':
        return default
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer')
    if minimum is not None and result < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    return result


TRUE_VALUES = ('true', '1', 'yes', 'on')
FALSE_VALUES = ('false', '0', 'no', 'off')


def parse_bool(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
    raise ValidationError(f'{field} must be true or false')


def require_fields(data, fields):
    missing = [field for field in fields if data.get(field) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}",
                              errors={field: 'required' for field in missing})


def record_audit_log(action, table_name=None, record_id=None, old_values=None, new_values=None):
    """Write an audit row; failures are logged and swallowed."""
    try:
        in_request = has_request_context()
        user_id = None
        if in_request and current_user and current_user.is_authenticated:
            user_id = current_user.user_id
        audit_log = AuditLog(
            user_id=user_id,
            action=action,
            table_name=table_name,
            record_id=str(record_id) if record_id is not None else None,
            old_values=str(old_values) if old_values else None,
            new_values=str(new_values) if new_values else None,
            ip_address=request.remote_addr if in_request else None,
            user_agent=request.user_agent.string if in_request and request.user_agent else None
        )
        db.session.add(audit_log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error recording audit log: {e}")
