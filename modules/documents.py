"""
Cheque document extraction: vision model first, Tesseract OCR as fallback
"""

import base64
import io
import json
import logging
import mimetypes
import re

from flask import current_app, jsonify, request
from flask_login import login_required
from PIL import Image
from PyPDF2 import PdfReader
import pytesseract

from database.models import Customer
from modules.assistant import AIAssistant
from modules.auth import permission_required
from modules.utils import ValidationError, ServiceUnavailableError

logger = logging.getLogger(__name__)

IMAGE_TYPES = {'image/jpeg', 'image/png', 'image/tiff'}
PDF_TYPE = 'application/pdf'

OPTION_FLAGS = ('extractChequeNumber', 'extractAmount', 'extractDate', 'autoAssignCustomer')

VISION_PROMPT = """You are an AI assistant designed to extract information from cheque images.
Extract the following information in JSON format:
- chequeNumber: the cheque number
- amount: the dollar amount
- date: the date on the cheque
- payeeName: the name of the payee (recipient)
- bankName: the bank name if visible

Return the response as a valid JSON object."""

CHEQUE_NUMBER_PATTERNS = [
    re.compile(r'check\s*#?:?\s*(\d+)', re.IGNORECASE),
    re.compile(r'cheque\s*#?:?\s*(\d+)', re.IGNORECASE),
    re.compile(r'no[.:]?\s*(\d+)', re.IGNORECASE),
]
AMOUNT_PATTERNS = [
    re.compile(r'\$\s*([\d,]+\.\d{2})'),
    re.compile(r'amount:?\s*\$?\s*([\d,]+\.\d{2})', re.IGNORECASE),
    re.compile(r'(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})'),
]
DATE_PATTERNS = [
    re.compile(r'(\d{1,2}/\d{1,2}/\d{2,4})'),
    re.compile(r'(\d{1,2}-\d{1,2}-\d{2,4})'),
    re.compile(r'(\w{3,9}\s+\d{1,2},?\s+\d{4})', re.IGNORECASE),
]


def parse_options(values, default=False):
    """Read the four extraction flags from form values ('true'/'false')."""
    options = {}
    for flag in OPTION_FLAGS:
        value = values.get(flag)
        if value is None:
            options[flag] = default
        else:
            options[flag] = str(value).strip().lower() in ('true', '1', 'yes', 'on')
    return options


def _first_match(patterns, text):
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_cheque_fields(text, options):
    result = {}
    text = text or ''
    if options.get('extractChequeNumber'):
        number = _first_match(CHEQUE_NUMBER_PATTERNS, text)
        if number:
            result['chequeNumber'] = number
    if options.get('extractAmount'):
        amount = _first_match(AMOUNT_PATTERNS, text)
        if amount:
            result['amount'] = amount.replace(',', '')
    if options.get('extractDate'):
        found = _first_match(DATE_PATTERNS, text)
        if found:
            result['date'] = found
    return result


def filter_vision_result(extracted, options):
    result = {}
    for flag, key in (('extractChequeNumber', 'chequeNumber'), ('extractAmount', 'amount'),
                      ('extractDate', 'date')):
        if options.get(flag) and extracted.get(key):
            result[key] = str(extracted[key])
    for key in ('payeeName', 'bankName'):
        if extracted.get(key):
            result[key] = str(extracted[key])
    return result


def match_customer(payee_name, customers):
    """Customer whose name equals, contains or is contained in the payee name."""
    payee = (payee_name or '').strip().lower()
    if not payee:
        return None
    for customer in customers:
        if customer.customer_name.strip().lower() == payee:
            return customer
    for customer in customers:
        name = customer.customer_name.strip().lower()
        if name and (name in payee or payee in name):
            return customer
    return None


def detect_mime_type(mimetype, filename):
    if mimetype and mimetype != 'application/octet-stream':
        return mimetype.split(';')[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename or '')
    return guessed


class DocumentProcessor:

    @staticmethod
    def extract_with_vision(data, mime_type):
        client = AIAssistant.get_client()
        image_base64 = base64.b64encode(data).decode('ascii')
        response = client.chat.completions.create(
            model=current_app.config.get('OPENAI_MODEL', 'gpt-4o'),
            messages=[
                {'role': 'system', 'content': VISION_PROMPT},
                {'role': 'user', 'content': [
                    {'type': 'text', 'text': 'Extract information from this cheque image.'},
                    {'type': 'image_url', 'image_url': {'url': f'data:{mime_type};base64,{image_base64}'}},
                ]},
            ],
            response_format={'type': 'json_object'},
            max_tokens=800,
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError('Empty response from vision model')
        return json.loads(content)

    @staticmethod
    def ocr_image(data):
        image = Image.open(io.BytesIO(data))
        return pytesseract.image_to_string(image)

    @staticmethod
    def pdf_text(data):
        reader = PdfReader(io.BytesIO(data))
        return '\n'.join((page.extract_text() or '') for page in reader.pages)

    @staticmethod
    def process(data, mime_type, options):
        if not data:
            raise ValidationError('No document uploaded')
        if mime_type not in IMAGE_TYPES and mime_type != PDF_TYPE:
            raise ValidationError('Unsupported document type. Upload a PDF, JPEG, PNG or TIFF file')

        if mime_type == PDF_TYPE:
            try:
                text = DocumentProcessor.pdf_text(data)
            except Exception as e:
                logger.error(f"Error reading PDF: {e}")
                raise ValidationError('Could not read the PDF document')
            result = {'success': True, 'source': 'pdf', 'data': extract_cheque_fields(text, options),
                      'rawText': text}
        else:
            try:
                extracted = DocumentProcessor.extract_with_vision(data, mime_type)
                result = {'success': True, 'source': 'vision', 'data': filter_vision_result(extracted, options)}
            except Exception as e:
                logger.error(f"Vision extraction failed, falling back to OCR: {e}")
                try:
                    text = DocumentProcessor.ocr_image(data)
                except Exception as ocr_error:
                    logger.error(f"OCR failed: {ocr_error}")
                    raise ServiceUnavailableError('Failed to process document')
                result = {'success': True, 'source': 'ocr', 'data': extract_cheque_fields(text, options),
                          'rawText': text}

        if options.get('autoAssignCustomer') and result['data'].get('payeeName'):
            customer = match_customer(result['data']['payeeName'], Customer.query.all())
            if customer:
                result['data']['customerId'] = customer.customer_id
                result['data']['customerName'] = customer.customer_name

        return result


def register_document_routes(app):

    @app.route('/api/process-document', methods=['POST'])
    @login_required
    @permission_required('documents')
    def process_document():
        upload = request.files.get('document')
        if upload is None or not upload.filename:
            raise ValidationError('No document uploaded')

        mime_type = detect_mime_type(upload.mimetype, upload.filename)
        allowed = current_app.config.get('ALLOWED_DOCUMENT_TYPES', IMAGE_TYPES | {PDF_TYPE})
        if mime_type not in allowed:
            raise ValidationError('Unsupported document type. Upload a PDF, JPEG, PNG or TIFF file')

        result = DocumentProcessor.process(upload.read(), mime_type, parse_options(request.form))
        return jsonify(result)

    return app
