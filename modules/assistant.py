"""
AI assistant backed by the OpenAI chat API
"""

import json
import logging
import re

from flask import current_app, jsonify, request
from flask_login import login_required, current_user
from openai import OpenAI

from database.models import db, AIMessage
from modules.auth import permission_required, check_permission, is_admin
from modules.balances import BalanceAggregator
from modules.fees import FeeCalculator
from modules.ledger import ChequeLedger
from modules.payments import PaymentAllocator
from modules.reports import ReportBuilder, serialize
from modules.utils import (
    LedgerError, ValidationError, PermissionDeniedError, ServiceUnavailableError,
    parse_date, parse_int
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an AI assistant for a cheque cashing business ledger management system called 'Cheque Ledger Pro'.
You can help users with:
1. Creating, finding, and analyzing transactions
2. Generating reports on customer and vendor activity
3. Calculating fees and profits
4. Explaining business processes

You have access to transaction data, customers, and vendors through the provided tools. Be helpful, concise, and professional.
Only create transactions or record deposits when the user clearly asks for it.

For numerical values, always format currency with a dollar sign and two decimal places."""

DATA_QUERY_PATTERN = re.compile(r'transactions|customer|vendor|summary|report|total|profit|balance', re.IGNORECASE)

FALLBACK_REPLY = "I'm sorry, I couldn't generate a response."

TOOLS = [
    {
        'type': 'function',
        'function': {
            'name': 'calculate_fees',
            'description': 'Calculate customer fee, vendor fee, net payable, receivable and profit for a cheque.',
            'parameters': {
                'type': 'object',
                'properties': {
                    'cheque_amount': {'type': 'number'},
                    'customer_fee_percentage': {'type': 'number'},
                    'vendor_fee_percentage': {'type': 'number'},
                    'customer_id': {'type': 'integer', 'description': 'Use this customer\'s fee percentage'},
                    'vendor_id': {'type': 'string', 'description': 'Use this vendor\'s fee percentage'},
                },
                'required': ['cheque_amount'],
            },
        },
    },
    {
        'type': 'function',
        'function': {
            'name': 'get_business_summary',
            'description': 'Totals for the whole business: counts, amounts, profit and outstanding balances.',
            'parameters': {'type': 'object', 'properties': {}},
        },
    },
    {
        'type': 'function',
        'function': {
            'name': 'find_transactions',
            'description': 'Search cheque transactions, newest first.',
            'parameters': {
                'type': 'object',
                'properties': {
                    'customer_id': {'type': 'integer'},
                    'vendor_id': {'type': 'string'},
                    'status': {'type': 'string', 'enum': ['pending', 'completed', 'bounced']},
                    'start_date': {'type': 'string', 'description': 'YYYY-MM-DD'},
                    'end_date': {'type': 'string', 'description': 'YYYY-MM-DD'},
                    'limit': {'type': 'integer'},
                },
            },
        },
    },
    {
        'type': 'function',
        'function': {
            'name': 'get_balance',
            'description': 'Outstanding balance for one customer or vendor.',
            'parameters': {
                'type': 'object',
                'properties': {
                    'party': {'type': 'string', 'enum': ['customer', 'vendor']},
                    'id': {'type': 'string'},
                },
                'required': ['party', 'id'],
            },
        },
    },
    {
        'type': 'function',
        'function': {
            'name': 'create_transaction',
            'description': 'Record a new cheque transaction. Fees are calculated automatically.',
            'parameters': {
                'type': 'object',
                'properties': {
                    'customer_id': {'type': 'integer'},
                    'vendor_id': {'type': 'string'},
                    'cheque_number': {'type': 'string'},
                    'cheque_amount': {'type': 'number'},
                    'date': {'type': 'string', 'description': 'YYYY-MM-DD'},
                },
                'required': ['customer_id', 'vendor_id', 'cheque_number', 'cheque_amount'],
            },
        },
    },
    {
        'type': 'function',
        'function': {
            'name': 'create_customer_deposit',
            'description': 'Record money paid out to a customer; it is applied to their oldest open transactions.',
            'parameters': {
                'type': 'object',
                'properties': {
                    'customer_id': {'type': 'integer'},
                    'amount': {'type': 'number'},
                    'date': {'type': 'string', 'description': 'YYYY-MM-DD'},
                    'notes': {'type': 'string'},
                },
                'required': ['customer_id', 'amount'],
            },
        },
    },
]

WRITE_TOOLS = {'create_transaction': 'create', 'create_customer_deposit': 'create'}


class AIAssistant:
    """Chat with tool access to the ledger."""

    @staticmethod
    def get_client():
        client = current_app.extensions.get('openai_client')
        if client is not None:
            return client

        api_key = current_app.config.get('OPENAI_API_KEY')
        if not api_key:
            raise ServiceUnavailableError('AI assistant is not configured (missing OPENAI_API_KEY)')

        client = OpenAI(api_key=api_key)
        current_app.extensions['openai_client'] = client
        return client

    @staticmethod
    def is_data_query(text):
        return bool(DATA_QUERY_PATTERN.search(text or ''))

    @staticmethod
    def history(conversation_id, limit=None, user_id=None):
        """Latest messages of a conversation, oldest first; user_id narrows to one owner."""
        limit = limit or current_app.config.get('AI_HISTORY_LIMIT', 35)
        query = AIMessage.query.filter_by(conversation_id=conversation_id)
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        messages = query.order_by(AIMessage.created_at.desc(), AIMessage.message_id.desc())\
            .limit(limit).all()
        return list(reversed(messages))

    @staticmethod
    def save_message(conversation_id, role, content, user_id=None):
        message = AIMessage(conversation_id=conversation_id, role=role, content=content, user_id=user_id)
        db.session.add(message)
        db.session.commit()
        return message

    @staticmethod
    def data_context():
        summary = ReportBuilder.business_summary()
        recent = ChequeLedger.list_transactions(limit=5)
        return (
            "Here is some recent data to help with your response:\n"
            f"Business Summary: {json.dumps(serialize(summary.data))}\n"
            f"Recent Transactions: {json.dumps([t.to_dict(with_names=True) for t in recent])}\n\n"
            "When showing transactions in your response, format them in a clear, readable way. "
            "If the user is asking about specific transactions that aren't in this data, "
            "use the find_transactions tool."
        )

    @staticmethod
    def build_messages(user_message, history):
        messages = [{'role': 'system', 'content': SYSTEM_PROMPT}]

        if AIAssistant.is_data_query(user_message):
            try:
                messages.insert(0, {'role': 'system', 'content': AIAssistant.data_context()})
            except Exception as e:
                db.session.rollback()
                logger.error(f"Error fetching data for AI context: {e}")

        context_size = current_app.config.get('AI_CONTEXT_MESSAGES', 10)
        for message in history[-context_size:]:
            messages.append({'role': message.role, 'content': message.content})

        messages.append({'role': 'user', 'content': user_message})
        return messages

    # ======================= Tools =======================

    @staticmethod
    def run_tool(name, arguments, user):
        """Run one tool call; errors come back as data for the model."""
        try:
            permission = WRITE_TOOLS.get(name, 'view')
            if not check_permission(permission, user):
                raise PermissionDeniedError(f'You do not have permission to use {name}')
            return serialize(AIAssistant._dispatch(name, arguments))
        except LedgerError as e:
            db.session.rollback()
            return {'error': e.message}
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error running assistant tool {name}: {e}")
            return {'error': f'{name} failed'}

    @staticmethod
    def _dispatch(name, args):
        if name == 'calculate_fees':
            customer_pct = args.get('customer_fee_percentage')
            vendor_pct = args.get('vendor_fee_percentage')
            if args.get('customer_id') is not None:
                customer_pct = ChequeLedger.get_customer(parse_int(args['customer_id'], 'customer_id')).fee_percentage
            if args.get('vendor_id'):
                vendor_pct = ChequeLedger.get_vendor(str(args['vendor_id'])).fee_percentage
            return FeeCalculator.calculate(args.get('cheque_amount'), customer_pct or 0, vendor_pct or 0)

        if name == 'get_business_summary':
            return ReportBuilder.business_summary().data

        if name == 'find_transactions':
            limit = min(parse_int(args.get('limit'), 'limit', default=10, minimum=1), 50)
            transactions = ChequeLedger.list_transactions(
                customer_id=parse_int(args.get('customer_id'), 'customer_id'),
                vendor_id=args.get('vendor_id') or None,
                status=args.get('status') or None,
                start_date=parse_date(args.get('start_date'), 'start_date'),
                end_date=parse_date(args.get('end_date'), 'end_date'),
                limit=limit
            )
            return [t.to_dict(with_names=True) for t in transactions]

        if name == 'get_balance':
            if args.get('party') == 'customer':
                return BalanceAggregator.customer_balance(parse_int(args.get('id'), 'id'))
            if args.get('party') == 'vendor':
                return BalanceAggregator.vendor_balance(str(args.get('id')))
            raise ValidationError("party must be 'customer' or 'vendor'")

        if name == 'create_transaction':
            return ChequeLedger.create_transaction(args).to_dict(with_names=True)

        if name == 'create_customer_deposit':
            return PaymentAllocator.allocation_details(PaymentAllocator.record_customer_deposit(args))

        raise ValidationError(f'Unknown tool: {name}')

    # ======================= Chat =======================

    @staticmethod
    def complete(messages, user):
        client = AIAssistant.get_client()
        max_rounds = current_app.config.get('AI_MAX_TOOL_ROUNDS', 5)
        model = current_app.config.get('OPENAI_MODEL', 'gpt-4o')

        for _ in range(max_rounds):
            response = client.chat.completions.create(
                model=model,
                messages=messages,
                tools=TOOLS,
                temperature=0.7,
                max_tokens=1000,
            )
            message = response.choices[0].message
            tool_calls = getattr(message, 'tool_calls', None)
            if not tool_calls:
                return message.content or FALLBACK_REPLY

            messages.append({
                'role': 'assistant',
                'content': message.content or '',
                'tool_calls': [{
                    'id': call.id,
                    'type': 'function',
                    'function': {'name': call.function.name, 'arguments': call.function.arguments},
                } for call in tool_calls],
            })
            for call in tool_calls:
                try:
                    arguments = json.loads(call.function.arguments or '{}')
                except ValueError:
                    arguments = {}
                result = AIAssistant.run_tool(call.function.name, arguments, user)
                messages.append({'role': 'tool', 'tool_call_id': call.id, 'content': json.dumps(result)})

        return FALLBACK_REPLY

    @staticmethod
    def chat(user, user_message, conversation_id='default'):
        """Store the question, answer it and store the answer."""
        if not (user_message or '').strip():
            raise ValidationError('No message provided')

        AIAssistant.get_client()
        user_id = user.user_id if user is not None else None
        history = AIAssistant.history(conversation_id, user_id=user_id)
        AIAssistant.save_message(conversation_id, 'user', user_message, user_id)

        messages = AIAssistant.build_messages(user_message, history)
        try:
            reply = AIAssistant.complete(messages, user)
        except LedgerError:
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error generating AI response: {e}")
            raise ServiceUnavailableError('Failed to generate AI response')

        AIAssistant.save_message(conversation_id, 'assistant', reply, user_id)
        return reply

    @staticmethod
    def transcribe(audio_bytes, filename='voice.ogg'):
        client = AIAssistant.get_client()
        try:
            result = client.audio.transcriptions.create(
                model=current_app.config.get('OPENAI_TRANSCRIBE_MODEL', 'whisper-1'),
                file=(filename, audio_bytes)
            )
        except Exception as e:
            logger.error(f"Error transcribing audio: {e}")
            raise ServiceUnavailableError('Failed to transcribe voice message')
        return (getattr(result, 'text', '') or '').strip()


def register_assistant_routes(app):

    @app.route('/api/ai-assistant', methods=['POST'])
    @login_required
    @permission_required('assistant')
    def ask_assistant():
        data = request.get_json(silent=True) or {}
        conversation_id = str(data.get('conversationId') or data.get('conversation_id') or 'default')
        reply = AIAssistant.chat(current_user, data.get('message'), conversation_id)
        return jsonify({'success': True, 'data': {'response': reply, 'conversation_id': conversation_id}})

    @app.route('/api/ai-assistant/history/<conversation_id>')
    @login_required
    @permission_required('assistant')
    def get_assistant_history(conversation_id):
        owner = None if is_admin(current_user) else current_user.user_id
        messages = AIAssistant.history(conversation_id, user_id=owner)
        return jsonify({'success': True, 'data': [m.to_dict() for m in messages]})

    return app
