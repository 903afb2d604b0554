import asyncio
import logging
from datetime import datetime
from functools import wraps

from flask import jsonify, request, current_app
from flask_login import login_required
from telegram import Bot, Update
from telegram.ext import (
    ApplicationBuilder,
    CommandHandler,
    MessageHandler,
    ContextTypes,
    filters
)

from database.models import db, User, TelegramUser
from modules.assistant import AIAssistant
from modules.auth import authenticate, admin_required
from modules.documents import DocumentProcessor, OPTION_FLAGS
from modules.ledger import ChequeLedger
from modules.reports import ReportBuilder
from modules.utils import LedgerError, ValidationError, ServiceUnavailableError

logger = logging.getLogger(__name__)

START_TEXT = (
    "Welcome to Cheque Ledger Pro! I'm your AI assistant. You can ask me about your transactions, "
    "customers, vendors, and more.\n\n"
    "Link your account with /link <username> <password>, then type /help to see available commands."
)

HELP_TEXT = (
    "Available commands:\n"
    "/start - Start the bot\n"
    "/help - Show this help message\n"
    "/link <username> <password> - Link this chat to your account\n"
    "/unlink - Unlink this chat\n"
    "/summary - Get a business summary\n"
    "/transactions - Get recent transactions\n\n"
    "You can also ask questions in natural language like:\n"
    "- \"Show me transactions for Atlas Construction\"\n"
    "- \"What's my profit this month?\"\n"
    "- \"Calculate fee for a $5000 cheque with Atlas Construction\"\n\n"
    "Voice notes are transcribed, and cheque photos or PDFs are scanned."
)

NOT_LINKED_TEXT = "🔒 This chat is not linked. Use /link <username> <password> first."

ALL_OPTIONS = {flag: True for flag in OPTION_FLAGS}


def conversation_id_for(chat_id):
    return f"telegram-{chat_id}"


def _money(value):
    return f"${value:,.2f}"


# ======================= Sync helpers (run inside an app context) =======================

def link_chat(telegram_id, username, password, profile=None):
    """Bind a Telegram account to an active user."""
    user = authenticate(username, password)
    if user is None:
        raise ValidationError('Invalid username or password')

    profile = profile or {}
    account = db.session.get(TelegramUser, telegram_id)
    if account is None:
        account = TelegramUser(telegram_id=telegram_id, user_id=user.user_id)
        db.session.add(account)
    account.user_id = user.user_id
    account.username = profile.get('username')
    account.first_name = profile.get('first_name')
    account.last_name = profile.get('last_name')
    account.role = user.role
    account.last_activity = datetime.utcnow()
    db.session.commit()
    logger.info(f"Telegram account {telegram_id} linked to {user.username}")
    return user


def unlink_chat(telegram_id):
    account = db.session.get(TelegramUser, telegram_id)
    if account is None:
        return False
    db.session.delete(account)
    db.session.commit()
    return True


def get_linked_user(telegram_id):
    account = db.session.get(TelegramUser, telegram_id)
    if account is None:
        return None
    user = db.session.get(User, account.user_id)
    if user is None or not user.is_active:
        return None
    account.last_activity = datetime.utcnow()
    account.role = user.role
    db.session.commit()
    return user


def format_summary(result):
    if not result.available:
        return "⚠️ The business summary is temporarily unavailable."
    s = result.data
    return (
        "📊 Business Summary\n\n"
        f"Transactions: {s['total_transactions']}\n"
        f"Total cheque amount: {_money(s['total_cheque_amount'])}\n"
        f"Total profit: {_money(s['total_profit'])}\n"
        f"Pending: {s['pending_count']} | Completed: {s['completed_count']} | Bounced: {s['bounced_count']}\n"
        f"Outstanding from vendors: {_money(s['outstanding_balance'])}\n"
        f"Outstanding to customers: {_money(s['outstanding_to_customers'])}\n"
        f"Realized profit: {_money(s['realized_profit'])}\n"
        f"Unrealized profit: {_money(s['unrealized_profit'])}"
    )


def format_transactions(transactions):
    if not transactions:
        return "No transactions found."
    lines = ["🧾 Recent transactions:\n"]
    for t in transactions:
        lines.append(
            f"#{t.transaction_id} {t.date.isoformat()} | {t.customer.customer_name} → {t.vendor.vendor_name}\n"
            f"   Cheque {t.cheque_number}: {_money(t.cheque_amount)} | profit {_money(t.profit)} | {t.status}"
        )
    return "\n".join(lines)


def format_extraction(result):
    data = result.get('data') or {}
    if not data:
        return "I couldn't find any cheque details in that document."
    labels = (('chequeNumber', 'Cheque number'), ('amount', 'Amount'), ('date', 'Date'),
              ('payeeName', 'Payee'), ('bankName', 'Bank'), ('customerName', 'Matched customer'))
    lines = ["📄 Extracted details:"]
    for key, label in labels:
        if data.get(key):
            lines.append(f"{label}: {data[key]}")
    return "\n".join(lines)


def summary_text():
    return format_summary(ReportBuilder.business_summary())


def transactions_text(limit=5):
    return format_transactions(ChequeLedger.list_transactions(limit=limit))


def answer_text(user, chat_id, text):
    return AIAssistant.chat(user, text, conversation_id_for(chat_id))


def answer_voice(user, chat_id, audio_bytes):
    text = AIAssistant.transcribe(audio_bytes)
    if not text:
        raise ValidationError("I couldn't understand that voice message.")
    return f"🎙️ \"{text}\"\n\n{answer_text(user, chat_id, text)}"


def scan_document(data, mime_type):
    allowed = current_app.config.get('ALLOWED_DOCUMENT_TYPES')
    if allowed and mime_type not in allowed:
        raise ValidationError('Unsupported document type. Send a PDF, JPEG, PNG or TIFF file.')
    return format_extraction(DocumentProcessor.process(data, mime_type, ALL_OPTIONS))


# ======================= Bot handlers =======================

def _flask(context):
    return context.application.bot_data['flask_app']


def run_for_user(context, telegram_id, func, *args):
    """Call func(user, *args) inside the Flask app context; returns reply text."""
    with _flask(context).app_context():
        user = get_linked_user(telegram_id)
        if user is None:
            return NOT_LINKED_TEXT
        try:
            return func(user, *args)
        except LedgerError as e:
            db.session.rollback()
            return f"❌ {e.message}"


def linked_only(func):
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        with _flask(context).app_context():
            linked = get_linked_user(update.effective_user.id) is not None
        if not linked:
            await update.message.reply_text(NOT_LINKED_TEXT)
            return
        return await func(update, context)
    return wrapper


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(START_TEXT)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(HELP_TEXT)


async def link(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        username, password = context.args
    except ValueError:
        await update.message.reply_text("❌ Usage:\n/link <username> <password>")
        return

    tg_user = update.effective_user
    profile = {'username': tg_user.username, 'first_name': tg_user.first_name, 'last_name': tg_user.last_name}
    with _flask(context).app_context():
        try:
            user = link_chat(tg_user.id, username, password, profile)
            reply = f"✅ Linked to {user.full_name} ({user.role})."
        except LedgerError as e:
            db.session.rollback()
            reply = f"❌ {e.message}"

    try:
        await update.message.delete()
    except Exception as e:
        logger.error(f"Could not delete /link message: {e}")
    await update.effective_chat.send_message(reply)


async def unlink(update: Update, context: ContextTypes.DEFAULT_TYPE):
    with _flask(context).app_context():
        removed = unlink_chat(update.effective_user.id)
    await update.message.reply_text("✅ Chat unlinked." if removed else "This chat was not linked.")


@linked_only
async def summary(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reply = run_for_user(context, update.effective_user.id, lambda user: summary_text())
    await update.message.reply_text(reply)


@linked_only
async def transactions(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reply = run_for_user(context, update.effective_user.id, lambda user: transactions_text())
    await update.message.reply_text(reply)


@linked_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_chat.send_action('typing')
    reply = run_for_user(context, update.effective_user.id, answer_text,
                         update.effective_chat.id, update.message.text)
    await update.message.reply_text(reply)


@linked_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE):
    voice_file = await update.message.voice.get_file()
    audio = bytes(await voice_file.download_as_bytearray())
    reply = run_for_user(context, update.effective_user.id, answer_voice, update.effective_chat.id, audio)
    await update.message.reply_text(reply)


@linked_only
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE):
    photo_file = await update.message.photo[-1].get_file()
    data = bytes(await photo_file.download_as_bytearray())
    reply = run_for_user(context, update.effective_user.id, lambda user: scan_document(data, 'image/jpeg'))
    await update.message.reply_text(reply)


@linked_only
async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE):
    document = update.message.document
    doc_file = await document.get_file()
    data = bytes(await doc_file.download_as_bytearray())
    reply = run_for_user(context, update.effective_user.id,
                         lambda user: scan_document(data, (document.mime_type or '').lower()))
    await update.message.reply_text(reply)


def build_application(flask_app):
    token = flask_app.config.get('TELEGRAM_BOT_TOKEN')
    if not token:
        raise ServiceUnavailableError('Telegram bot is not configured (missing TELEGRAM_BOT_TOKEN)')

    app_bot = ApplicationBuilder().token(token).build()
    app_bot.bot_data['flask_app'] = flask_app

    app_bot.add_handler(CommandHandler("start", start))
    app_bot.add_handler(CommandHandler("help", help_command))
    app_bot.add_handler(CommandHandler("link", link))
    app_bot.add_handler(CommandHandler("unlink", unlink))
    app_bot.add_handler(CommandHandler("summary", summary))
    app_bot.add_handler(CommandHandler("transactions", transactions))
    app_bot.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app_bot.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app_bot.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    app_bot.add_handler(MessageHandler(filters.Document.ALL, handle_document))
    return app_bot


# ======================= Webhook and outbound messages =======================

async def _process_update(app_bot, payload):
    async with app_bot:
        await app_bot.process_update(Update.de_json(payload, app_bot.bot))


def dispatch_update(flask_app, payload):
    asyncio.run(_process_update(build_application(flask_app), payload))


async def _send(token, chat_id, text):
    async with Bot(token) as bot:
        message = await bot.send_message(chat_id=chat_id, text=text)
    return message.message_id


def send_telegram_message(flask_app, chat_id, text):
    token = flask_app.config.get('TELEGRAM_BOT_TOKEN')
    if not token:
        raise ServiceUnavailableError('Telegram bot is not configured (missing TELEGRAM_BOT_TOKEN)')
    return asyncio.run(_send(token, chat_id, text))


def register_telegram_routes(app):

    @app.route('/api/telegram/webhook', methods=['POST'])
    def telegram_webhook():
        secret = current_app.config.get('TELEGRAM_WEBHOOK_SECRET')
        if not secret:
            raise ServiceUnavailableError('Telegram webhook is not configured (missing TELEGRAM_WEBHOOK_SECRET)')
        if request.headers.get('X-Telegram-Bot-Api-Secret-Token') != secret:
            return jsonify({'success': False, 'message': 'Invalid webhook secret'}), 403

        payload = request.get_json(silent=True)
        if not payload:
            raise ValidationError('Empty update')

        dispatch_update(current_app._get_current_object(), payload)
        return jsonify({'success': True})

    @app.route('/api/telegram/send', methods=['POST'])
    @login_required
    @admin_required
    def telegram_send():
        data = request.get_json(silent=True) or {}
        chat_id = data.get('chatId') or data.get('chat_id')
        message = data.get('message')
        if not chat_id or not message:
            raise ValidationError('Message and chatId are required')

        try:
            message_id = send_telegram_message(current_app._get_current_object(), chat_id, message)
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"Error sending Telegram message: {e}")
            raise ServiceUnavailableError('Failed to send Telegram message')
        return jsonify({'success': True, 'data': {'message_id': message_id}})

    return app


def main():
    from app import create_app

    logging.basicConfig(level=logging.INFO)
    flask_app = create_app()
    app_bot = build_application(flask_app)

    print("🤖 Bot started...")
    app_bot.run_polling()


if __name__ == "__main__":
    main()
