import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

class Config:
    # Core settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-me-cheque-ledger-secret'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///cheque_ledger.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    # Session settings
    SESSION_COOKIE_SECURE = os.environ.get('FLASK_ENV') == 'production'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)

    # Business settings
    COMPANY_NAME = os.environ.get('COMPANY_NAME') or 'Cheque Ledger Pro'

    # Bootstrap superuser, created only when the users table is empty
    DEFAULT_SUPERUSER_USERNAME = os.environ.get('DEFAULT_SUPERUSER_USERNAME') or 'admin'
    DEFAULT_SUPERUSER_PASSWORD = os.environ.get('DEFAULT_SUPERUSER_PASSWORD') or 'admin12345'
    DEFAULT_SUPERUSER_EMAIL = os.environ.get('DEFAULT_SUPERUSER_EMAIL') or 'admin@chequeledger.local'

    # Uploads
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10MB
    ALLOWED_DOCUMENT_TYPES = {'application/pdf', 'image/jpeg', 'image/png', 'image/tiff'}

    # AI assistant
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
    OPENAI_MODEL = os.environ.get('OPENAI_MODEL') or 'gpt-4o'
    OPENAI_TRANSCRIBE_MODEL = os.environ.get('OPENAI_TRANSCRIBE_MODEL') or 'whisper-1'
    AI_HISTORY_LIMIT = 35
    AI_CONTEXT_MESSAGES = 10
    AI_MAX_TOOL_ROUNDS = 5

    # Telegram
    TELEGRAM_BOT_TOKEN = os.environ.get('TELEGRAM_BOT_TOKEN')
    TELEGRAM_WEBHOOK_URL = os.environ.get('TELEGRAM_WEBHOOK_URL')
    TELEGRAM_WEBHOOK_SECRET = os.environ.get('TELEGRAM_WEBHOOK_SECRET')

    # Application
    DEBUG = os.environ.get('FLASK_ENV') != 'production'
    HOST = os.environ.get('HOST') or '0.0.0.0'
    PORT = int(os.environ.get('PORT') or 5000)

    # Reports
    REPORT_ROW_LIMIT = 100

    @staticmethod
    def init_app(app):
        app.json.sort_keys = False
        app.json.ensure_ascii = False


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'testing-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SESSION_COOKIE_SECURE = False
    OPENAI_API_KEY = None
    TELEGRAM_BOT_TOKEN = None
    TELEGRAM_WEBHOOK_SECRET = 'webhook-secret'
    DEFAULT_SUPERUSER_USERNAME = 'root'
    DEFAULT_SUPERUSER_PASSWORD = 'root-password'
    DEFAULT_SUPERUSER_EMAIL = 'root@example.com'

config = Config()
