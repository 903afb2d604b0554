#!/usr/bin/env python3
"""
Cheque Ledger Pro - main application
"""

import logging
from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config import config
from database.models import db
from database.init_db import init_database
from modules.auth import login_manager, register_auth_routes
from modules.assistant import register_assistant_routes
from modules.balances import register_balance_routes
from modules.documents import register_document_routes
from modules.ledger import register_ledger_routes
from modules.payments import register_payment_routes
from modules.reports import register_report_routes
from modules.users import register_user_routes
from modules.utils import LedgerError
from telegram_bot import register_telegram_routes

logger = logging.getLogger(__name__)

migrate = Migrate()


def register_error_handlers(app):

    @app.errorhandler(LedgerError)
    def handle_ledger_error(e):
        db.session.rollback()
        body = {'success': False, 'message': e.message}
        if e.errors:
            body['errors'] = e.errors
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({'success': False, 'message': 'An unexpected error occurred'}), 500


def create_app(config_object=None):
    """Build the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object or config)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    CORS(app, supports_credentials=True)
    (config_object or config).init_app(app)

    # Routes
    register_auth_routes(app)
    register_user_routes(app)
    register_ledger_routes(app)
    register_payment_routes(app)
    register_balance_routes(app)
    register_report_routes(app)
    register_assistant_routes(app)
    register_document_routes(app)
    register_telegram_routes(app)
    register_error_handlers(app)

    @app.route('/api/health')
    def health():
        return jsonify({'success': True, 'status': 'ok'})

    init_database(app)
    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    print("🚀 Cheque Ledger Pro is running")
    print(f"📍 http://localhost:{config.PORT}")
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG)
