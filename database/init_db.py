#!/usr/bin/env python3
"""
Create tables and the bootstrap superuser
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.models import db, User


def init_database(app):
    """Create all tables and seed the first account."""
    with app.app_context():
        db.create_all()
        init_basic_data(app.config)


def init_basic_data(settings):
    """Create the configured superuser when the users table is empty."""
    if User.query.first():
        return None

    superuser = User(
        username=settings['DEFAULT_SUPERUSER_USERNAME'],
        email=settings['DEFAULT_SUPERUSER_EMAIL'],
        first_name='System',
        last_name='Administrator',
        role='superuser',
        is_active=True
    )
    superuser.set_password(settings['DEFAULT_SUPERUSER_PASSWORD'])
    db.session.add(superuser)
    db.session.commit()
    print(f"✅ Created superuser: {superuser.username}")
    return superuser


if __name__ == "__main__":
    from app import create_app

    create_app()
    print("\n🎉 Cheque Ledger Pro database is ready")
    print("🚀 Start the API with: python app.py")
