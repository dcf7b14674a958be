#!/usr/bin/env python3
"""
Database management script for deployment.
Run this during the build/deployment pipeline to apply migrations and seed
the first admin (ADMIN_EMAIL / ADMIN_NAME).
"""
import os
import sys

from flask_migrate import upgrade
from sqlalchemy.exc import SQLAlchemyError

from predictor.app import create_app, init_database


def deploy():
    """Run deployment tasks."""
    print("Starting database migration...")
    app = create_app()
    try:
        if os.path.isdir(os.path.join(os.getcwd(), 'migrations')):
            with app.app_context():
                upgrade()
            print("✓ Database migrations applied.")
        init_database(
            app,
            admin_email=os.getenv('ADMIN_EMAIL'),
            admin_name=os.getenv('ADMIN_NAME', 'Admin')
        )
        print("✓ Database ready.")
    except SQLAlchemyError as e:
        print(f"Error preparing database: {e}")
        sys.exit(1)


if __name__ == '__main__':
    deploy()
