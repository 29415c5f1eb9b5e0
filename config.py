# ==============================================================================
# config.py
# ------------------------------------------------------------------------------
# Configuration settings for the settlement application.
# Uses environment variables so deployments can point at their own database
# and export/report folders without code changes.
# ==============================================================================

import os
from dotenv import load_dotenv

# Determine the absolute path of the project directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load environment variables from a .env file located in the project root
load_dotenv(os.path.join(basedir, '.env'))

class Config:
    """
    Base configuration class. Contains default settings that can be overridden
    by environment-specific configurations.
    """
    # --- Database Configuration ---
    # SQLite by default; production points DATABASE_URL at the shared database.
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance/loyalty.db')

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Settlement Inputs / Outputs ---
    # Folder where the user export service drops per-period user lists.
    SETTLEMENT_EXPORT_FOLDER = os.environ.get('SETTLEMENT_EXPORT_FOLDER') or \
        os.path.join(basedir, 'instance/exports')

    # Folder where generated settlement reports are written.
    SETTLEMENT_REPORT_FOLDER = os.environ.get('SETTLEMENT_REPORT_FOLDER') or \
        os.path.join(basedir, 'instance/reports')

    # --- Logging ---
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'


class TestConfig(Config):
    """Configuration used by the test-suite: in-memory database."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
