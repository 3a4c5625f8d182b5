import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / '.env', override=False)

LOCAL_ENV = BASE_DIR / '.env.local'
if LOCAL_ENV.exists():
    load_dotenv(LOCAL_ENV, override=True)


def _get_bool(env_name: str, default: bool = False) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return str(val).strip().lower() in {'1', 'true', 'yes', 'y', 'on'}


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', f"sqlite:///{BASE_DIR / 'mxportal.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    TIMEZONE = os.getenv('TZ', 'UTC')

    RAZORPAY_KEY_ID = os.getenv('RAZORPAY_KEY_ID')
    RAZORPAY_KEY_SECRET = os.getenv('RAZORPAY_KEY_SECRET')
    RAZORPAY_WEBHOOK_SECRET = os.getenv('RAZORPAY_WEBHOOK_SECRET')
    # RazorpayX current account number, required for verification payouts
    RAZORPAY_X_ACCOUNT_NUMBER = os.getenv('RAZORPAY_X_ACCOUNT_NUMBER')
    RAZORPAY_API_BASE = os.getenv('RAZORPAY_API_BASE', 'https://api.razorpay.com/v1')
    RAZORPAY_TIMEOUT_SECONDS = int(os.getenv('RAZORPAY_TIMEOUT_SECONDS', '15'))

    CRON_SECRET = os.getenv('CRON_SECRET')
    SCHEDULER_ENABLED = _get_bool('SCHEDULER_ENABLED', True)

    MIN_PAYOUT_AMOUNT = int(os.getenv('MIN_PAYOUT_AMOUNT', '100'))
    DEFAULT_BILLING_DAYS = int(os.getenv('DEFAULT_BILLING_DAYS', '30'))


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    DEBUG = False


class TestConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SCHEDULER_ENABLED = False
    RAZORPAY_KEY_ID = 'rzp_test_key'
    RAZORPAY_KEY_SECRET = 'rzp_test_secret'
    RAZORPAY_WEBHOOK_SECRET = 'whsec_test'
    RAZORPAY_X_ACCOUNT_NUMBER = '2323230000000000'
    CRON_SECRET = 'cron-test-secret'


Config = DevConfig if os.getenv('FLASK_ENV') != 'production' else ProdConfig
