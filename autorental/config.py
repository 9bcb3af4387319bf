"""Configuration objects for the car rental marketplace.

Values are read from the environment so the same code can run locally,
in tests and behind a production WSGI server.  ``create_app`` loads one of
these classes through ``app.config.from_object``.
"""

import os


BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL', 'sqlite:///' + os.path.join(BASE_DIR, 'autorental.db'))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads'))
    MAX_CONTENT_LENGTH = 32 * 1024 * 1024
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Payment provider
    PAYPAL_MODE = os.getenv('PAYPAL_MODE', 'sandbox')
    PAYPAL_CLIENT_ID = os.getenv('PAYPAL_CLIENT_ID', '')
    PAYPAL_CLIENT_SECRET = os.getenv('PAYPAL_CLIENT_SECRET', '')
    PAYPAL_CURRENCY = os.getenv('PAYPAL_CURRENCY', 'USD')

    # Prices are stored in VND; PayPal charges in USD at a fixed rate.
    VND_TO_USD_RATE = float(os.getenv('VND_TO_USD_RATE', '24500'))
    VAT_RATE = float(os.getenv('VAT_RATE', '0.10'))

    FREE_CANCELLATION_HOURS = 24
    DEFAULT_DAILY_HOUR_THRESHOLD = 10
    MAX_CAR_IMAGES = 10

    PER_PAGE_ADMIN = 20
    PER_PAGE_ADMIN_SMALL = 15
    PER_PAGE_CARS = 12
    PER_PAGE_MY_BOOKINGS = 10


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads-test'))
    PAYPAL_CLIENT_ID = 'test-client'
    PAYPAL_CLIENT_SECRET = 'test-secret'
