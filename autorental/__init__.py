"""AutoRental: a car rental marketplace.

The package exposes :func:`create_app`, which wires the database, the
blueprints (auth, storefront, admin), logging and the error pages together.

To run the app locally::

    pip install -e .
    python app.py --init-db
    python app.py --seed
    python app.py
"""

import logging
import os

from flask import Flask, send_from_directory

from .config import Config
from .currency import CurrencyConverter
from .extensions import db


def configure_logging(app) -> None:
    """Send package log records to stderr with a timestamped format."""
    logger = logging.getLogger(__name__)
    logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    db.init_app(app)

    from . import admin, auth, commands, errors, storefront
    app.before_request(auth.load_logged_in_user)
    app.register_blueprint(auth.bp)
    app.register_blueprint(storefront.bp)
    app.register_blueprint(admin.bp)
    errors.register_error_handlers(app)
    commands.register_commands(app)

    converter = CurrencyConverter(app.config['VND_TO_USD_RATE'])

    @app.template_filter('money')
    def money(amount, currency='VND'):
        return converter.format(amount or 0, currency)

    @app.template_filter('dt')
    def format_datetime(value, fmt='%d/%m/%Y %H:%M'):
        return value.strftime(fmt) if value else ''

    @app.route('/uploads/<path:filename>')
    def uploaded_file(filename: str):
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename, as_attachment=False)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
    return app
