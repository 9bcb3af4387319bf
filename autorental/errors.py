"""Exceptions and error pages shared by the blueprints."""

import logging

from flask import flash, jsonify, render_template, request

from .extensions import db


logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Submitted data failed validation; ``errors`` maps field to message."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = {'__all__': errors}
        self.errors = errors
        super().__init__('; '.join(errors.values()))

    @property
    def first_message(self) -> str:
        return next(iter(self.errors.values()))


class PaymentGatewayError(Exception):
    """The payment provider could not be reached or refused the request."""


def flash_errors(error: ValidationError) -> None:
    for message in error.errors.values():
        flash(message, 'error')


def wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == 'application/json'


def register_error_handlers(app):
    @app.errorhandler(403)
    def forbidden(error):
        if wants_json():
            return jsonify(message='Forbidden.'), 403
        return render_template('errors/403.html'), 403

    @app.errorhandler(404)
    def not_found(error):
        if wants_json():
            return jsonify(message='Not found.'), 404
        return render_template('errors/404.html'), 404

    @app.errorhandler(500)
    def server_error(error):
        logger.error("Unhandled error on %s", request.path, exc_info=error)
        return render_template('errors/500.html'), 500


def report_db_failure(error, message) -> None:
    """Roll back the session after a failed write and tell the user."""
    db.session.rollback()
    logger.error("%s (%s)", message, error, exc_info=error)
    flash(message, 'error')
