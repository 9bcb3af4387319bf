"""Customer facing blueprint: public pages, checkout and the customer area."""

from flask import Blueprint


bp = Blueprint('storefront', __name__)


from . import account, booking, cars, pages, payments  # noqa: E402,F401
