"""Back office blueprint.  Every route below ``/admin`` requires an admin."""

from flask import Blueprint

from ..auth import admin_required


bp = Blueprint('admin', __name__, url_prefix='/admin')


@bp.before_request
@admin_required
def require_admin():
    return None


from . import (bookings, cars, catalog, dashboard, drivers, locations, payments,  # noqa: E402,F401
               promotions, reviews, users, verifications)
