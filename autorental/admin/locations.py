import logging

from flask import current_app, flash, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values
from ..listing import apply_search, paginate, unique_slug
from ..models import Booking, Car, Location
from . import bp


logger = logging.getLogger(__name__)

IN_USE_MESSAGE = 'Failed to delete location. It may be in use.'


def location_stats() -> dict:
    return {
        'total': Location.query.count(),
        'active': Location.query.filter_by(is_active=True).count(),
        'inactive': Location.query.filter_by(is_active=False).count(),
        'airports': Location.query.filter_by(is_airport=True).count(),
        'popular': Location.query.filter_by(is_popular=True).count(),
        'is_24_7': Location.query.filter_by(is_24_7=True).count(),
    }


def read_location_form(location=None) -> dict:
    form = FormReader(request.form)
    data = {
        'name': form.str('name', required=True, max_length=255),
        'description': form.str('description'),
        'address': form.str('address', required=True, max_length=500),
        'latitude': form.float('latitude', min_value=-90, max_value=90),
        'longitude': form.float('longitude', min_value=-180, max_value=180),
        'phone': form.str('phone', max_length=20),
        'email': form.str('email', max_length=255),
        'opening_time': form.time('opening_time'),
        'closing_time': form.time('closing_time'),
        'is_24_7': form.bool('is_24_7'),
        'is_airport': form.bool('is_airport'),
        'is_popular': form.bool('is_popular'),
        'is_active': form.bool('is_active', default=location is None),
        'sort_order': form.int('sort_order', min_value=0, default=0),
    }
    if data['opening_time'] and data['closing_time'] and data['closing_time'] <= data['opening_time']:
        form.error('closing_time', 'The closing time must be after the opening time.')
    form.validate()
    data['slug'] = unique_slug(Location, data['name'], request.form.get('slug'),
                               exclude_id=location.id if location else None)
    return data


@bp.route('/locations')
def locations_index():
    query = Location.query
    status = request.args.get('status')
    if status == 'active':
        query = query.filter(Location.is_active.is_(True))
    elif status == 'inactive':
        query = query.filter(Location.is_active.is_(False))
    location_type = request.args.get('type')
    if location_type == 'airport':
        query = query.filter(Location.is_airport.is_(True))
    elif location_type == 'popular':
        query = query.filter(Location.is_popular.is_(True))
    elif location_type == '24_7':
        query = query.filter(Location.is_24_7.is_(True))
    query = apply_search(query, request.args.get('search'), Location.name, Location.address)
    locations = paginate(query.order_by(Location.sort_order, Location.name),
                         current_app.config['PER_PAGE_ADMIN_SMALL'])
    return render_template('admin/locations/index.html', locations=locations,
                           stats=location_stats(), filters=request.args)


@bp.route('/locations/create', methods=['GET', 'POST'])
def locations_create():
    if request.method == 'POST':
        try:
            data = read_location_form()
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/locations/form.html', location=None,
                                   form=request.form), 422
        location = Location(**data)
        try:
            db.session.add(location)
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to create location. Please try again.')
            return redirect(url_for('admin.locations_create'))
        logger.info("Location %s created", location.slug)
        flash('Location created successfully.', 'success')
        return redirect(url_for('admin.locations_index'))
    return render_template('admin/locations/form.html', location=None, form={'is_active': True})


@bp.route('/locations/<int:location_id>')
def locations_show(location_id: int):
    location = db.get_or_404(Location, location_id)
    return render_template('admin/locations/show.html', location=location)


@bp.route('/locations/<int:location_id>/edit', methods=['GET', 'POST'])
def locations_edit(location_id: int):
    location = db.get_or_404(Location, location_id)
    if request.method == 'POST':
        try:
            data = read_location_form(location)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/locations/form.html', location=location,
                                   form=request.form), 422
        for key, value in data.items():
            setattr(location, key, value)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to update location. Please try again.')
            return redirect(url_for('admin.locations_edit', location_id=location_id))
        flash('Location updated successfully.', 'success')
        return redirect(url_for('admin.locations_index'))
    return render_template('admin/locations/form.html', location=location,
                           form=model_values(location))


@bp.route('/locations/<int:location_id>/delete', methods=['POST'])
def locations_delete(location_id: int):
    location = db.get_or_404(Location, location_id)
    in_use = (Car.query.filter_by(location_id=location.id).count()
              + Booking.query.filter((Booking.pickup_location_id == location.id) |
                                     (Booking.return_location_id == location.id)).count())
    if in_use:
        flash(IN_USE_MESSAGE, 'error')
        return redirect(url_for('admin.locations_index'))
    try:
        db.session.delete(location)
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, IN_USE_MESSAGE)
        return redirect(url_for('admin.locations_index'))
    flash('Location deleted successfully.', 'success')
    return redirect(url_for('admin.locations_index'))


@bp.route('/locations/<int:location_id>/toggle-status', methods=['POST'])
def locations_toggle_status(location_id: int):
    location = db.get_or_404(Location, location_id)
    location.is_active = not location.is_active
    db.session.commit()
    flash(f"Location {'activated' if location.is_active else 'deactivated'} successfully.", 'success')
    return redirect(url_for('admin.locations_index'))
