import logging

from flask import current_app, flash, redirect, render_template, request, url_for

from ..errors import ValidationError, flash_errors
from ..extensions import db
from ..forms import FormReader, model_values
from ..listing import apply_search, apply_sort, paginate
from ..models import DRIVER_STATUSES, DriverProfile, User
from . import bp


logger = logging.getLogger(__name__)

SORTS = {
    'name': User.name,
    'rating': DriverProfile.average_rating,
    'trips': DriverProfile.completed_trips,
    'hourly_fee': DriverProfile.hourly_fee,
    'daily_fee': DriverProfile.daily_fee,
    'created_at': DriverProfile.created_at,
}


@bp.route('/drivers')
def drivers_index():
    query = DriverProfile.query.join(User, DriverProfile.user_id == User.id)
    query = apply_search(query, request.args.get('search'), User.name, User.email)
    status = request.args.get('status')
    if status in DRIVER_STATUSES:
        query = query.filter(DriverProfile.status == status)
    query = apply_sort(query, request.args.get('sort_by'), request.args.get('sort_order', 'desc'),
                       SORTS, 'created_at')
    drivers = paginate(query, current_app.config['PER_PAGE_ADMIN_SMALL'])
    stats = {
        'total': DriverProfile.query.count(),
        'available': DriverProfile.query.filter_by(status='available').count(),
        'on_duty': DriverProfile.query.filter_by(status='on_duty').count(),
        'suspended': DriverProfile.query.filter_by(status='suspended').count(),
    }
    return render_template('admin/drivers/index.html', drivers=drivers, stats=stats,
                           filters=request.args, statuses=DRIVER_STATUSES)


@bp.route('/drivers/<int:driver_id>')
def drivers_show(driver_id: int):
    driver = db.get_or_404(DriverProfile, driver_id)
    return render_template('admin/drivers/show.html', driver=driver)


@bp.route('/drivers/<int:driver_id>/edit', methods=['GET', 'POST'])
def drivers_edit(driver_id: int):
    driver = db.get_or_404(DriverProfile, driver_id)
    owners = User.active_query().filter(User.role.in_(('owner', 'admin'))).order_by(User.name).all()
    if request.method == 'POST':
        form = FormReader(request.form)
        owner_id = form.int('owner_id')
        data = {
            'owner_id': owner_id,
            'hourly_fee': form.float('hourly_fee', required=True, min_value=0),
            'daily_fee': form.float('daily_fee', required=True, min_value=0),
            'overtime_fee_per_hour': form.float('overtime_fee_per_hour', min_value=0),
            'daily_hour_threshold': form.int('daily_hour_threshold', required=True,
                                             min_value=1, max_value=24),
            'status': form.choice('status', DRIVER_STATUSES, required=True),
            'is_available_for_booking': form.bool('is_available_for_booking'),
        }
        if owner_id is not None and db.session.get(User, owner_id) is None:
            form.error('owner_id', 'The selected owner is invalid.')
        try:
            form.validate()
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/drivers/form.html', driver=driver, form=request.form,
                                   owners=owners, statuses=DRIVER_STATUSES), 422
        for key, value in data.items():
            setattr(driver, key, value)
        db.session.commit()
        flash('Driver profile updated successfully.', 'success')
        return redirect(url_for('admin.drivers_show', driver_id=driver.id))
    return render_template('admin/drivers/form.html', driver=driver, form=model_values(driver),
                           owners=owners, statuses=DRIVER_STATUSES)


@bp.route('/drivers/<int:driver_id>/status', methods=['POST'])
def drivers_update_status(driver_id: int):
    driver = db.get_or_404(DriverProfile, driver_id)
    status = request.form.get('status')
    if status not in DRIVER_STATUSES:
        flash('The selected status is invalid.', 'error')
        return redirect(url_for('admin.drivers_show', driver_id=driver.id))
    driver.status = status
    db.session.commit()
    logger.info("Driver %s status set to %s", driver.id, status)
    flash(f"Driver status changed to '{status}'.", 'success')
    return redirect(url_for('admin.drivers_show', driver_id=driver.id))


@bp.route('/drivers/<int:driver_id>/toggle-availability', methods=['POST'])
def drivers_toggle_availability(driver_id: int):
    driver = db.get_or_404(DriverProfile, driver_id)
    driver.is_available_for_booking = not driver.is_available_for_booking
    db.session.commit()
    state = 'available' if driver.is_available_for_booking else 'unavailable'
    flash(f"Driver is now {state} for booking.", 'success')
    return redirect(url_for('admin.drivers_show', driver_id=driver.id))
