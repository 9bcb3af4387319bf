"""Back office booking management.

A booking moves pending -> confirmed -> active -> completed, or ends as
rejected / cancelled.  Each transition below only accepts the status it
starts from and flashes an error otherwise.
"""

import logging
from datetime import datetime, time

from flask import current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values
from ..listing import paginate, status_counts
from ..models import BOOKING_STATUSES, Booking, Car, DriverProfile, Location, User
from ..pricing import BookingPricing
from . import bp


logger = logging.getLogger(__name__)


def back_to(booking):
    return redirect(url_for('admin.bookings_show', booking_id=booking.id))


def edit_choices() -> dict:
    return {
        'locations': Location.query.filter_by(is_active=True).order_by(Location.name).all(),
        'drivers': DriverProfile.query.join(User, DriverProfile.user_id == User.id)
                                      .order_by(User.name).all(),
    }


@bp.route('/bookings')
def bookings_index():
    query = (Booking.query.join(User, Booking.user_id == User.id)
             .join(Car, Booking.car_id == Car.id))
    status = request.args.get('status')
    if status in BOOKING_STATUSES:
        query = query.filter(Booking.status == status)
    owner_id = request.args.get('owner_id', type=int)
    if owner_id:
        query = query.filter(Booking.owner_id == owner_id)
    form = FormReader(request.args)
    start_date = form.date('start_date')
    end_date = form.date('end_date')
    if start_date:
        query = query.filter(Booking.pickup_datetime >= datetime.combine(start_date, time.min))
    if end_date:
        query = query.filter(Booking.pickup_datetime <= datetime.combine(end_date, time.max))
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Booking.booking_code.ilike(pattern), User.name.ilike(pattern),
                                 User.email.ilike(pattern), Car.model.ilike(pattern),
                                 Car.license_plate.ilike(pattern)))
    bookings = paginate(query.order_by(Booking.created_at.desc(), Booking.id.desc()),
                        current_app.config['PER_PAGE_ADMIN_SMALL'])
    owners = User.active_query().filter(User.role.in_(('owner', 'admin'))).order_by(User.name).all()
    return render_template('admin/bookings/index.html', bookings=bookings,
                           stats=status_counts(Booking, Booking.status, BOOKING_STATUSES),
                           filters=request.args, statuses=BOOKING_STATUSES, owners=owners)


@bp.route('/bookings/<int:booking_id>')
def bookings_show(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    return render_template('admin/bookings/show.html', booking=booking)


@bp.route('/bookings/<int:booking_id>/edit', methods=['GET', 'POST'])
def bookings_edit(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if request.method == 'POST':
        form = FormReader(request.form)
        data = {
            'pickup_datetime': form.datetime('pickup_datetime', required=True),
            'return_datetime': form.datetime('return_datetime', required=True),
            'pickup_location_id': form.int('pickup_location_id'),
            'return_location_id': form.int('return_location_id'),
            'with_driver': form.bool('with_driver'),
            'driver_profile_id': form.int('driver_profile_id'),
            'is_delivery': form.bool('is_delivery'),
            'delivery_address': form.str('delivery_address', max_length=500),
            'special_requests': form.str('special_requests', max_length=500),
            'admin_notes': form.str('admin_notes', max_length=1000),
        }
        if data['pickup_datetime'] and data['return_datetime'] \
                and data['return_datetime'] <= data['pickup_datetime']:
            form.error('return_datetime', 'The return date must be after the pickup date.')
        for field in ('pickup_location_id', 'return_location_id'):
            if data[field] is not None and db.session.get(Location, data[field]) is None:
                form.error(field, f"The selected {form.label(field)} is invalid.")
        driver = None
        if data['with_driver']:
            driver = db.session.get(DriverProfile, data['driver_profile_id'] or 0)
            if driver is None:
                form.error('driver_profile_id', 'Please select a driver.')
        else:
            data['driver_profile_id'] = None
        if data['is_delivery'] and not data['delivery_address']:
            form.error('delivery_address', 'The delivery address is required for delivery.')
        try:
            form.validate()
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/bookings/form.html', booking=booking, form=request.form,
                                   **edit_choices()), 422
        for key, value in data.items():
            setattr(booking, key, value)
        booking.driver_hourly_fee = driver.hourly_fee if driver else None
        booking.driver_daily_fee = driver.daily_fee if driver else None
        db.session.commit()
        flash('Booking updated successfully.', 'success')
        return back_to(booking)
    return render_template('admin/bookings/form.html', booking=booking,
                           form=model_values(booking), **edit_choices())


@bp.route('/bookings/<int:booking_id>/confirm', methods=['POST'])
def bookings_confirm(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if not booking.can_be_confirmed:
        flash('Only pending bookings can be confirmed.', 'error')
        return back_to(booking)
    booking.status = 'confirmed'
    booking.confirmed_by = g.user.id
    booking.confirmed_at = datetime.now()
    db.session.commit()
    logger.info("Booking %s confirmed by %s", booking.booking_code, g.user.email)
    flash('Booking confirmed successfully.', 'success')
    return back_to(booking)


@bp.route('/bookings/<int:booking_id>/reject', methods=['POST'])
def bookings_reject(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if not booking.can_be_confirmed:
        flash('Only pending bookings can be rejected.', 'error')
        return back_to(booking)
    form = FormReader(request.form)
    reason = form.str('rejection_reason', required=True, max_length=500)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return back_to(booking)
    booking.status = 'rejected'
    booking.cancelled_by = g.user.id
    booking.cancelled_at = datetime.now()
    booking.cancellation_reason = reason
    db.session.commit()
    logger.info("Booking %s rejected by %s", booking.booking_code, g.user.email)
    flash('Booking rejected.', 'success')
    return back_to(booking)


@bp.route('/bookings/<int:booking_id>/activate', methods=['POST'])
def bookings_activate(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if not booking.can_be_started:
        flash('Only confirmed bookings can be activated.', 'error')
        return back_to(booking)
    booking.status = 'active'
    booking.actual_pickup_time = datetime.now()
    booking.car.status = 'rented'
    db.session.commit()
    logger.info("Booking %s activated", booking.booking_code)
    flash('Booking activated. The car has been handed over.', 'success')
    return back_to(booking)


@bp.route('/bookings/<int:booking_id>/complete', methods=['POST'])
def bookings_complete(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if not booking.can_be_completed:
        flash('Only active bookings can be completed.', 'error')
        return back_to(booking)
    form = FormReader(request.form)
    actual_return = form.datetime('actual_return_time', required=True)
    notes = form.str('car_condition_notes', max_length=1000)
    extra_fee = form.float('extra_fee', min_value=0, default=0)
    extra_fee_reason = form.str('extra_fee_reason', max_length=500)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return back_to(booking)

    try:
        booking.status = 'completed'
        booking.actual_return_time = actual_return
        booking.car_condition_notes = notes
        if extra_fee > 0 and booking.charge is not None:
            BookingPricing(current_app.config['VAT_RATE']).recalculate_with_extra_fee(
                booking.charge, extra_fee, extra_fee_reason)
            booking.total_amount = booking.charge.total_amount
        booking.car.status = 'available'
        booking.car.rental_count = (booking.car.rental_count or 0) + 1
        if booking.driver_profile is not None:
            booking.driver_profile.completed_trips += 1
            booking.driver_profile.total_hours_driven += round(booking.duration_hours)
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, 'Failed to complete booking. Please try again.')
        return back_to(booking)
    logger.info("Booking %s completed (extra fee %.2f)", booking.booking_code, extra_fee)
    flash('Booking completed successfully.', 'success')
    return back_to(booking)


@bp.route('/bookings/<int:booking_id>/delete', methods=['POST'])
def bookings_delete(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if not booking.can_be_deleted:
        flash('Only cancelled or rejected bookings can be deleted.', 'error')
        return back_to(booking)
    code = booking.booking_code
    db.session.delete(booking)
    db.session.commit()
    logger.info("Booking %s deleted by %s", code, g.user.email)
    flash(f"Booking {code} deleted successfully.", 'success')
    return redirect(url_for('admin.bookings_index'))
