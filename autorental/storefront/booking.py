"""Checkout, live price calculation and booking creation."""

import logging
from datetime import date, datetime, time

from flask import abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from ..auth import login_required
from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader
from ..models import (BOOKING_PAYMENT_METHODS, Booking, BookingCharge, BookingPromotion, Car,
                      DriverProfile, Location, Promotion)
from ..pricing import BookingPricing
from . import bp


logger = logging.getLogger(__name__)

CHECKOUT_PICKUP_TIME = time(9, 0)
CHECKOUT_RETURN_TIME = time(18, 0)

# Bookings in these states no longer hold the car.
RELEASED_STATUSES = ('cancelled', 'rejected')


def pricing_service() -> BookingPricing:
    return BookingPricing(current_app.config['VAT_RATE'])


def bookable_car(car_id):
    if car_id is None:
        return None
    return Car.query.filter(Car.id == car_id, Car.status == 'available',
                            Car.is_verified.is_(True)).first()


def request_data():
    """JSON body for AJAX calls, form data otherwise."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form


def read_booking_request(data, for_store=False) -> dict:
    """Parse and check the fields shared by price calculation and booking creation."""
    form = FormReader(data)
    values = {
        'car_id': form.int('car_id', required=True),
        'pickup_datetime': form.datetime('pickup_datetime', required=True),
        'return_datetime': form.datetime('return_datetime', required=True),
        'driver_id': form.int('driver_id'),
        'promotion_code': form.str('promotion_code', max_length=20),
        'is_delivery': form.bool('is_delivery'),
        'delivery_address': form.str('delivery_address', max_length=500),
        'delivery_distance': form.float('delivery_distance', min_value=0),
        'delivery_latitude': form.float('delivery_latitude', min_value=-90, max_value=90),
        'delivery_longitude': form.float('delivery_longitude', min_value=-180, max_value=180),
        'pickup_location_id': form.int('pickup_location_id', required=for_store),
        'return_location_id': form.int('return_location_id', required=for_store),
    }
    if for_store:
        values['payment_method'] = form.choice('payment_method', BOOKING_PAYMENT_METHODS,
                                               required=True)
        values['special_requests'] = form.str('special_requests', max_length=500)

    pickup, return_ = values['pickup_datetime'], values['return_datetime']
    if for_store and pickup and pickup < datetime.now():
        form.error('pickup_datetime', 'The pickup datetime must be a date after or equal to now.')
    if pickup and return_ and return_ <= pickup:
        form.error('return_datetime', 'The return datetime must be a date after pickup datetime.')

    values['car'] = bookable_car(values['car_id'])
    if values['car_id'] is not None and values['car'] is None:
        form.error('car_id', 'The selected car is not available.')

    values['driver'] = None
    if values['driver_id'] is not None:
        values['driver'] = (DriverProfile.bookable_query()
                            .filter(DriverProfile.id == values['driver_id']).first())
        if values['driver'] is None:
            form.error('driver_id', 'The selected driver is not available.')

    for field in ('pickup_location_id', 'return_location_id'):
        location_id = values[field]
        key = field.replace('_id', '')
        values[key] = None
        if location_id is not None:
            values[key] = Location.query.filter_by(id=location_id, is_active=True).first()
            if values[key] is None:
                form.error(field, f"The selected {form.label(key)} is invalid.")

    if for_store and values['is_delivery'] and not values['delivery_address']:
        form.error('delivery_address', 'The delivery address field is required.')
    form.validate()
    return values


def price(values, user_id=None) -> dict:
    return pricing_service().breakdown(
        values['car'], values['pickup_datetime'], values['return_datetime'],
        user_id=user_id,
        driver=values['driver'],
        is_delivery=values['is_delivery'],
        delivery_distance=values['delivery_distance'],
        pickup_location=values['pickup_location'],
        delivery_latitude=values['delivery_latitude'],
        delivery_longitude=values['delivery_longitude'],
        promotion_code=values['promotion_code'],
    )


def pricing_errors(pricing, values) -> dict:
    errors = {}
    if values['is_delivery'] and not pricing['delivery']['can_deliver']:
        errors['is_delivery'] = pricing['delivery']['error_message']
    if values['promotion_code'] and not pricing['discount']['is_valid']:
        errors['promotion_code'] = pricing['discount']['error_message']
    return errors


def has_conflict(car_id, pickup, return_) -> bool:
    """True when another booking of the car touches the requested window."""
    return Booking.query.filter(
        Booking.car_id == car_id,
        Booking.status.notin_(RELEASED_STATUSES),
        Booking.pickup_datetime <= return_,
        Booking.return_datetime >= pickup,
    ).first() is not None


@bp.route('/booking/checkout')
def checkout():
    form = FormReader(request.args)
    car_id = form.int('car_id', required=True)
    pickup_date = form.date('pickup_date', required=True)
    return_date = form.date('return_date', required=True)
    location_id = form.int('pickup_location_id')
    if pickup_date and pickup_date < date.today():
        form.error('pickup_date', 'The pickup date must be a date after or equal to today.')
    if pickup_date and return_date and return_date <= pickup_date:
        form.error('return_date', 'The return date must be a date after pickup date.')
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        if car_id is not None:
            return redirect(url_for('storefront.cars_show', car_id=car_id))
        return redirect(url_for('storefront.cars_index'))

    car = bookable_car(car_id)
    if car is None:
        abort(404)
    pickup = datetime.combine(pickup_date, CHECKOUT_PICKUP_TIME)
    return_ = datetime.combine(return_date, CHECKOUT_RETURN_TIME)
    pricing = pricing_service().breakdown(car, pickup, return_,
                                          user_id=g.user.id if g.user else None)
    locations = (Location.query.filter_by(is_active=True)
                 .order_by(Location.is_popular.desc(), Location.name).all())
    drivers = DriverProfile.bookable_query().all()
    details = {
        'car_id': car.id,
        'pickup_datetime': pickup.strftime('%Y-%m-%dT%H:%M'),
        'return_datetime': return_.strftime('%Y-%m-%dT%H:%M'),
        'pickup_location_id': location_id or car.location_id,
        'return_location_id': location_id or car.location_id,
    }
    return render_template('storefront/booking/checkout.html', car=car, locations=locations,
                           drivers=drivers, pricing=pricing, details=details,
                           payment_methods=BOOKING_PAYMENT_METHODS)


@bp.route('/booking/calculate', methods=['POST'])
def calculate():
    try:
        values = read_booking_request(request_data())
    except ValidationError as e:
        return jsonify(message=e.first_message, errors=e.errors), 422
    pricing = price(values, g.user.id if g.user else None)
    errors = pricing_errors(pricing, values)
    errors.pop('promotion_code', None)
    if errors:
        return jsonify(message=next(iter(errors.values())), errors=errors), 422
    return jsonify(pricing)


@bp.route('/booking/validate-promotion', methods=['POST'])
def validate_promotion():
    form = FormReader(request_data())
    code = form.str('code', required=True, max_length=20)
    car_id = form.int('car_id', required=True)
    total_amount = form.float('total_amount', required=True, min_value=0)
    if car_id is not None and db.session.get(Car, car_id) is None:
        form.error('car_id', 'The selected car id is invalid.')
    try:
        form.validate()
    except ValidationError as e:
        return jsonify(valid=False, message=e.first_message, errors=e.errors), 422

    now = datetime.now()
    promotion = Promotion.query.filter(
        db.func.upper(Promotion.code) == code.upper(),
        Promotion.status == 'active',
        Promotion.start_date <= now,
        Promotion.end_date >= now,
    ).first()
    if promotion is None:
        return jsonify(valid=False, message='Invalid or expired promotion code'), 422
    if promotion.has_reached_limit:
        return jsonify(valid=False, message='This promotion has reached its usage limit'), 422
    if promotion.min_amount and total_amount < promotion.min_amount:
        return jsonify(valid=False,
                       message=f"Minimum rental amount is {promotion.min_amount:,.0f} "
                               "for this promotion"), 422
    return jsonify(
        valid=True,
        promotion={
            'id': promotion.id,
            'code': promotion.code,
            'name': promotion.name,
            'discount_type': promotion.discount_type,
            'discount_value': promotion.discount_value,
            'discount_amount': promotion.calculate_discount(total_amount),
        },
        message='Promotion applied successfully',
    )


@bp.route('/booking', methods=['POST'])
@login_required
def store():
    car_id = request.form.get('car_id', type=int)
    back = (url_for('storefront.cars_show', car_id=car_id) if car_id
            else url_for('storefront.cars_index'))
    try:
        values = read_booking_request(request.form, for_store=True)
    except ValidationError as e:
        flash_errors(e)
        return redirect(back)

    car = values['car']
    pickup, return_ = values['pickup_datetime'], values['return_datetime']
    try:
        Car.query.filter_by(id=car.id).with_for_update().first()
        if has_conflict(car.id, pickup, return_):
            db.session.rollback()
            flash('Car is not available for the selected dates', 'error')
            return redirect(back)

        pricing = price(values, g.user.id)
        errors = pricing_errors(pricing, values)
        if errors:
            db.session.rollback()
            flash_errors(ValidationError(errors))
            return redirect(back)

        rental = pricing['rental']
        driver = values['driver']
        delivery = pricing['delivery']
        booking = Booking(
            booking_code=Booking.generate_code(),
            user_id=g.user.id,
            owner_id=car.owner_id,
            car_id=car.id,
            pickup_location_id=values['pickup_location'].id,
            return_location_id=values['return_location'].id,
            pickup_datetime=pickup,
            return_datetime=return_,
            hourly_rate=rental['hourly_rate'],
            daily_rate=rental['daily_rate'],
            daily_hour_threshold=rental['daily_hour_threshold'],
            deposit_amount=pricing['deposit_amount'],
            with_driver=driver is not None,
            driver_profile_id=driver.id if driver else None,
            driver_hourly_fee=pricing['driver']['driver_hourly_fee'],
            driver_daily_fee=pricing['driver']['driver_daily_fee'],
            is_delivery=values['is_delivery'],
            delivery_address=values['delivery_address'] if values['is_delivery'] else None,
            delivery_distance=delivery['delivery_distance'],
            delivery_fee_per_km=delivery['delivery_fee_per_km'],
            status='pending',
            total_amount=pricing['total_amount'],
            payment_method=values['payment_method'],
            payment_status='pending',
            special_requests=values['special_requests'],
        )
        db.session.add(booking)
        booking.charge = BookingCharge(
            total_hours=rental['total_hours'],
            total_days=rental['total_days'],
            hourly_rate=rental['hourly_rate'],
            daily_rate=rental['daily_rate'],
            base_amount=rental['base_amount'],
            delivery_fee=delivery['delivery_fee'],
            driver_fee_amount=pricing['driver']['driver_fee_amount'],
            extra_fee=pricing['extra_fee'],
            discount_amount=pricing['discount']['discount_amount'],
            subtotal=pricing['subtotal'],
            vat_amount=pricing['vat_amount'],
            total_amount=pricing['total_amount'],
            deposit_amount=pricing['deposit_amount'],
            amount_paid=0,
            balance_due=pricing['balance_due'],
        )
        discount = pricing['discount']
        if discount['is_valid']:
            promotion = db.session.get(Promotion, discount['promotion_id'])
            booking.booking_promotions.append(BookingPromotion(
                promotion=promotion,
                applied_by=g.user.id,
                promotion_code=promotion.code,
                discount_amount=discount['discount_amount'],
                promotion_details=discount['promotion_details'],
            ))
            promotion.used_count = (promotion.used_count or 0) + 1
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, 'Failed to create booking. Please try again.')
        return redirect(back)

    logger.info("Booking %s created by %s for car %s", booking.booking_code, g.user.email,
                car.license_plate)
    flash('Booking created successfully!', 'success')
    return redirect(url_for('storefront.confirmation', booking_id=booking.id))


@bp.route('/booking/<int:booking_id>/confirmation')
@login_required
def confirmation(booking_id: int):
    booking = db.get_or_404(Booking, booking_id)
    if booking.user_id != g.user.id:
        abort(403)
    return render_template('storefront/booking/confirmation.html', booking=booking)
