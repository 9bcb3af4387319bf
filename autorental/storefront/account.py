"""The signed-in customer's area: dashboard, bookings, reviews, profile and verification."""

import logging
import re
from datetime import date, datetime, timedelta

from flask import abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..auth import login_required
from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values
from ..models import BOOKING_STATUSES, Booking, Car, Review, User, UserVerification
from ..uploads import IMAGE_EXTENSIONS, delete_upload, has_file, save_upload
from . import bp


logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^[\d\s+\-()]+$')
LICENSE_TYPES = ('B1', 'B2', 'C', 'D', 'E')
VERIFICATION_UPLOADS = {
    'driving_license_image': 'verifications/licenses',
    'id_image': 'verifications/ids',
    'selfie_image': 'verifications/selfies',
}


def own_booking(booking_id) -> Booking:
    booking = db.get_or_404(Booking, booking_id)
    if booking.user_id != g.user.id:
        abort(403)
    return booking


def customer_stats(user_id) -> dict:
    now = datetime.now()
    mine = Booking.query.filter(Booking.user_id == user_id)
    spent = (db.session.query(func.coalesce(func.sum(Booking.total_amount), 0))
             .filter(Booking.user_id == user_id, Booking.status == 'completed').scalar())
    unreviewed = (mine.filter(Booking.status == 'completed')
                  .outerjoin(Review, Review.booking_id == Booking.id)
                  .filter(Review.id.is_(None)).count())
    return {
        'total': mine.count(),
        'upcoming': mine.filter(Booking.status.in_(('pending', 'confirmed')),
                                Booking.pickup_datetime > now).count(),
        'active': mine.filter(Booking.status == 'active').count(),
        'completed': mine.filter(Booking.status == 'completed').count(),
        'total_spent': float(spent or 0),
        'pending_reviews': unreviewed,
    }


@bp.route('/dashboard')
@login_required
def dashboard():
    now = datetime.now()
    upcoming = (Booking.query.filter(Booking.user_id == g.user.id,
                                     Booking.status.in_(('pending', 'confirmed')),
                                     Booking.pickup_datetime >= now,
                                     Booking.pickup_datetime <= now + timedelta(days=30))
                .order_by(Booking.pickup_datetime.asc()).limit(5).all())
    active = (Booking.query.filter_by(user_id=g.user.id, status='active')
              .order_by(Booking.return_datetime.asc()).all())
    return render_template('storefront/account/dashboard.html', upcoming=upcoming, active=active,
                           stats=customer_stats(g.user.id))


@bp.route('/my-bookings')
@login_required
def my_bookings():
    query = Booking.query.join(Car, Booking.car_id == Car.id).filter(Booking.user_id == g.user.id)
    status = request.args.get('status')
    if status in BOOKING_STATUSES:
        query = query.filter(Booking.status == status)
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Booking.booking_code.ilike(pattern), Car.name.ilike(pattern),
                                 Car.model.ilike(pattern)))
    per_page = request.args.get('per_page', current_app.config['PER_PAGE_MY_BOOKINGS'], type=int)
    bookings = (query.order_by(Booking.created_at.desc(), Booking.id.desc())
                .paginate(page=request.args.get('page', 1, type=int),
                          per_page=min(max(per_page, 1), 50), error_out=False))
    return render_template('storefront/account/bookings.html', bookings=bookings,
                           stats=customer_stats(g.user.id), filters=request.args,
                           statuses=BOOKING_STATUSES)


@bp.route('/my-bookings/<int:booking_id>')
@login_required
def booking_detail(booking_id: int):
    booking = own_booking(booking_id)
    return render_template('storefront/account/booking_detail.html', booking=booking,
                           free_cancellation=free_cancellation(booking))


def free_cancellation(booking) -> bool:
    hours = current_app.config['FREE_CANCELLATION_HOURS']
    return booking.pickup_datetime - datetime.now() >= timedelta(hours=hours)


@bp.route('/my-bookings/<int:booking_id>/cancel', methods=['POST'])
@login_required
def cancel_booking(booking_id: int):
    booking = own_booking(booking_id)
    back = redirect(url_for('storefront.booking_detail', booking_id=booking.id))
    if not booking.can_be_cancelled:
        flash('This booking cannot be cancelled. Only pending or confirmed bookings can be '
              'cancelled.', 'error')
        return back
    form = FormReader(request.form)
    reason = form.str('reason', required=True, max_length=500)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return back

    free = free_cancellation(booking)
    booking.status = 'cancelled'
    booking.cancelled_at = datetime.now()
    booking.cancelled_by = g.user.id
    booking.cancellation_reason = reason
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, 'Failed to cancel booking. Please try again.')
        return back
    logger.info("Booking %s cancelled by customer %s", booking.booking_code, g.user.email)
    if free:
        flash('Booking cancelled successfully. Full refund will be processed within 5-7 '
              'business days.', 'success')
    else:
        flash('Booking cancelled. Cancellation fee may apply as per our policy.', 'success')
    return back


@bp.route('/my-bookings/<int:booking_id>/review', methods=['POST'])
@login_required
def review_booking(booking_id: int):
    booking = own_booking(booking_id)
    back = redirect(url_for('storefront.booking_detail', booking_id=booking.id))
    if booking.status != 'completed':
        flash('You can only review completed bookings.', 'error')
        return back
    if booking.review is not None:
        flash('You have already reviewed this booking.', 'error')
        return back
    form = FormReader(request.form)
    rating = form.int('rating', required=True, min_value=1, max_value=5)
    comment = form.str('comment', required=True, max_length=1000)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return back

    review = Review(booking_id=booking.id, car_id=booking.car_id, user_id=g.user.id,
                    rating=rating, comment=comment, status='pending', is_verified_booking=True)
    db.session.add(review)
    db.session.commit()
    logger.info("Review submitted for booking %s", booking.booking_code)
    flash('Thank you! Your review will be visible once approved.', 'success')
    return back


@bp.route('/settings/verification', methods=['GET', 'POST'])
@login_required
def verification():
    record = g.user.verification
    if request.method == 'GET':
        return render_template('storefront/account/verification.html', verification=record,
                               form=model_values(record), license_types=LICENSE_TYPES)

    form = FormReader(request.form)
    data = {
        'driving_license_number': form.str('driving_license_number', max_length=50),
        'license_type': form.choice('license_type', LICENSE_TYPES),
        'license_issue_date': form.date('license_issue_date'),
        'license_expiry_date': form.date('license_expiry_date'),
        'license_issued_country': form.str('license_issued_country', max_length=100),
        'nationality': form.str('nationality', max_length=100),
    }
    issued, expires = data['license_issue_date'], data['license_expiry_date']
    if issued and issued >= date.today():
        form.error('license_issue_date', 'The license issue date must be a date before today.')
    if issued and expires and expires <= issued:
        form.error('license_expiry_date', 'The expiry date must be after the issue date.')
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return render_template('storefront/account/verification.html', verification=record,
                               form=request.form, license_types=LICENSE_TYPES), 422

    saved = []
    try:
        for field, subdir in VERIFICATION_UPLOADS.items():
            upload = request.files.get(field)
            if has_file(upload):
                saved.append((field, save_upload(upload, subdir, IMAGE_EXTENSIONS, field)))
    except ValidationError as e:
        for _, path in saved:
            delete_upload(path)
        flash_errors(e)
        return redirect(url_for('storefront.verification'))

    if record is None:
        record = UserVerification(user_id=g.user.id, status='pending')
        db.session.add(record)
    for field, path in saved:
        delete_upload(getattr(record, field))
        setattr(record, field, path)
    for field, value in data.items():
        setattr(record, field, value)
    if record.status != 'verified':
        record.status = 'pending'
    db.session.commit()
    logger.info("Verification details updated by %s", g.user.email)
    flash('Verification information updated.', 'success')
    return redirect(url_for('storefront.verification'))


@bp.route('/settings/profile', methods=['GET', 'POST'])
@login_required
def profile():
    user = g.user
    if request.method == 'GET':
        return render_template('storefront/account/profile.html', form=model_values(user))

    form = FormReader(request.form)
    data = {
        'name': form.str('name', required=True, max_length=255),
        'email': form.str('email', required=True, max_length=255),
        'phone': form.str('phone', max_length=20),
        'bio': form.str('bio', max_length=1000),
        'address': form.str('address', max_length=500),
        'date_of_birth': form.date('date_of_birth'),
    }
    if data['email']:
        data['email'] = data['email'].lower()
        if '@' not in data['email']:
            form.error('email', 'The email must be a valid email address.')
        elif User.query.filter(User.email == data['email'], User.id != user.id).first():
            form.error('email', 'The email has already been taken.')
    if data['phone'] and not PHONE_PATTERN.match(data['phone']):
        form.error('phone', 'The phone format is invalid.')
    born = data['date_of_birth']
    if born and not date(1900, 1, 1) < born < date.today():
        form.error('date_of_birth', 'The date of birth must be between 1900 and today.')
    try:
        form.validate()
        upload = request.files.get('avatar')
        avatar = save_upload(upload, 'avatars', IMAGE_EXTENSIONS, 'avatar') if has_file(upload) else None
    except ValidationError as e:
        flash_errors(e)
        return render_template('storefront/account/profile.html', form=request.form), 422

    old_avatar = None
    if avatar:
        old_avatar, data['avatar'] = user.avatar, avatar
    if data['email'] != user.email:
        user.email_verified_at = None
    for field, value in data.items():
        setattr(user, field, value)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        delete_upload(avatar)
        report_db_failure(e, 'Failed to update profile. Please try again.')
        return redirect(url_for('storefront.profile'))
    delete_upload(old_avatar)
    logger.info("Profile updated by %s", user.email)
    flash('Profile updated.', 'success')
    return redirect(url_for('storefront.profile'))
