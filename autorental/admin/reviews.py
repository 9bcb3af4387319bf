import logging

from flask import current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import func, or_

from ..errors import ValidationError, flash_errors
from ..extensions import db
from ..forms import FormReader
from ..listing import apply_sort, paginate
from ..models import REVIEW_STATUSES, Booking, Car, Review, User
from . import bp


logger = logging.getLogger(__name__)

SORTS = {
    'created_at': Review.created_at,
    'rating': Review.rating,
    'status': Review.status,
}


def review_stats() -> dict:
    approved = Review.query.filter_by(status='approved')
    average = approved.with_entities(func.avg(Review.rating)).scalar()
    return {
        'total': Review.query.count(),
        'approved': approved.count(),
        'pending': Review.query.filter_by(status='pending').count(),
        'rejected': Review.query.filter_by(status='rejected').count(),
        'average_rating': round(float(average), 2) if average is not None else 0,
        'by_rating': {rating: approved.filter(Review.rating == rating).count()
                      for rating in range(5, 0, -1)},
    }


def moderate(review, status):
    review.status = status
    review.car.refresh_average_rating()
    db.session.commit()
    logger.info("Review %s %s by %s", review.id, status, g.user.email)


@bp.route('/reviews')
def reviews_index():
    query = (Review.query.join(User, Review.user_id == User.id)
             .join(Car, Review.car_id == Car.id)
             .join(Booking, Review.booking_id == Booking.id))
    status = request.args.get('status', 'all')
    if status in REVIEW_STATUSES:
        query = query.filter(Review.status == status)
    rating = request.args.get('rating', 'all')
    if rating.isdigit() and 1 <= int(rating) <= 5:
        query = query.filter(Review.rating == int(rating))
    verified = request.args.get('verified', 'all')
    if verified == 'yes':
        query = query.filter(Review.is_verified_booking.is_(True))
    elif verified == 'no':
        query = query.filter(Review.is_verified_booking.is_(False))
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Review.comment.ilike(pattern), User.name.ilike(pattern),
                                 User.email.ilike(pattern), Car.name.ilike(pattern),
                                 Car.model.ilike(pattern), Booking.booking_code.ilike(pattern)))
    query = apply_sort(query, request.args.get('sort_by'), request.args.get('sort_order', 'desc'),
                       SORTS, 'created_at')
    reviews = paginate(query, current_app.config['PER_PAGE_ADMIN'])
    return render_template('admin/reviews/index.html', reviews=reviews, stats=review_stats(),
                           filters=request.args, statuses=REVIEW_STATUSES)


@bp.route('/reviews/<int:review_id>')
def reviews_show(review_id: int):
    review = db.get_or_404(Review, review_id)
    return render_template('admin/reviews/show.html', review=review)


@bp.route('/reviews/<int:review_id>/approve', methods=['POST'])
def reviews_approve(review_id: int):
    review = db.get_or_404(Review, review_id)
    review.approve()
    moderate(review, 'approved')
    flash('Review approved successfully.', 'success')
    return redirect(url_for('admin.reviews_show', review_id=review.id))


@bp.route('/reviews/<int:review_id>/reject', methods=['POST'])
def reviews_reject(review_id: int):
    review = db.get_or_404(Review, review_id)
    review.reject()
    moderate(review, 'rejected')
    flash('Review rejected successfully.', 'success')
    return redirect(url_for('admin.reviews_show', review_id=review.id))


@bp.route('/reviews/<int:review_id>/respond', methods=['POST'])
def reviews_respond(review_id: int):
    review = db.get_or_404(Review, review_id)
    form = FormReader(request.form)
    response = form.str('response', required=True, max_length=1000)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return redirect(url_for('admin.reviews_show', review_id=review.id))
    review.add_response(response, g.user)
    db.session.commit()
    flash('Response added successfully.', 'success')
    return redirect(url_for('admin.reviews_show', review_id=review.id))


@bp.route('/reviews/<int:review_id>/delete', methods=['POST'])
def reviews_delete(review_id: int):
    review = db.get_or_404(Review, review_id)
    car = review.car
    db.session.delete(review)
    db.session.flush()
    car.refresh_average_rating()
    db.session.commit()
    flash('Review deleted successfully.', 'success')
    return redirect(url_for('admin.reviews_index'))
