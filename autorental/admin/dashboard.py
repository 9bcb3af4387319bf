from datetime import date, datetime

from flask import render_template
from sqlalchemy import func

from ..extensions import db
from ..models import Booking, Car, Payment, Review, User
from . import bp


STATUS_CHART = [
    ('pending', 'Pending', '#fbbf24'),
    ('confirmed', 'Confirmed', '#3b82f6'),
    ('completed', 'Completed', '#22c55e'),
    ('cancelled', 'Cancelled', '#ef4444'),
]


def month_bounds(today: date, months_back: int) -> tuple:
    """First instant of the month ``months_back`` before ``today`` and of the month after it."""
    year, month = today.year, today.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def completed_revenue(start=None, end=None) -> float:
    query = db.session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.status == 'completed')
    if start is not None:
        query = query.filter(Payment.paid_at >= start)
    if end is not None:
        query = query.filter(Payment.paid_at < end)
    return float(query.scalar() or 0)


def dashboard_context(today: date = None) -> dict:
    today = today or date.today()
    day_start = datetime.combine(today, datetime.min.time())
    month_start, _ = month_bounds(today, 0)

    approved = Review.query.filter_by(status='approved')
    average = approved.with_entities(func.avg(Review.rating)).scalar()
    stats = {
        'users': {
            'total': User.active_query().count(),
            'active': User.active_query().filter_by(status='active').count(),
            'verified': User.active_query().filter(User.email_verified_at.isnot(None)).count(),
        },
        'cars': {
            'total': Car.query.count(),
            'available': Car.query.filter_by(status='available').count(),
            'rented': Car.query.filter_by(status='rented').count(),
        },
        'bookings': {
            'total': Booking.query.count(),
            'pending': Booking.query.filter_by(status='pending').count(),
            'confirmed': Booking.query.filter_by(status='confirmed').count(),
            'completed': Booking.query.filter_by(status='completed').count(),
        },
        'revenue': {
            'total': completed_revenue(),
            'today': completed_revenue(day_start),
            'month': completed_revenue(month_start),
        },
        'reviews': {
            'total': Review.query.count(),
            'pending': Review.query.filter_by(status='pending').count(),
            'approved': approved.count(),
            'average_rating': round(float(average), 2) if average is not None else 0,
        },
    }

    monthly_bookings = []
    monthly_revenue = []
    for months_back in range(5, -1, -1):
        start, end = month_bounds(today, months_back)
        label = start.strftime('%b %Y')
        count = Booking.query.filter(Booking.created_at >= start, Booking.created_at < end).count()
        monthly_bookings.append({'month': label, 'bookings': count})
        monthly_revenue.append({'month': label, 'revenue': completed_revenue(start, end)})

    charts = {
        'monthly_bookings': monthly_bookings,
        'monthly_revenue': monthly_revenue,
        'bookings_by_status': [
            {'name': label, 'value': Booking.query.filter_by(status=status).count(), 'color': color}
            for status, label, color in STATUS_CHART
        ],
        'reviews_by_rating': [
            {'rating': f"{rating} Stars", 'count': Review.query.filter_by(rating=rating).count()}
            for rating in range(5, 0, -1)
        ],
    }
    return {'stats': stats, 'charts': charts}


@bp.route('/')
def dashboard():
    """Headline numbers for the back office landing page."""
    return render_template('admin/dashboard.html', **dashboard_context())
