from datetime import date, datetime

import pytest

from autorental.admin.dashboard import dashboard_context, month_bounds
from autorental.extensions import db
from autorental.models import Review


TODAY = date(2030, 3, 15)


@pytest.fixture
def activity(customer, make_booking, make_payment):
    """Bookings, payments and reviews spread over the months before TODAY."""
    completed = make_booking(customer, status='completed', created_at=datetime(2030, 3, 2))
    confirmed = make_booking(customer, status='confirmed', created_at=datetime(2030, 1, 20))
    cancelled = make_booking(customer, status='cancelled', created_at=datetime(2029, 8, 1))
    make_booking(customer, status='pending', created_at=datetime(2030, 3, 14))

    make_payment(completed, amount=1000000, paid_at=datetime(2030, 3, 15, 10))
    make_payment(confirmed, amount=500000, paid_at=datetime(2030, 1, 21))
    make_payment(confirmed, amount=200000, paid_at=datetime(2029, 12, 5))
    make_payment(cancelled, status='refunded', amount=700000, paid_at=datetime(2030, 3, 10))
    make_payment(completed, status='pending', amount=300000)

    db.session.add_all([
        Review(booking_id=completed.id, car_id=completed.car_id, user_id=customer.id,
               rating=5, status='approved'),
        Review(booking_id=confirmed.id, car_id=confirmed.car_id, user_id=customer.id,
               rating=4, status='approved'),
        Review(booking_id=cancelled.id, car_id=cancelled.car_id, user_id=customer.id,
               rating=2, status='pending'),
    ])
    db.session.commit()


def test_month_bounds_cross_the_year():
    assert month_bounds(TODAY, 3) == (datetime(2029, 12, 1), datetime(2030, 1, 1))
    assert month_bounds(date(2030, 12, 31), 0) == (datetime(2030, 12, 1), datetime(2031, 1, 1))


def test_revenue_counts_completed_payments_only(activity):
    revenue = dashboard_context(TODAY)['stats']['revenue']
    assert revenue == {'total': 1700000, 'today': 1000000, 'month': 1000000}


def test_booking_and_review_counts(activity, car):
    stats = dashboard_context(TODAY)['stats']
    assert stats['bookings'] == {'total': 4, 'pending': 1, 'confirmed': 1, 'completed': 1}
    assert stats['cars'] == {'total': 1, 'available': 1, 'rented': 0}
    assert stats['reviews'] == {'total': 3, 'pending': 1, 'approved': 2, 'average_rating': 4.5}


def test_six_month_series(activity):
    charts = dashboard_context(TODAY)['charts']
    assert [row['month'] for row in charts['monthly_bookings']] == [
        'Oct 2029', 'Nov 2029', 'Dec 2029', 'Jan 2030', 'Feb 2030', 'Mar 2030']
    assert [row['bookings'] for row in charts['monthly_bookings']] == [0, 0, 0, 1, 0, 2]
    assert [row['revenue'] for row in charts['monthly_revenue']] == [
        0, 0, 200000, 500000, 0, 1000000]


def test_status_and_rating_breakdowns(activity):
    charts = dashboard_context(TODAY)['charts']
    assert {row['name']: row['value'] for row in charts['bookings_by_status']} == {
        'Pending': 1, 'Confirmed': 1, 'Completed': 1, 'Cancelled': 1}
    assert [row['count'] for row in charts['reviews_by_rating']] == [1, 1, 0, 1, 0]
    assert charts['reviews_by_rating'][0]['rating'] == '5 Stars'


def test_empty_dashboard(app):
    context = dashboard_context(TODAY)
    assert context['stats']['revenue']['total'] == 0
    assert context['stats']['reviews']['average_rating'] == 0
    assert len(context['charts']['monthly_revenue']) == 6
