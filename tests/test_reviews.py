import pytest

from autorental.extensions import db
from autorental.models import Review


@pytest.fixture
def make_review(make_booking, customer):
    def _make(rating=5, status='pending', comment='Clean and quick'):
        booking = make_booking(customer, status='completed')
        review = Review(booking_id=booking.id, car_id=booking.car_id, user_id=customer.id,
                        rating=rating, comment=comment, status=status)
        db.session.add(review)
        db.session.commit()
        return review
    return _make


def test_approval_updates_car_rating(client, login, admin, car, make_review):
    first = make_review(rating=5)
    second = make_review(rating=2)
    login(admin)
    client.post(f'/admin/reviews/{first.id}/approve')
    assert first.status == 'approved'
    assert car.average_rating == 5
    client.post(f'/admin/reviews/{second.id}/approve')
    assert car.average_rating == 3.5


def test_rejection_removes_from_average(client, login, admin, car, make_review):
    review = make_review(rating=4, status='approved')
    car.refresh_average_rating()
    db.session.commit()
    login(admin)
    client.post(f'/admin/reviews/{review.id}/reject')
    assert review.status == 'rejected'
    assert car.average_rating is None


def test_response(client, login, admin, make_review):
    review = make_review()
    login(admin)
    client.post(f'/admin/reviews/{review.id}/respond', data={'response': 'Thanks for riding!'})
    assert review.response == 'Thanks for riding!'
    assert review.responded_by == admin.id
    assert review.responded_at is not None


def test_delete_refreshes_rating(client, login, admin, car, make_review):
    keep = make_review(rating=4, status='approved')
    drop = make_review(rating=1, status='approved')
    car.refresh_average_rating()
    db.session.commit()
    assert car.average_rating == 2.5
    login(admin)
    client.post(f'/admin/reviews/{drop.id}/delete')
    assert Review.query.all() == [keep]
    assert car.average_rating == 4


def test_index_filters(client, login, admin, make_review):
    make_review(comment='Loved the sunroof', rating=5)
    make_review(comment='Engine light on', rating=1)
    login(admin)
    body = client.get('/admin/reviews?rating=1').get_data(as_text=True)
    assert 'Engine light on' in body
    assert 'Loved the sunroof' not in body


def test_approved_reviews_show_on_car_page(client, car, make_review):
    make_review(comment='Smooth ride', status='approved')
    make_review(comment='Hidden until moderated')
    body = client.get(f'/cars/{car.id}').get_data(as_text=True)
    assert 'Smooth ride' in body
    assert 'Hidden until moderated' not in body
