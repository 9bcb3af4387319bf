import os
from datetime import date, datetime, timedelta
from io import BytesIO

import pytest

from autorental.extensions import db
from autorental.models import Booking, BookingPromotion, Contact, Review, UserVerification


FMT = '%Y-%m-%dT%H:%M'


def window(days=3, hours=24):
    start = (datetime.now() + timedelta(days=days)).replace(minute=0, second=0, microsecond=0)
    return start, start + timedelta(hours=hours)


def booking_form(car, location, start, end, **extra):
    data = {
        'car_id': car.id,
        'pickup_datetime': start.strftime(FMT),
        'return_datetime': end.strftime(FMT),
        'pickup_location_id': location.id,
        'return_location_id': location.id,
        'payment_method': 'paypal',
    }
    data.update(extra)
    return data


class TestPages:

    @pytest.mark.parametrize('path', ['/', '/about', '/services', '/locations', '/contact', '/cars'])
    def test_public_pages_render(self, client, car, path):
        assert client.get(path).status_code == 200

    def test_contact_message_is_stored(self, client):
        response = client.post('/contact', data={
            'name': 'Lan', 'email': 'lan@example.com', 'subject': 'Airport pickup',
            'message': 'Do you deliver at night?',
        })
        assert response.status_code == 302
        message = Contact.query.one()
        assert message.status == 'new'
        assert message.subject == 'Airport pickup'

    def test_contact_requires_valid_email(self, client):
        response = client.post('/contact', data={'name': 'Lan', 'email': 'nope',
                                                  'subject': 'Hi', 'message': 'Hello'})
        assert response.status_code == 422
        assert Contact.query.count() == 0


class TestCars:

    def test_only_available_verified_cars_are_listed(self, client, make_car):
        make_car(model='Visible')
        make_car(model='Unverified', is_verified=False)
        make_car(model='Servicing', status='maintenance')
        body = client.get('/cars').get_data(as_text=True)
        assert 'Visible' in body
        assert 'Unverified' not in body
        assert 'Servicing' not in body

    def test_price_filter(self, client, make_car):
        make_car(model='Budget', daily_rate=500000)
        make_car(model='Luxury', daily_rate=3000000)
        body = client.get('/cars?price_max=1000000').get_data(as_text=True)
        assert 'Budget' in body
        assert 'Luxury' not in body

    def test_non_finite_price_filter_is_ignored(self, client, make_car):
        make_car(model='Budget', daily_rate=500000)
        make_car(model='Luxury', daily_rate=3000000)
        body = client.get('/cars?price_min=-inf&price_max=nan').get_data(as_text=True)
        assert 'Budget' in body
        assert 'Luxury' in body

    def test_unavailable_car_detail_is_404(self, client, make_car):
        hidden = make_car(status='maintenance')
        assert client.get(f'/cars/{hidden.id}').status_code == 404

    def test_car_detail(self, client, car):
        response = client.get(f'/cars/{car.id}')
        assert response.status_code == 200
        assert 'Vios' in response.get_data(as_text=True)


class TestCheckout:

    def test_checkout_prices_the_default_window(self, client, car):
        pickup = date.today() + timedelta(days=1)
        response = client.get('/booking/checkout', query_string={
            'car_id': car.id, 'pickup_date': pickup.isoformat(),
            'return_date': (pickup + timedelta(days=1)).isoformat(),
        })
        assert response.status_code == 200

    def test_checkout_rejects_past_dates(self, client, car):
        response = client.get('/booking/checkout', query_string={
            'car_id': car.id, 'pickup_date': '2000-01-01', 'return_date': '2000-01-02',
        })
        assert response.status_code == 302
        assert response.headers['Location'].endswith(f'/cars/{car.id}')

    def test_calculate(self, client, car, location):
        start, end = window(hours=12)
        response = client.post('/booking/calculate', json={
            'car_id': car.id, 'pickup_datetime': start.strftime(FMT),
            'return_datetime': end.strftime(FMT), 'pickup_location_id': location.id,
        })
        assert response.status_code == 200
        data = response.get_json()
        assert data['rental']['base_amount'] == 800000 + 2 * 100000
        assert data['total_amount'] == 1100000

    def test_calculate_rejects_undeliverable_distance(self, client, car):
        start, end = window()
        response = client.post('/booking/calculate', json={
            'car_id': car.id, 'pickup_datetime': start.strftime(FMT),
            'return_datetime': end.strftime(FMT), 'is_delivery': True, 'delivery_distance': 100,
        })
        assert response.status_code == 422
        assert 'is_delivery' in response.get_json()['errors']

    def test_calculate_rejects_non_finite_distance(self, client, car):
        start, end = window()
        response = client.post('/booking/calculate', json={
            'car_id': car.id, 'pickup_datetime': start.strftime(FMT),
            'return_datetime': end.strftime(FMT), 'is_delivery': 'on',
            'delivery_distance': 'nan',
        })
        assert response.status_code == 422
        assert 'delivery_distance' in response.get_json()['errors']

    def test_calculate_rejects_non_object_json(self, client):
        response = client.post('/booking/calculate', json=[1, 2, 3])
        assert response.status_code == 422
        assert 'car_id' in response.get_json()['errors']

    def test_calculate_validation(self, client, car):
        start, _ = window()
        response = client.post('/booking/calculate', json={
            'car_id': car.id, 'pickup_datetime': start.strftime(FMT),
            'return_datetime': start.strftime(FMT),
        })
        assert response.status_code == 422
        assert 'return_datetime' in response.get_json()['errors']


class TestValidatePromotion:

    def test_valid_code(self, client, car, make_promotion):
        make_promotion('SAVE10')
        response = client.post('/booking/validate-promotion',
                               json={'code': 'save10', 'car_id': car.id, 'total_amount': 1000000})
        data = response.get_json()
        assert response.status_code == 200
        assert data['valid'] is True
        assert data['promotion']['discount_amount'] == 100000
        assert data['message'] == 'Promotion applied successfully'

    def test_expired_code(self, client, car, make_promotion):
        make_promotion('OLD', end_date=datetime.now() - timedelta(days=1))
        response = client.post('/booking/validate-promotion',
                               json={'code': 'OLD', 'car_id': car.id, 'total_amount': 1000000})
        assert response.status_code == 422
        assert response.get_json()['message'] == 'Invalid or expired promotion code'

    def test_usage_limit(self, client, car, make_promotion):
        make_promotion('FULL', max_uses=2, used_count=2)
        response = client.post('/booking/validate-promotion',
                               json={'code': 'FULL', 'car_id': car.id, 'total_amount': 1000000})
        assert response.get_json()['message'] == 'This promotion has reached its usage limit'

    def test_minimum_amount(self, client, car, make_promotion):
        make_promotion('BIG', min_amount=2000000)
        response = client.post('/booking/validate-promotion',
                               json={'code': 'BIG', 'car_id': car.id, 'total_amount': 1000000})
        assert response.get_json()['message'] == 'Minimum rental amount is 2,000,000 for this promotion'


class TestStore:

    def test_login_required(self, client, car, location):
        start, end = window()
        response = client.post('/booking', data=booking_form(car, location, start, end))
        assert response.status_code == 302
        assert '/login' in response.headers['Location']
        assert Booking.query.count() == 0

    def test_creates_pending_booking_with_charge(self, client, login, customer, car, location):
        login(customer)
        start, end = window(hours=10)
        response = client.post('/booking', data=booking_form(car, location, start, end))
        booking = Booking.query.one()
        assert response.headers['Location'].endswith(f'/booking/{booking.id}/confirmation')
        assert booking.status == 'pending'
        assert booking.payment_status == 'pending'
        assert booking.owner_id == car.owner_id
        assert booking.hourly_rate == 100000
        assert booking.charge.base_amount == 800000
        assert booking.total_amount == booking.charge.total_amount == 880000
        assert booking.booking_code.startswith(f'BK-{datetime.now().year}-')

    def test_promotion_is_recorded_and_counted(self, client, login, customer, car, location,
                                               make_promotion):
        promotion = make_promotion('SAVE10')
        login(customer)
        start, end = window(hours=10)
        client.post('/booking', data=booking_form(car, location, start, end,
                                                  promotion_code='SAVE10'))
        booking = Booking.query.one()
        assert booking.charge.discount_amount == 80000
        applied = BookingPromotion.query.one()
        assert applied.promotion_code == 'SAVE10'
        assert promotion.used_count == 1

    def test_invalid_promotion_blocks_booking(self, client, login, customer, car, location):
        login(customer)
        start, end = window()
        client.post('/booking', data=booking_form(car, location, start, end,
                                                  promotion_code='NOPE'))
        assert Booking.query.count() == 0

    def test_overlapping_booking_is_refused(self, client, login, customer, car, location,
                                            make_booking):
        start, end = window()
        make_booking(customer, status='confirmed', start=start, hours=24)
        login(customer)
        response = client.post('/booking', data=booking_form(
            car, location, start + timedelta(hours=6), end + timedelta(hours=6)))
        assert response.headers['Location'].endswith(f'/cars/{car.id}')
        assert Booking.query.count() == 1

    def test_touching_windows_conflict(self, client, login, customer, car, location, make_booking):
        start, end = window()
        make_booking(customer, status='pending', start=start, hours=24)
        login(customer)
        client.post('/booking', data=booking_form(car, location, end, end + timedelta(hours=5)))
        assert Booking.query.count() == 1

    def test_cancelled_bookings_release_the_car(self, client, login, customer, car, location,
                                                make_booking):
        start, end = window()
        make_booking(customer, status='cancelled', start=start, hours=24)
        login(customer)
        client.post('/booking', data=booking_form(car, location, start, end))
        assert Booking.query.count() == 2

    def test_pickup_in_the_past(self, client, login, customer, car, location):
        login(customer)
        start = datetime.now() - timedelta(days=1)
        client.post('/booking', data=booking_form(car, location, start, start + timedelta(hours=5)))
        assert Booking.query.count() == 0

    def test_delivery_needs_an_address(self, client, login, customer, car, location):
        login(customer)
        start, end = window()
        client.post('/booking', data=booking_form(car, location, start, end, is_delivery='1',
                                                  delivery_distance='5'))
        assert Booking.query.count() == 0

    def test_confirmation_is_private(self, client, login, make_user, customer, make_booking):
        booking = make_booking(customer)
        login(make_user())
        assert client.get(f'/booking/{booking.id}/confirmation').status_code == 403
        login(customer)
        assert client.get(f'/booking/{booking.id}/confirmation').status_code == 200


class TestAccount:

    def test_dashboard_and_bookings_render(self, client, login, customer, make_booking):
        make_booking(customer)
        login(customer)
        assert client.get('/dashboard').status_code == 200
        assert client.get('/my-bookings').status_code == 200

    def test_other_customers_booking_is_forbidden(self, client, login, make_user, customer,
                                                  make_booking):
        booking = make_booking(customer)
        login(make_user())
        assert client.get(f'/my-bookings/{booking.id}').status_code == 403

    def test_free_cancellation(self, client, login, customer, make_booking):
        booking = make_booking(customer, status='confirmed')
        login(customer)
        client.post(f'/my-bookings/{booking.id}/cancel', data={'reason': 'Plans changed'})
        assert booking.status == 'cancelled'
        assert booking.cancelled_by == customer.id
        assert booking.cancellation_reason == 'Plans changed'
        with client.session_transaction() as session:
            messages = [message for _, message in session['_flashes']]
        assert messages[-1].startswith('Booking cancelled successfully.')

    def test_late_cancellation_warns_about_fee(self, client, login, customer, make_booking):
        booking = make_booking(customer, start=datetime.now() + timedelta(hours=3))
        login(customer)
        client.post(f'/my-bookings/{booking.id}/cancel', data={'reason': 'Sick'})
        assert booking.status == 'cancelled'
        with client.session_transaction() as session:
            messages = [message for _, message in session['_flashes']]
        assert messages[-1] == 'Booking cancelled. Cancellation fee may apply as per our policy.'

    def test_cancel_requires_reason(self, client, login, customer, make_booking):
        booking = make_booking(customer)
        login(customer)
        client.post(f'/my-bookings/{booking.id}/cancel', data={})
        assert booking.status == 'pending'

    def test_active_booking_cannot_be_cancelled(self, client, login, customer, make_booking):
        booking = make_booking(customer, status='active')
        login(customer)
        client.post(f'/my-bookings/{booking.id}/cancel', data={'reason': 'Too late'})
        assert booking.status == 'active'

    def test_review_completed_booking(self, client, login, customer, make_booking):
        booking = make_booking(customer, status='completed')
        login(customer)
        client.post(f'/my-bookings/{booking.id}/review', data={'rating': '5', 'comment': 'Great'})
        review = Review.query.one()
        assert review.status == 'pending'
        assert review.is_verified_booking is True
        assert review.car_id == booking.car_id

    def test_review_only_once(self, client, login, customer, make_booking):
        booking = make_booking(customer, status='completed')
        login(customer)
        client.post(f'/my-bookings/{booking.id}/review', data={'rating': '4', 'comment': 'Good'})
        client.post(f'/my-bookings/{booking.id}/review', data={'rating': '1', 'comment': 'Again'})
        assert Review.query.count() == 1

    def test_review_needs_completed_booking(self, client, login, customer, make_booking):
        booking = make_booking(customer, status='confirmed')
        login(customer)
        client.post(f'/my-bookings/{booking.id}/review', data={'rating': '5', 'comment': 'Early'})
        assert Review.query.count() == 0

    def test_verification_submission(self, client, login, customer):
        login(customer)
        assert client.get('/settings/verification').status_code == 200
        response = client.post('/settings/verification', data={
            'driving_license_number': 'B2-123456', 'license_type': 'B2',
            'license_issue_date': '2020-05-01', 'license_expiry_date': '2030-05-01',
            'nationality': 'Vietnamese',
        })
        assert response.status_code == 302
        record = UserVerification.query.filter_by(user_id=customer.id).one()
        assert record.status == 'pending'
        assert record.license_type == 'B2'

    def test_verification_dates_are_checked(self, client, login, customer):
        login(customer)
        response = client.post('/settings/verification', data={
            'license_issue_date': '2020-05-01', 'license_expiry_date': '2019-05-01',
        })
        assert response.status_code == 422
        assert db.session.query(UserVerification).count() == 0


class TestProfile:

    def form(self, user, **extra):
        data = {'name': user.name, 'email': user.email}
        data.update(extra)
        return data

    def test_profile_update(self, client, login, customer):
        login(customer)
        assert client.get('/settings/profile').status_code == 200
        response = client.post('/settings/profile', data=self.form(
            customer, name='Nguyen Lan', phone='+84 90-123-4567', bio='Weekend driver',
            address='12 Ly Thai To, Hanoi', date_of_birth='1990-04-30'))
        assert response.status_code == 302
        assert customer.name == 'Nguyen Lan'
        assert customer.bio == 'Weekend driver'
        assert customer.date_of_birth == date(1990, 4, 30)

    def test_email_change_resets_verification(self, client, login, make_user):
        user = make_user(email_verified_at=datetime.now())
        login(user)
        client.post('/settings/profile', data=self.form(user, email='New.Address@Example.com'))
        assert user.email == 'new.address@example.com'
        assert user.email_verified_at is None

    def test_unchanged_email_stays_verified(self, client, login, make_user):
        user = make_user(email_verified_at=datetime.now())
        login(user)
        client.post('/settings/profile', data=self.form(user, bio='Hello'))
        assert user.email_verified_at is not None

    def test_taken_email_is_rejected(self, client, login, make_user, customer):
        other = make_user()
        login(customer)
        response = client.post('/settings/profile', data=self.form(customer, email=other.email))
        assert response.status_code == 422
        assert customer.email != other.email

    def test_invalid_phone_and_birth_date(self, client, login, customer):
        login(customer)
        response = client.post('/settings/profile', data=self.form(
            customer, phone='call me', date_of_birth=(date.today() + timedelta(days=1)).isoformat()))
        assert response.status_code == 422
        assert customer.phone is None

    def test_new_avatar_replaces_the_old_file(self, app, client, login, customer):
        login(customer)
        client.post('/settings/profile', data=self.form(customer, avatar=(BytesIO(b'one'), 'me.png')),
                    content_type='multipart/form-data')
        first = customer.avatar
        assert first.startswith('avatars/')
        assert os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], first))

        client.post('/settings/profile', data=self.form(customer, avatar=(BytesIO(b'two'), 'me2.jpg')),
                    content_type='multipart/form-data')
        assert customer.avatar != first
        assert not os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], first))
        assert os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], customer.avatar))

    def test_avatar_type_is_checked(self, client, login, customer):
        login(customer)
        response = client.post('/settings/profile',
                               data=self.form(customer, avatar=(BytesIO(b'x'), 'me.gif')),
                               content_type='multipart/form-data')
        assert response.status_code == 422
        assert customer.avatar is None
