"""Shared fixtures: an app on an in-memory database, a client and model factories."""

import os

os.environ.setdefault('SECRET_KEY', 'testing')
os.environ.setdefault('PAYPAL_CLIENT_ID', 'test-client')
os.environ.setdefault('PAYPAL_CLIENT_SECRET', 'test-secret')

from datetime import datetime, timedelta  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402

from autorental import create_app  # noqa: E402
from autorental.config import TestingConfig  # noqa: E402
from autorental.extensions import db  # noqa: E402
from autorental.models import (Booking, BookingCharge, Car, CarBrand, CarCategory,  # noqa: E402
                               DriverProfile, Location, Payment, Promotion, User)


_sequence = count(1)


@pytest.fixture
def app(tmp_path):
    class Config(TestingConfig):
        UPLOAD_FOLDER = str(tmp_path / 'uploads')

    app = create_app(Config)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Put a user's id in the session, as the login view does."""
    def _login(user):
        with client.session_transaction() as session:
            session['user_id'] = user.id
        return user
    return _login


@pytest.fixture
def make_user(app):
    def _make(role='customer', status='active', password='password', **extra):
        n = next(_sequence)
        user = User(name=extra.pop('name', f'User {n}'),
                    email=extra.pop('email', f'user{n}@example.com'),
                    role=role, status=status, **extra)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role='admin', name='Admin')


@pytest.fixture
def customer(make_user):
    return make_user(name='Customer')


@pytest.fixture
def location(app):
    record = Location(name='Airport', slug='airport', address='1 Runway Road',
                      latitude=10.8188, longitude=106.6519, is_24_7=True, is_airport=True)
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def make_car(make_user, location):
    owner = make_user(role='owner', name='Owner')
    brand = CarBrand(name='Toyota', slug='toyota')
    category = CarCategory(name='Sedan', slug='sedan')
    db.session.add_all([brand, category])
    db.session.commit()

    def _make(**extra):
        n = next(_sequence)
        values = dict(
            owner_id=owner.id, brand_id=brand.id, category_id=category.id,
            location_id=location.id, model='Vios', year=2022, license_plate=f'51A-{n:05d}',
            seats=5, hourly_rate=100000, daily_rate=800000, daily_hour_threshold=10,
            deposit_amount=500000, overtime_fee_per_hour=120000, delivery_fee_per_km=10000,
            max_delivery_distance=30, is_verified=True, status='available',
        )
        values.update(extra)
        car = Car(**values)
        db.session.add(car)
        db.session.commit()
        return car
    return _make


@pytest.fixture
def car(make_car):
    return make_car()


@pytest.fixture
def driver(make_user):
    profile = DriverProfile(user=make_user(name='Driver'), hourly_fee=50000, daily_fee=400000)
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture
def make_promotion(app):
    def _make(code='SAVE10', **extra):
        now = datetime.now()
        values = dict(code=code, name=f'Promotion {code}', discount_type='percentage',
                      discount_value=10, min_rental_hours=1, start_date=now - timedelta(days=1),
                      end_date=now + timedelta(days=30), status='active')
        values.update(extra)
        promotion = Promotion(**values)
        db.session.add(promotion)
        db.session.commit()
        return promotion
    return _make


@pytest.fixture
def make_booking(car):
    def _make(user, status='pending', start=None, hours=24, target_car=None, **extra):
        target_car = target_car or car
        start = start or datetime.now().replace(second=0, microsecond=0) + timedelta(days=3)
        booking = Booking(
            booking_code=Booking.generate_code(), user_id=user.id, owner_id=target_car.owner_id,
            car_id=target_car.id, pickup_location_id=target_car.location_id,
            return_location_id=target_car.location_id, pickup_datetime=start,
            return_datetime=start + timedelta(hours=hours), hourly_rate=target_car.hourly_rate,
            daily_rate=target_car.daily_rate, deposit_amount=target_car.deposit_amount,
            status=status, total_amount=extra.pop('total_amount', 2000000),
            payment_method='paypal', **extra,
        )
        booking.charge = BookingCharge(total_hours=hours, base_amount=1800000, subtotal=1800000,
                                       vat_amount=180000, total_amount=1980000,
                                       deposit_amount=target_car.deposit_amount,
                                       balance_due=1480000)
        db.session.add(booking)
        db.session.commit()
        return booking
    return _make


@pytest.fixture
def make_payment(app):
    def _make(booking, status='completed', amount=1980000, **extra):
        payment = Payment(transaction_id=Payment.generate_transaction_id() + str(next(_sequence)),
                          booking_id=booking.id, user_id=booking.user_id,
                          payment_method=extra.pop('payment_method', 'paypal'),
                          amount=amount, amount_usd=round(amount / 24500, 2), status=status,
                          **extra)
        db.session.add(payment)
        db.session.commit()
        return payment
    return _make
