"""Maintenance tasks: schema creation, demo data, promotion archiving and
pickup reminders.

Each task is a plain function so it can be called from ``app.py``'s
command line flags, from ``flask <command>`` or from tests.
"""

import logging
from datetime import datetime, time, timedelta

from .extensions import db
from .models import (Car, CarBrand, CarCategory, DriverProfile, Location, Promotion, User,
                     Booking)
from .listing import slugify


logger = logging.getLogger(__name__)


def init_db():
    """Create all tables."""
    db.create_all()
    logger.info("Database tables created")


def archive_expired_promotions() -> int:
    """Archive every promotion that has expired or used up its quota."""
    archived = 0
    candidates = Promotion.query.filter(Promotion.status != 'archived').all()
    for promotion in candidates:
        if promotion.should_be_archived:
            promotion.status = 'archived'
            archived += 1
            logger.info("Archived promotion %s", promotion.code)
    if archived:
        db.session.commit()
    return archived


def send_booking_reminders(now: datetime = None) -> int:
    """Remind customers whose confirmed pickup is roughly a day away."""
    now = now or datetime.now()
    bookings = (Booking.query
                .filter(Booking.status == 'confirmed',
                        Booking.reminder_sent_at.is_(None),
                        Booking.pickup_datetime >= now + timedelta(hours=23),
                        Booking.pickup_datetime <= now + timedelta(hours=25))
                .all())
    for booking in bookings:
        location = booking.pickup_location.name if booking.pickup_location else 'the agreed address'
        logger.info("Reminder for booking %s: %s picks up %s at %s on %s",
                    booking.booking_code, booking.customer.email, booking.car.display_name,
                    location, booking.pickup_datetime.strftime('%d/%m/%Y %H:%M'))
        booking.reminder_sent_at = now
    if bookings:
        db.session.commit()
    return len(bookings)


def _user(name, email, role, password='password'):
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name, email=email, role=role, email_verified_at=datetime.now())
        user.set_password(password)
        db.session.add(user)
    return user


def _named(model, name, **extra):
    slug = slugify(name)
    record = model.query.filter_by(slug=slug).first()
    if record is None:
        record = model(name=name, slug=slug, **extra)
        db.session.add(record)
    return record


def seed_demo_data():
    """Insert a small, idempotent demo catalogue."""
    admin = _user('Administrator', 'admin@autorental.test', 'admin')
    owner = _user('Minh Owner', 'owner@autorental.test', 'owner')
    _user('Lan Customer', 'customer@autorental.test', 'customer')
    chauffeur = _user('Huy Driver', 'driver@autorental.test', 'customer')

    brands = {name: _named(CarBrand, name, sort_order=index)
              for index, name in enumerate(['Toyota', 'Honda', 'Mazda', 'VinFast', 'Ford'])}
    categories = {
        name: _named(CarCategory, name, icon=icon, sort_order=index)
        for index, (name, icon) in enumerate([('Sedan', 'car'), ('SUV', 'truck'),
                                              ('Hatchback', 'car'), ('Electric', 'zap')])
    }
    locations = [
        _named(Location, 'Tan Son Nhat Airport', address='Truong Son, Tan Binh, Ho Chi Minh City',
               latitude=10.8188, longitude=106.6519, is_airport=True, is_24_7=True, is_popular=True),
        _named(Location, 'District 1 Centre', address='Le Loi, District 1, Ho Chi Minh City',
               latitude=10.7769, longitude=106.7009, is_popular=True,
               opening_time=time(7, 0), closing_time=time(21, 0)),
        _named(Location, 'Noi Bai Airport', address='Phu Minh, Soc Son, Hanoi',
               latitude=21.2187, longitude=105.8042, is_airport=True, is_24_7=True),
    ]
    db.session.flush()

    fleet = [
        ('Toyota', 'Sedan', 'Vios', '51A-123.45', 5, 'automatic', 'petrol', 90000, 700000),
        ('Honda', 'SUV', 'CR-V', '51A-234.56', 7, 'automatic', 'petrol', 150000, 1200000),
        ('Mazda', 'Sedan', 'Mazda3', '51A-345.67', 5, 'automatic', 'petrol', 110000, 900000),
        ('VinFast', 'Electric', 'VF e34', '51A-456.78', 5, 'automatic', 'electric', 100000, 850000),
        ('Ford', 'SUV', 'Everest', '30A-567.89', 7, 'manual', 'diesel', 160000, 1400000),
    ]
    for index, (brand, category, model, plate, seats, gearbox, fuel, hourly, daily) in enumerate(fleet):
        if Car.query.filter_by(license_plate=plate).first() is not None:
            continue
        db.session.add(Car(
            owner_id=owner.id, brand_id=brands[brand].id, category_id=categories[category].id,
            location_id=locations[index % len(locations)].id, name=f"{brand} {model}", model=model,
            year=2022, license_plate=plate, seats=seats, transmission=gearbox, fuel_type=fuel,
            hourly_rate=hourly, daily_rate=daily, deposit_amount=daily, overtime_fee_per_hour=hourly,
            delivery_fee_per_km=10000, max_delivery_distance=30, is_verified=True,
            features={'air_conditioning': True, 'bluetooth': True, 'gps': index % 2 == 0},
        ))

    if chauffeur.driver_profile is None:
        db.session.add(DriverProfile(user=chauffeur, owner_id=owner.id, hourly_fee=60000,
                                     daily_fee=500000, overtime_fee_per_hour=70000))

    if Promotion.query.filter_by(code='WELCOME10').first() is None:
        now = datetime.now()
        db.session.add(Promotion(
            code='WELCOME10', name='Welcome New Customer',
            description='Get 10% off on your first car rental with us.',
            discount_type='percentage', discount_value=10, max_discount=200000,
            start_date=now - timedelta(days=30), end_date=now + timedelta(days=60),
            status='active', is_featured=True, priority=1, created_by=admin.id,
        ))
    db.session.commit()
    logger.info("Demo data seeded")


def register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        init_db()
        print('Initialised the database.')

    @app.cli.command('seed')
    def seed_command():
        """Load demo users, catalogue and a promotion."""
        seed_demo_data()
        print('Seeded demo data.')

    @app.cli.command('archive-promotions')
    def archive_promotions_command():
        """Archive expired or used-up promotions."""
        print(f'Archived {archive_expired_promotions()} promotion(s).')

    @app.cli.command('send-reminders')
    def send_reminders_command():
        """Send reminders for pickups due in about 24 hours."""
        print(f'Sent {send_booking_reminders()} reminder(s).')
