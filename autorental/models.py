"""Database models for the car rental marketplace.

Every table lives in this module.  Money columns are plain floats holding
VND amounts and all timestamps are naive local datetimes.
"""

from datetime import datetime, date, time
from uuid import uuid4

from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db


ROLES = ('customer', 'owner', 'admin')
USER_STATUSES = ('active', 'inactive', 'suspended', 'banned')
VERIFICATION_STATUSES = ('pending', 'verified', 'rejected', 'expired')
DRIVER_STATUSES = ('available', 'on_duty', 'off_duty', 'suspended')
CAR_STATUSES = ('available', 'rented', 'maintenance', 'inactive')
TRANSMISSIONS = ('manual', 'automatic')
FUEL_TYPES = ('petrol', 'diesel', 'electric', 'hybrid')
DISCOUNT_TYPES = ('percentage', 'fixed_amount')
PROMOTION_STATUSES = ('active', 'paused', 'upcoming', 'archived')
BOOKING_STATUSES = ('pending', 'confirmed', 'active', 'completed', 'cancelled', 'rejected')
BOOKING_PAYMENT_METHODS = ('credit_card', 'paypal', 'bank_transfer')
BOOKING_PAYMENT_STATUSES = ('pending', 'paid', 'failed', 'refunded')
PAYMENT_METHODS = ('cash', 'paypal', 'credit_card', 'bank_transfer', 'wallet')
PAYMENT_TYPES = ('deposit', 'full_payment', 'partial', 'refund')
PAYMENT_STATUSES = ('pending', 'completed', 'failed', 'refunded', 'cancelled')
REVIEW_STATUSES = ('pending', 'approved', 'rejected')

# Cars that still have one of these bookings are considered in use.
OPEN_BOOKING_STATUSES = ('pending', 'confirmed', 'active')


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now,
                           nullable=False)


# ---------------------------------------------------------------------------
# Accounts

class User(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    email_verified_at = db.Column(db.DateTime)
    phone = db.Column(db.String(20))
    address = db.Column(db.Text)
    bio = db.Column(db.Text)
    avatar = db.Column(db.String(255))
    date_of_birth = db.Column(db.Date)
    role = db.Column(db.String(20), default='customer', nullable=False)
    status = db.Column(db.String(20), default='active', nullable=False)
    status_note = db.Column(db.Text)
    deletion_requested_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)

    verification = db.relationship('UserVerification', back_populates='user', uselist=False,
                                   foreign_keys='UserVerification.user_id')
    driver_profile = db.relationship('DriverProfile', back_populates='user', uselist=False,
                                     foreign_keys='DriverProfile.user_id')
    cars = db.relationship('Car', back_populates='owner')
    bookings = db.relationship('Booking', back_populates='customer',
                               foreign_keys='Booking.user_id')
    reviews = db.relationship('Review', back_populates='user', foreign_keys='Review.user_id')

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    @property
    def is_restricted(self) -> bool:
        return self.status in ('suspended', 'banned')

    @property
    def is_verified(self) -> bool:
        return self.verification is not None and self.verification.status == 'verified'

    @classmethod
    def active_query(cls):
        """Users that have not been soft deleted."""
        return cls.query.filter(cls.deleted_at.is_(None))

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class UserVerification(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    driving_license_number = db.Column(db.String(50))
    license_type = db.Column(db.String(20))
    license_issue_date = db.Column(db.Date)
    license_expiry_date = db.Column(db.Date)
    license_issued_country = db.Column(db.String(100))
    nationality = db.Column(db.String(100))
    driving_license_image = db.Column(db.String(255))
    id_image = db.Column(db.String(255))
    selfie_image = db.Column(db.String(255))
    status = db.Column(db.String(20), default='pending', nullable=False)
    verified_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    verified_at = db.Column(db.DateTime)
    rejected_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    rejected_at = db.Column(db.DateTime)
    rejected_reason = db.Column(db.Text)

    user = db.relationship('User', back_populates='verification', foreign_keys=[user_id])
    verifier = db.relationship('User', foreign_keys=[verified_by])
    rejecter = db.relationship('User', foreign_keys=[rejected_by])

    @property
    def license_expired(self) -> bool:
        return self.license_expiry_date is not None and self.license_expiry_date < date.today()

    def __repr__(self) -> str:
        return f"<UserVerification user={self.user_id} {self.status}>"


# ---------------------------------------------------------------------------
# Catalogue

class Location(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text)
    address = db.Column(db.String(500), nullable=False)
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    phone = db.Column(db.String(20))
    email = db.Column(db.String(255))
    opening_time = db.Column(db.Time, default=time(8, 0))
    closing_time = db.Column(db.Time, default=time(18, 0))
    is_24_7 = db.Column(db.Boolean, default=False, nullable=False)
    is_airport = db.Column(db.Boolean, default=False, nullable=False)
    is_popular = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    cars = db.relationship('Car', back_populates='location')

    def is_open(self, at: datetime = None) -> bool:
        if not self.is_active:
            return False
        if self.is_24_7:
            return True
        if self.opening_time is None or self.closing_time is None:
            return False
        current = (at or datetime.now()).time()
        return self.opening_time <= current <= self.closing_time

    @property
    def operating_hours(self) -> str:
        if self.is_24_7:
            return '24/7'
        if self.opening_time is None or self.closing_time is None:
            return 'Hours not set'
        return f"{self.opening_time.strftime('%H:%M')} - {self.closing_time.strftime('%H:%M')}"

    def __repr__(self) -> str:
        return f"<Location {self.slug}>"


class CarCategory(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    icon = db.Column(db.String(50), default='car')
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    cars = db.relationship('Car', back_populates='category')

    def __repr__(self) -> str:
        return f"<CarCategory {self.slug}>"


class CarBrand(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    logo = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    cars = db.relationship('Car', back_populates='brand')

    def __repr__(self) -> str:
        return f"<CarBrand {self.slug}>"


class Car(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('car_category.id'), nullable=False)
    brand_id = db.Column(db.Integer, db.ForeignKey('car_brand.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('location.id'))

    name = db.Column(db.String(255))
    model = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(50))
    year = db.Column(db.Integer, nullable=False)
    license_plate = db.Column(db.String(20), unique=True, nullable=False)
    vin = db.Column(db.String(17), unique=True)
    seats = db.Column(db.Integer, default=5, nullable=False)
    transmission = db.Column(db.String(20), default='automatic', nullable=False)
    fuel_type = db.Column(db.String(20), default='petrol', nullable=False)

    odometer_km = db.Column(db.Integer, default=0)
    insurance_expiry = db.Column(db.Date)
    registration_expiry = db.Column(db.Date)
    last_maintenance_date = db.Column(db.Date)
    next_maintenance_km = db.Column(db.Integer)

    is_delivery_available = db.Column(db.Boolean, default=True, nullable=False)
    status = db.Column(db.String(20), default='available', nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    description = db.Column(db.Text)
    features = db.Column(db.JSON)

    hourly_rate = db.Column(db.Float, default=0, nullable=False)
    daily_rate = db.Column(db.Float, default=0, nullable=False)
    daily_hour_threshold = db.Column(db.Integer, default=10, nullable=False)
    deposit_amount = db.Column(db.Float, default=0, nullable=False)
    min_rental_hours = db.Column(db.Integer, default=4, nullable=False)
    overtime_fee_per_hour = db.Column(db.Float)
    delivery_fee_per_km = db.Column(db.Float)
    max_delivery_distance = db.Column(db.Integer)

    rental_count = db.Column(db.Integer, default=0, nullable=False)
    average_rating = db.Column(db.Float)

    owner = db.relationship('User', back_populates='cars')
    category = db.relationship('CarCategory', back_populates='cars')
    brand = db.relationship('CarBrand', back_populates='cars')
    location = db.relationship('Location', back_populates='cars')
    images = db.relationship('CarImage', back_populates='car', order_by='CarImage.sort_order',
                             cascade='all, delete-orphan')
    bookings = db.relationship('Booking', back_populates='car')
    reviews = db.relationship('Review', back_populates='car')

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        brand = self.brand.name if self.brand else ''
        return f"{brand} {self.model}".strip()

    @property
    def primary_image(self):
        for image in self.images:
            if image.is_primary:
                return image
        return self.images[0] if self.images else None

    @property
    def needs_maintenance(self) -> bool:
        if not self.next_maintenance_km:
            return False
        return (self.odometer_km or 0) >= self.next_maintenance_km

    @property
    def has_expired_documents(self) -> bool:
        today = date.today()
        return bool((self.insurance_expiry and self.insurance_expiry < today) or
                    (self.registration_expiry and self.registration_expiry < today))

    def has_open_bookings(self) -> bool:
        return Booking.query.filter(Booking.car_id == self.id,
                                    Booking.status.in_(OPEN_BOOKING_STATUSES)).count() > 0

    def refresh_average_rating(self) -> None:
        average = (db.session.query(func.avg(Review.rating))
                   .filter(Review.car_id == self.id, Review.status == 'approved')
                   .scalar())
        self.average_rating = round(float(average), 2) if average is not None else None

    def __repr__(self) -> str:
        return f"<Car {self.license_plate}>"


class CarImage(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    image_path = db.Column(db.String(255), nullable=False)
    alt_text = db.Column(db.String(255))
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    car = db.relationship('Car', back_populates='images')

    def set_primary(self) -> None:
        CarImage.query.filter(CarImage.car_id == self.car_id,
                              CarImage.id != self.id).update({'is_primary': False})
        self.is_primary = True

    def __repr__(self) -> str:
        return f"<CarImage {self.image_path}>"


class DriverProfile(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    hourly_fee = db.Column(db.Float, default=0, nullable=False)
    daily_fee = db.Column(db.Float, default=0, nullable=False)
    overtime_fee_per_hour = db.Column(db.Float)
    daily_hour_threshold = db.Column(db.Integer, default=10, nullable=False)
    status = db.Column(db.String(20), default='available', nullable=False)
    working_hours = db.Column(db.JSON)
    is_available_for_booking = db.Column(db.Boolean, default=True, nullable=False)
    completed_trips = db.Column(db.Integer, default=0, nullable=False)
    average_rating = db.Column(db.Float)
    total_km_driven = db.Column(db.Integer, default=0, nullable=False)
    total_hours_driven = db.Column(db.Integer, default=0, nullable=False)

    user = db.relationship('User', back_populates='driver_profile', foreign_keys=[user_id])
    owner = db.relationship('User', foreign_keys=[owner_id])

    @classmethod
    def bookable_query(cls):
        return cls.query.filter_by(status='available', is_available_for_booking=True)

    def __repr__(self) -> str:
        return f"<DriverProfile user={self.user_id} {self.status}>"


# ---------------------------------------------------------------------------
# Promotions

class Promotion(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    discount_type = db.Column(db.String(20), default='percentage', nullable=False)
    discount_value = db.Column(db.Float, nullable=False)
    max_discount = db.Column(db.Float)
    min_amount = db.Column(db.Float, default=0, nullable=False)
    min_rental_hours = db.Column(db.Integer, default=4, nullable=False)
    max_uses = db.Column(db.Integer)
    max_uses_per_user = db.Column(db.Integer, default=1, nullable=False)
    used_count = db.Column(db.Integer, default=0, nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), default='active', nullable=False)
    is_auto_apply = db.Column(db.Boolean, default=False, nullable=False)
    is_featured = db.Column(db.Boolean, default=False, nullable=False)
    priority = db.Column(db.Integer, default=0, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))

    creator = db.relationship('User')
    booking_promotions = db.relationship('BookingPromotion', back_populates='promotion')

    @property
    def is_expired(self) -> bool:
        return self.end_date < datetime.now()

    @property
    def has_reached_limit(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses

    @property
    def should_be_archived(self) -> bool:
        return self.is_expired or self.has_reached_limit

    @property
    def is_valid(self) -> bool:
        now = datetime.now()
        return (self.status == 'active' and self.start_date <= now <= self.end_date
                and not self.has_reached_limit)

    def calculate_discount(self, amount: float) -> float:
        if self.discount_type == 'percentage':
            discount = amount * self.discount_value / 100
            if self.max_discount and discount > self.max_discount:
                discount = self.max_discount
        else:
            discount = min(self.discount_value, amount)
        return round(discount, 2)

    @classmethod
    def currently_valid(cls):
        now = datetime.now()
        query = cls.query.filter(cls.status == 'active', cls.start_date <= now, cls.end_date >= now)
        return query.filter(db.or_(cls.max_uses.is_(None), cls.used_count < cls.max_uses))

    def __repr__(self) -> str:
        return f"<Promotion {self.code}>"


# ---------------------------------------------------------------------------
# Bookings

class Booking(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    booking_code = db.Column(db.String(20), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    confirmed_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    cancelled_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    pickup_location_id = db.Column(db.Integer, db.ForeignKey('location.id'))
    return_location_id = db.Column(db.Integer, db.ForeignKey('location.id'))

    pickup_datetime = db.Column(db.DateTime, nullable=False)
    return_datetime = db.Column(db.DateTime, nullable=False)
    actual_pickup_time = db.Column(db.DateTime)
    actual_return_time = db.Column(db.DateTime)

    # Prices copied from the car when the booking is made.
    hourly_rate = db.Column(db.Float, default=0, nullable=False)
    daily_rate = db.Column(db.Float, default=0, nullable=False)
    daily_hour_threshold = db.Column(db.Integer, default=10, nullable=False)
    deposit_amount = db.Column(db.Float, default=0, nullable=False)

    with_driver = db.Column(db.Boolean, default=False, nullable=False)
    driver_profile_id = db.Column(db.Integer, db.ForeignKey('driver_profile.id'))
    driver_hourly_fee = db.Column(db.Float)
    driver_daily_fee = db.Column(db.Float)

    is_delivery = db.Column(db.Boolean, default=False, nullable=False)
    delivery_address = db.Column(db.Text)
    delivery_distance = db.Column(db.Float)
    delivery_fee_per_km = db.Column(db.Float)

    status = db.Column(db.String(20), default='pending', nullable=False)
    confirmed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    total_amount = db.Column(db.Float, default=0, nullable=False)
    payment_method = db.Column(db.String(20))
    payment_status = db.Column(db.String(20), default='pending', nullable=False)

    special_requests = db.Column(db.Text)
    admin_notes = db.Column(db.Text)
    cancellation_reason = db.Column(db.Text)
    car_condition_notes = db.Column(db.Text)
    reminder_sent_at = db.Column(db.DateTime)

    customer = db.relationship('User', back_populates='bookings', foreign_keys=[user_id])
    owner = db.relationship('User', foreign_keys=[owner_id])
    confirmer = db.relationship('User', foreign_keys=[confirmed_by])
    canceller = db.relationship('User', foreign_keys=[cancelled_by])
    car = db.relationship('Car', back_populates='bookings')
    pickup_location = db.relationship('Location', foreign_keys=[pickup_location_id])
    return_location = db.relationship('Location', foreign_keys=[return_location_id])
    driver_profile = db.relationship('DriverProfile')
    charge = db.relationship('BookingCharge', back_populates='booking', uselist=False,
                             cascade='all, delete-orphan')
    booking_promotions = db.relationship('BookingPromotion', back_populates='booking',
                                         cascade='all, delete-orphan')
    payments = db.relationship('Payment', back_populates='booking', cascade='all, delete-orphan')
    review = db.relationship('Review', back_populates='booking', uselist=False,
                             cascade='all, delete-orphan')

    @staticmethod
    def generate_code(year: int = None) -> str:
        """Next code in the ``BK-<year>-000001`` sequence."""
        year = year or datetime.now().year
        sequence = Booking.query.count() + 1
        code = f"BK-{year}-{sequence:06d}"
        while Booking.query.filter_by(booking_code=code).first() is not None:
            sequence += 1
            code = f"BK-{year}-{sequence:06d}"
        return code

    @property
    def can_be_cancelled(self) -> bool:
        return self.status in ('pending', 'confirmed')

    @property
    def can_be_confirmed(self) -> bool:
        return self.status == 'pending'

    @property
    def can_be_started(self) -> bool:
        return self.status == 'confirmed'

    @property
    def can_be_completed(self) -> bool:
        return self.status == 'active'

    @property
    def can_be_deleted(self) -> bool:
        return self.status in ('cancelled', 'rejected')

    @property
    def duration_hours(self) -> float:
        return (self.return_datetime - self.pickup_datetime).total_seconds() / 3600

    def __repr__(self) -> str:
        return f"<Booking {self.booking_code} {self.status}>"


class BookingCharge(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('booking.id'), unique=True, nullable=False)
    total_hours = db.Column(db.Integer, default=0, nullable=False)
    total_days = db.Column(db.Integer, default=0, nullable=False)
    hourly_rate = db.Column(db.Float, default=0, nullable=False)
    daily_rate = db.Column(db.Float, default=0, nullable=False)
    base_amount = db.Column(db.Float, default=0, nullable=False)
    delivery_fee = db.Column(db.Float, default=0, nullable=False)
    driver_fee_amount = db.Column(db.Float, default=0, nullable=False)
    extra_fee = db.Column(db.Float, default=0, nullable=False)
    extra_fee_details = db.Column(db.JSON)
    discount_amount = db.Column(db.Float, default=0, nullable=False)
    subtotal = db.Column(db.Float, default=0, nullable=False)
    vat_amount = db.Column(db.Float, default=0, nullable=False)
    total_amount = db.Column(db.Float, default=0, nullable=False)
    deposit_amount = db.Column(db.Float, default=0, nullable=False)
    amount_paid = db.Column(db.Float, default=0, nullable=False)
    balance_due = db.Column(db.Float, default=0, nullable=False)
    refund_amount = db.Column(db.Float, default=0, nullable=False)

    booking = db.relationship('Booking', back_populates='charge')

    def refresh_balance(self) -> None:
        self.balance_due = round(
            (self.total_amount or 0) - (self.amount_paid or 0) - (self.deposit_amount or 0), 2)

    def __repr__(self) -> str:
        return f"<BookingCharge booking={self.booking_id} total={self.total_amount}>"


class BookingPromotion(db.Model):
    __table_args__ = (db.UniqueConstraint('booking_id', 'promotion_id'),)

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('booking.id'), nullable=False)
    promotion_id = db.Column(db.Integer, db.ForeignKey('promotion.id'), nullable=False)
    applied_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    promotion_code = db.Column(db.String(20), nullable=False)
    discount_amount = db.Column(db.Float, default=0, nullable=False)
    promotion_details = db.Column(db.JSON)
    applied_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    booking = db.relationship('Booking', back_populates='booking_promotions')
    promotion = db.relationship('Promotion', back_populates='booking_promotions')

    def __repr__(self) -> str:
        return f"<BookingPromotion {self.promotion_code} booking={self.booking_id}>"


# ---------------------------------------------------------------------------
# Payments

class Payment(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(100), unique=True, nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey('booking.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)
    payment_type = db.Column(db.String(20), default='full_payment', nullable=False)
    amount = db.Column(db.Float, nullable=False)
    amount_usd = db.Column(db.Float)
    exchange_rate = db.Column(db.Float)
    currency = db.Column(db.String(3), default='VND', nullable=False)
    status = db.Column(db.String(20), default='pending', nullable=False)
    paypal_order_id = db.Column(db.String(100))
    paypal_capture_id = db.Column(db.String(100))
    paypal_payer_id = db.Column(db.String(100))
    paypal_payer_email = db.Column(db.String(255))
    paypal_response = db.Column(db.JSON)
    notes = db.Column(db.Text)
    paid_at = db.Column(db.DateTime)
    refunded_at = db.Column(db.DateTime)

    booking = db.relationship('Booking', back_populates='payments')
    user = db.relationship('User')

    @staticmethod
    def generate_transaction_id() -> str:
        return f"TXN-{datetime.now():%Y%m%d%H%M%S}-{uuid4().hex[:8].upper()}"

    def mark_completed(self) -> None:
        self.status = 'completed'
        self.paid_at = datetime.now()

    def mark_failed(self) -> None:
        self.status = 'failed'

    def mark_refunded(self) -> None:
        self.status = 'refunded'
        self.refunded_at = datetime.now()

    def __repr__(self) -> str:
        return f"<Payment {self.transaction_id} {self.status}>"


# ---------------------------------------------------------------------------
# Reviews and contact messages

class Review(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('booking.id'), unique=True, nullable=False)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)
    status = db.Column(db.String(20), default='pending', nullable=False)
    response = db.Column(db.Text)
    responded_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    responded_at = db.Column(db.DateTime)
    is_verified_booking = db.Column(db.Boolean, default=True, nullable=False)

    booking = db.relationship('Booking', back_populates='review')
    car = db.relationship('Car', back_populates='reviews')
    user = db.relationship('User', back_populates='reviews', foreign_keys=[user_id])
    responder = db.relationship('User', foreign_keys=[responded_by])

    def approve(self) -> None:
        self.status = 'approved'

    def reject(self) -> None:
        self.status = 'rejected'

    def add_response(self, text: str, responder: User) -> None:
        self.response = text
        self.responded_by = responder.id
        self.responded_at = datetime.now()

    def __repr__(self) -> str:
        return f"<Review {self.rating} car={self.car_id}>"


class Contact(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(20))
    subject = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    status = db.Column(db.String(20), default='new', nullable=False)

    user = db.relationship('User')

    def __repr__(self) -> str:
        return f"<Contact {self.email} {self.subject}>"
