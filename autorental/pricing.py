"""Booking price calculations.

All amounts are VND.  Rental time is billed in whole hours; every
``daily_hour_threshold`` hours (10 by default) are charged as one day at
the daily rate and the remainder at the hourly rate.  The same rule prices
an optional chauffeur.
"""

import logging
from datetime import datetime
from math import asin, ceil, cos, radians, sin, sqrt

from .extensions import db
from .models import Booking, BookingPromotion, Promotion


logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 10


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    radius = 6371.0
    lat1_rad, lon1_rad, lat2_rad, lon2_rad = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad
    a = sin(dlat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(dlon / 2) ** 2
    return radius * 2 * asin(sqrt(a))


def split_hours(total_hours: int, threshold) -> tuple:
    threshold = threshold or DEFAULT_THRESHOLD
    return total_hours // threshold, total_hours % threshold


def billable_hours(start: datetime, end: datetime) -> int:
    seconds = (end - start).total_seconds()
    return max(0, ceil(seconds / 3600))


class BookingPricing:
    """Computes rental, driver, delivery, discount and overtime charges."""

    def __init__(self, vat_rate: float = 0.10):
        self.vat_rate = vat_rate

    def rental_price(self, pickup: datetime, return_: datetime, car) -> dict:
        total_hours = billable_hours(pickup, return_)
        threshold = car.daily_hour_threshold or DEFAULT_THRESHOLD
        days, remaining = split_hours(total_hours, threshold)
        hourly = float(car.hourly_rate or 0)
        daily = float(car.daily_rate or 0)
        return {
            'total_hours': total_hours,
            'total_days': days,
            'remaining_hours': remaining,
            'base_amount': round(days * daily + remaining * hourly, 2),
            'hourly_rate': hourly,
            'daily_rate': daily,
            'daily_hour_threshold': threshold,
        }

    def driver_fee(self, total_hours: int, driver) -> dict:
        if driver is None:
            return {
                'driver_fee_amount': 0.0,
                'total_driver_hours': 0,
                'driver_hourly_fee': None,
                'driver_daily_fee': None,
                'driver_days': 0,
                'driver_remaining_hours': 0,
            }
        hourly = float(driver.hourly_fee or 0)
        daily = float(driver.daily_fee or 0)
        days, remaining = split_hours(total_hours, driver.daily_hour_threshold)
        return {
            'driver_fee_amount': round(days * daily + remaining * hourly, 2),
            'total_driver_hours': total_hours,
            'driver_hourly_fee': hourly,
            'driver_daily_fee': daily,
            'driver_days': days,
            'driver_remaining_hours': remaining,
        }

    def delivery_fee(self, is_delivery: bool, car, distance_km: float = None,
                     pickup_location=None, latitude: float = None, longitude: float = None) -> dict:
        """Delivery charge for bringing the car to the customer.

        The distance is either given directly or measured from the pickup
        location to the delivery coordinates.
        """
        result = {
            'can_deliver': False,
            'delivery_fee': 0.0,
            'delivery_distance': None,
            'delivery_fee_per_km': None,
            'error_message': None,
        }
        if not is_delivery:
            return result
        if not car.is_delivery_available:
            result['error_message'] = 'This car does not offer delivery service.'
            return result
        if not car.delivery_fee_per_km:
            result['error_message'] = 'Delivery rate not configured for this car.'
            return result

        rate = float(car.delivery_fee_per_km)
        result['delivery_fee_per_km'] = rate
        if distance_km is None and None not in (latitude, longitude) and pickup_location is not None \
                and pickup_location.latitude is not None and pickup_location.longitude is not None:
            distance_km = haversine_km(pickup_location.latitude, pickup_location.longitude,
                                       latitude, longitude)
        if distance_km is None:
            result['error_message'] = 'Delivery distance could not be determined.'
            return result

        distance_km = round(float(distance_km), 2)
        result['delivery_distance'] = distance_km
        if car.max_delivery_distance and distance_km > car.max_delivery_distance:
            result['error_message'] = (f"Delivery distance ({distance_km}km) exceeds maximum "
                                       f"allowed ({car.max_delivery_distance}km).")
            return result

        result['can_deliver'] = True
        result['delivery_fee'] = round(distance_km * rate, 2)
        return result

    def discount(self, code: str, base_amount: float, user_id, rental_hours: int) -> dict:
        result = {
            'is_valid': False,
            'discount_amount': 0.0,
            'promotion_id': None,
            'promotion_code': code or None,
            'promotion_details': None,
            'error_message': None,
        }
        if not code:
            return result

        promotion = Promotion.query.filter(db.func.upper(Promotion.code) == code.strip().upper()).first()
        if promotion is None:
            result['error_message'] = 'Invalid promotion code.'
            return result

        result['promotion_id'] = promotion.id
        result['promotion_code'] = promotion.code
        now = datetime.now()
        if promotion.status != 'active':
            result['error_message'] = 'This promotion is not currently active.'
        elif now < promotion.start_date or now > promotion.end_date:
            result['error_message'] = 'This promotion is not valid at this time.'
        elif base_amount < (promotion.min_amount or 0):
            result['error_message'] = f"Minimum order amount of {promotion.min_amount:,.0f} required."
        elif rental_hours < (promotion.min_rental_hours or 0):
            result['error_message'] = (f"Minimum rental duration of {promotion.min_rental_hours} "
                                       "hours required.")
        elif promotion.has_reached_limit:
            result['error_message'] = 'This promotion has reached its usage limit.'
        elif user_id is not None and self.user_usage(promotion, user_id) >= promotion.max_uses_per_user:
            result['error_message'] = 'You have already used this promotion the maximum number of times.'
        if result['error_message']:
            return result

        result['is_valid'] = True
        result['discount_amount'] = promotion.calculate_discount(base_amount)
        result['promotion_details'] = {
            'name': promotion.name,
            'description': promotion.description,
            'discount_type': promotion.discount_type,
            'discount_value': float(promotion.discount_value),
            'max_discount': float(promotion.max_discount) if promotion.max_discount else None,
            'min_amount': float(promotion.min_amount or 0),
        }
        return result

    @staticmethod
    def user_usage(promotion, user_id) -> int:
        return (BookingPromotion.query
                .join(Booking, BookingPromotion.booking_id == Booking.id)
                .filter(BookingPromotion.promotion_id == promotion.id, Booking.user_id == user_id)
                .count())

    def overtime_fee(self, scheduled_return: datetime, actual_return: datetime, car) -> dict:
        if actual_return <= scheduled_return:
            return {'is_late': False, 'late_hours': 0, 'overtime_fee': 0.0}
        late_hours = billable_hours(scheduled_return, actual_return)
        return {
            'is_late': True,
            'late_hours': late_hours,
            'overtime_fee': round(late_hours * float(car.overtime_fee_per_hour or 0), 2),
        }

    def breakdown(self, car, pickup: datetime, return_: datetime, user_id=None, driver=None,
                  is_delivery=False, delivery_distance=None, pickup_location=None,
                  delivery_latitude=None, delivery_longitude=None, promotion_code=None,
                  insurance_fee=0.0, extra_fee=0.0, apply_vat=True, amount_paid=0.0) -> dict:
        """Full price breakdown for a prospective booking."""
        rental = self.rental_price(pickup, return_, car)
        driver_part = self.driver_fee(rental['total_hours'], driver)
        delivery = self.delivery_fee(is_delivery, car, delivery_distance,
                                     pickup_location or car.location,
                                     delivery_latitude, delivery_longitude)
        discount = self.discount(promotion_code, rental['base_amount'], user_id, rental['total_hours'])

        subtotal = (rental['base_amount'] + delivery['delivery_fee'] + driver_part['driver_fee_amount']
                    + insurance_fee + extra_fee - discount['discount_amount'])
        vat_amount = subtotal * self.vat_rate if apply_vat else 0.0
        total = subtotal + vat_amount
        deposit = float(car.deposit_amount or 0)
        return {
            'rental': rental,
            'driver': driver_part,
            'delivery': delivery,
            'discount': discount,
            'insurance_fee': round(insurance_fee, 2),
            'extra_fee': round(extra_fee, 2),
            'subtotal': round(subtotal, 2),
            'vat_amount': round(vat_amount, 2),
            'vat_percentage': round(self.vat_rate * 100) if apply_vat else 0,
            'total_amount': round(total, 2),
            'deposit_amount': round(deposit, 2),
            'amount_paid': round(amount_paid, 2),
            'balance_due': round(total - amount_paid - deposit, 2),
            'car': {
                'id': car.id,
                'name': car.display_name,
                'model': car.model,
                'brand': car.brand.name if car.brand else None,
            },
            'calculated_at': datetime.now().isoformat(),
        }

    def recalculate_with_extra_fee(self, charge, amount: float, reason: str = None) -> None:
        """Add an admin charge to an existing booking charge and refresh the totals."""
        charge.extra_fee = round((charge.extra_fee or 0) + amount, 2)
        charge.subtotal = round((charge.subtotal or 0) + amount, 2)
        charge.vat_amount = round(charge.subtotal * self.vat_rate, 2)
        charge.total_amount = round(charge.subtotal + charge.vat_amount, 2)
        charge.refresh_balance()
        details = dict(charge.extra_fee_details or {})
        details['admin_charge'] = {
            'amount': amount,
            'reason': reason,
            'added_at': datetime.now().isoformat(),
        }
        charge.extra_fee_details = details
        logger.info("Extra fee %.2f added to booking %s", amount, charge.booking_id)
