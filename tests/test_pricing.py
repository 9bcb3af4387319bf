from datetime import datetime, timedelta

import pytest

from autorental.pricing import BookingPricing, billable_hours, haversine_km, split_hours


PICKUP = datetime(2030, 1, 1, 9, 0)


@pytest.fixture
def pricing():
    return BookingPricing(vat_rate=0.10)


class TestHours:

    def test_partial_hours_round_up(self):
        assert billable_hours(PICKUP, PICKUP + timedelta(hours=2, minutes=1)) == 3

    def test_return_before_pickup_bills_nothing(self):
        assert billable_hours(PICKUP, PICKUP - timedelta(hours=1)) == 0

    def test_split_uses_threshold(self):
        assert split_hours(25, 10) == (2, 5)

    def test_split_falls_back_to_default_threshold(self):
        assert split_hours(25, None) == (2, 5)

    def test_haversine_same_point(self):
        assert haversine_km(10.0, 106.0, 10.0, 106.0) == 0

    def test_haversine_one_degree_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.1)


class TestRentalPrice:

    def test_days_and_remaining_hours(self, app, pricing, car):
        result = pricing.rental_price(PICKUP, PICKUP + timedelta(hours=25), car)
        assert result['total_hours'] == 25
        assert result['total_days'] == 2
        assert result['remaining_hours'] == 5
        assert result['base_amount'] == 2 * 800000 + 5 * 100000

    def test_short_rental_is_hourly(self, app, pricing, car):
        result = pricing.rental_price(PICKUP, PICKUP + timedelta(hours=4), car)
        assert result['total_days'] == 0
        assert result['base_amount'] == 400000


class TestDriverFee:

    def test_without_driver(self, app, pricing):
        assert pricing.driver_fee(12, None)['driver_fee_amount'] == 0

    def test_with_driver(self, app, pricing, driver):
        result = pricing.driver_fee(12, driver)
        assert result['driver_days'] == 1
        assert result['driver_remaining_hours'] == 2
        assert result['driver_fee_amount'] == 400000 + 2 * 50000


class TestDeliveryFee:

    def test_not_requested(self, app, pricing, car):
        result = pricing.delivery_fee(False, car, 10)
        assert result['delivery_fee'] == 0
        assert result['error_message'] is None

    def test_explicit_distance(self, app, pricing, car):
        result = pricing.delivery_fee(True, car, 12.5)
        assert result['can_deliver'] is True
        assert result['delivery_fee'] == 125000

    def test_distance_from_coordinates(self, app, pricing, car, location):
        result = pricing.delivery_fee(True, car, None, location,
                                      location.latitude + 0.05, location.longitude)
        assert result['can_deliver'] is True
        assert result['delivery_distance'] == pytest.approx(5.56, abs=0.05)

    def test_too_far(self, app, pricing, car):
        result = pricing.delivery_fee(True, car, 31)
        assert result['can_deliver'] is False
        assert 'exceeds maximum' in result['error_message']

    def test_car_without_delivery(self, app, pricing, make_car):
        result = pricing.delivery_fee(True, make_car(is_delivery_available=False), 5)
        assert result['error_message'] == 'This car does not offer delivery service.'

    def test_unknown_distance(self, app, pricing, car):
        result = pricing.delivery_fee(True, car)
        assert result['error_message'] == 'Delivery distance could not be determined.'


class TestDiscount:

    def test_percentage_with_cap(self, app, pricing, make_promotion):
        make_promotion('CAP', discount_value=50, max_discount=100000)
        result = pricing.discount('cap', 1000000, None, 24)
        assert result['is_valid'] is True
        assert result['promotion_code'] == 'CAP'
        assert result['discount_amount'] == 100000

    def test_fixed_amount_never_exceeds_base(self, app, pricing, make_promotion):
        make_promotion('FLAT', discount_type='fixed_amount', discount_value=500000)
        assert pricing.discount('FLAT', 300000, None, 24)['discount_amount'] == 300000

    def test_unknown_code(self, app, pricing):
        result = pricing.discount('NOPE', 1000000, None, 24)
        assert result['is_valid'] is False
        assert result['error_message'] == 'Invalid promotion code.'

    @pytest.mark.parametrize('extra, message', [
        ({'status': 'paused'}, 'This promotion is not currently active.'),
        ({'start_date': datetime.now() + timedelta(days=1)}, 'This promotion is not valid at this time.'),
        ({'min_amount': 5000000}, 'Minimum order amount of 5,000,000 required.'),
        ({'min_rental_hours': 48}, 'Minimum rental duration of 48 hours required.'),
        ({'max_uses': 1, 'used_count': 1}, 'This promotion has reached its usage limit.'),
    ])
    def test_rejections(self, app, pricing, make_promotion, extra, message):
        make_promotion('RULES', **extra)
        result = pricing.discount('RULES', 1000000, None, 24)
        assert result['is_valid'] is False
        assert result['error_message'] == message

    def test_per_user_limit(self, app, pricing, make_promotion, make_booking, customer):
        from autorental.extensions import db
        from autorental.models import BookingPromotion

        promotion = make_promotion('ONCE')
        booking = make_booking(customer)
        db.session.add(BookingPromotion(booking_id=booking.id, promotion_id=promotion.id,
                                        promotion_code='ONCE', discount_amount=1))
        db.session.commit()
        result = pricing.discount('ONCE', 1000000, customer.id, 24)
        assert result['error_message'] == 'You have already used this promotion the maximum number of times.'


class TestBreakdown:

    def test_totals(self, app, pricing, car, make_promotion):
        make_promotion('SAVE10')
        result = pricing.breakdown(car, PICKUP, PICKUP + timedelta(hours=10),
                                   is_delivery=True, delivery_distance=10, promotion_code='SAVE10')
        assert result['rental']['base_amount'] == 800000
        assert result['delivery']['delivery_fee'] == 100000
        assert result['discount']['discount_amount'] == 80000
        assert result['subtotal'] == 820000
        assert result['vat_amount'] == 82000
        assert result['total_amount'] == 902000
        assert result['deposit_amount'] == 500000
        assert result['balance_due'] == 402000
        assert result['vat_percentage'] == 10

    def test_without_vat(self, app, pricing, car):
        result = pricing.breakdown(car, PICKUP, PICKUP + timedelta(hours=10), apply_vat=False)
        assert result['vat_amount'] == 0
        assert result['total_amount'] == result['subtotal']


class TestOvertime:

    def test_on_time(self, app, pricing, car):
        assert pricing.overtime_fee(PICKUP, PICKUP, car)['is_late'] is False

    def test_late_hours_round_up(self, app, pricing, car):
        result = pricing.overtime_fee(PICKUP, PICKUP + timedelta(minutes=90), car)
        assert result['late_hours'] == 2
        assert result['overtime_fee'] == 240000


def test_extra_fee_recalculates_charge(app, pricing, make_booking, customer):
    booking = make_booking(customer)
    pricing.recalculate_with_extra_fee(booking.charge, 200000, 'Scratched bumper')
    charge = booking.charge
    assert charge.extra_fee == 200000
    assert charge.subtotal == 2000000
    assert charge.vat_amount == 200000
    assert charge.total_amount == 2200000
    assert charge.balance_due == 2200000 - 500000
    assert charge.extra_fee_details['admin_charge']['reason'] == 'Scratched bumper'
