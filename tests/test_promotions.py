from datetime import datetime, timedelta

from autorental.commands import archive_expired_promotions
from autorental.extensions import db
from autorental.models import BookingPromotion, Promotion


def promotion_form(**extra):
    data = {'code': 'summer25', 'name': 'Summer sale', 'discount_type': 'percentage',
            'discount_value': '25', 'start_date': '2030-06-01', 'end_date': '2030-08-31',
            'status': 'upcoming'}
    data.update(extra)
    return data


def test_create_normalises_code_and_window(client, login, admin):
    login(admin)
    response = client.post('/admin/promotions/create', data=promotion_form())
    assert response.status_code == 302
    promotion = Promotion.query.one()
    assert promotion.code == 'SUMMER25'
    assert promotion.start_date == datetime(2030, 6, 1, 0, 0)
    assert promotion.end_date == datetime(2030, 8, 31, 23, 59, 59)
    assert promotion.created_by == admin.id


def test_percentage_over_100_is_rejected(client, login, admin):
    login(admin)
    response = client.post('/admin/promotions/create', data=promotion_form(discount_value='150'))
    assert response.status_code == 422


def test_code_is_unique_ignoring_case(client, login, admin, make_promotion):
    make_promotion('SUMMER25')
    login(admin)
    response = client.post('/admin/promotions/create', data=promotion_form())
    assert response.status_code == 422


def test_end_must_follow_start(client, login, admin):
    login(admin)
    response = client.post('/admin/promotions/create',
                           data=promotion_form(start_date='2030-08-31', end_date='2030-06-01'))
    assert response.status_code == 422


def test_toggle_between_active_and_paused(client, login, admin, make_promotion):
    promotion = make_promotion()
    login(admin)
    client.post(f'/admin/promotions/{promotion.id}/toggle-status')
    assert promotion.status == 'paused'
    client.post(f'/admin/promotions/{promotion.id}/toggle-status')
    assert promotion.status == 'active'


def test_archived_promotion_stays_archived(client, login, admin, make_promotion):
    promotion = make_promotion(status='archived')
    login(admin)
    client.post(f'/admin/promotions/{promotion.id}/toggle-status')
    assert promotion.status == 'archived'


def test_used_promotion_cannot_be_deleted(client, login, admin, customer, make_promotion,
                                          make_booking):
    promotion = make_promotion()
    booking = make_booking(customer)
    db.session.add(BookingPromotion(booking_id=booking.id, promotion_id=promotion.id,
                                    promotion_code=promotion.code, discount_amount=1000))
    db.session.commit()
    login(admin)
    client.post(f'/admin/promotions/{promotion.id}/delete')
    assert Promotion.query.count() == 1


def test_preview(client, login, admin, make_promotion):
    promotion = make_promotion(discount_value=20, max_discount=150000, min_amount=500000)
    login(admin)
    data = client.get(f'/admin/promotions/{promotion.id}/preview?amount=1000000').get_json()
    assert data['discount_amount'] == 150000
    assert data['final_amount'] == 850000
    assert data['meets_minimum'] is True
    assert data['is_valid'] is True
    assert client.get(f'/admin/promotions/{promotion.id}/preview').status_code == 422
    assert client.get(f'/admin/promotions/{promotion.id}/preview?amount=inf').status_code == 422


def test_archive_expired_and_used_up(app, make_promotion):
    expired = make_promotion('GONE', end_date=datetime.now() - timedelta(minutes=1))
    used_up = make_promotion('FULL', max_uses=5, used_count=5)
    live = make_promotion('LIVE')
    assert archive_expired_promotions() == 2
    assert expired.status == 'archived'
    assert used_up.status == 'archived'
    assert live.status == 'active'
    assert archive_expired_promotions() == 0
