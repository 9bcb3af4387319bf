import pytest


ADMIN_PAGES = ['/admin/', '/admin/users', '/admin/verifications', '/admin/drivers',
               '/admin/locations', '/admin/car-brands', '/admin/car-categories', '/admin/cars',
               '/admin/bookings', '/admin/payments', '/admin/promotions', '/admin/reviews']


def test_anonymous_users_are_sent_to_login(client):
    response = client.get('/admin/')
    assert response.status_code == 302
    assert '/login' in response.headers['Location']


def test_customers_are_forbidden(client, login, customer):
    login(customer)
    assert client.get('/admin/users').status_code == 403


@pytest.mark.parametrize('path', ADMIN_PAGES)
def test_index_pages_render(client, login, admin, customer, make_booking, driver, path):
    make_booking(customer)
    login(admin)
    assert client.get(path).status_code == 200


def test_payment_statistics_are_json(client, login, admin, customer, make_booking, make_payment):
    make_payment(make_booking(customer))
    login(admin)
    data = client.get('/admin/payments/statistics').get_json()
    assert data['by_status']['completed']['count'] == 1
    assert data['by_method']['paypal']['amount'] == 1980000
