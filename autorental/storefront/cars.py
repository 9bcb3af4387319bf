from flask import abort, render_template, request
from sqlalchemy import func

from ..extensions import db
from ..forms import parse_float
from ..listing import apply_search, split_list
from ..models import FUEL_TYPES, TRANSMISSIONS, Car, CarBrand, CarCategory, Location, Review
from . import bp
from .pages import available_cars


SORTS = {
    'created_at': Car.created_at,
    'price': Car.daily_rate,
    'rating': Car.average_rating,
    'popularity': Car.rental_count,
}


def ids(values):
    return [int(value) for value in values if value.isdigit()]


@bp.route('/cars')
def cars_index():
    query = available_cars()
    category_ids = ids(split_list('category'))
    if category_ids:
        query = query.filter(Car.category_id.in_(category_ids))
    brand_ids = ids(split_list('brand'))
    if brand_ids:
        query = query.filter(Car.brand_id.in_(brand_ids))
    price_min = request.args.get('price_min', type=parse_float)
    if price_min is not None:
        query = query.filter(Car.daily_rate >= price_min)
    price_max = request.args.get('price_max', type=parse_float)
    if price_max is not None:
        query = query.filter(Car.daily_rate <= price_max)
    seats = request.args.get('seats', type=int)
    if seats:
        query = query.filter(Car.seats >= seats)
    transmission = request.args.get('transmission')
    if transmission in TRANSMISSIONS:
        query = query.filter(Car.transmission == transmission)
    fuel_types = [value for value in split_list('fuel_type') if value in FUEL_TYPES]
    if fuel_types:
        query = query.filter(Car.fuel_type.in_(fuel_types))
    query = apply_search(query, request.args.get('search'), Car.name, Car.model)

    column = SORTS.get(request.args.get('sort_by'), Car.created_at)
    direction = request.args.get('sort_order', 'desc')
    query = query.order_by(column.asc() if direction == 'asc' else column.desc(), Car.id.desc())
    per_page = min(max(request.args.get('per_page', 12, type=int), 1), 48)
    cars = query.paginate(page=request.args.get('page', 1, type=int), per_page=per_page,
                          error_out=False)

    low, high = (db.session.query(func.min(Car.daily_rate), func.max(Car.daily_rate))
                 .filter(Car.status == 'available', Car.is_verified.is_(True)).one())
    return render_template(
        'storefront/cars/index.html', cars=cars, filters=request.args,
        price_range={'min': low or 0, 'max': high or 0},
        categories=CarCategory.query.filter_by(is_active=True).order_by(CarCategory.sort_order).all(),
        brands=CarBrand.query.filter_by(is_active=True).order_by(CarBrand.sort_order).all(),
        transmissions=TRANSMISSIONS, fuel_types=FUEL_TYPES,
    )


@bp.route('/cars/<int:car_id>')
def cars_show(car_id: int):
    car = available_cars().filter(Car.id == car_id).first()
    if car is None:
        abort(404)
    reviews = (Review.query.filter_by(car_id=car.id, status='approved')
               .order_by(Review.created_at.desc()).limit(10).all())
    related = (available_cars().filter(Car.category_id == car.category_id, Car.id != car.id)
               .order_by(Car.average_rating.desc(), Car.id.desc()).limit(4).all())
    locations = Location.query.filter_by(is_active=True).order_by(Location.name).all()
    return render_template('storefront/cars/show.html', car=car, reviews=reviews,
                           related_cars=related, locations=locations)
