import logging

from flask import flash, g, redirect, render_template, request, url_for
from sqlalchemy import func

from ..errors import ValidationError, flash_errors
from ..extensions import db
from ..forms import FormReader
from ..models import Booking, Car, CarBrand, CarCategory, Contact, Location, Promotion, Review, User
from . import bp


logger = logging.getLogger(__name__)


def available_cars():
    """Cars customers can book right now."""
    return Car.query.filter(Car.status == 'available', Car.is_verified.is_(True))


def available_count(column, value) -> int:
    return available_cars().filter(column == value).count()


@bp.route('/')
def home():
    featured_cars = available_cars().order_by(Car.created_at.desc()).limit(8).all()
    categories = [
        {'category': category, 'cars_count': available_count(Car.category_id, category.id)}
        for category in CarCategory.query.filter_by(is_active=True)
                                         .order_by(CarCategory.sort_order, CarCategory.name)
    ]
    promotions = (Promotion.currently_valid()
                  .order_by(Promotion.is_featured.desc(), Promotion.priority.asc())
                  .limit(3).all())
    locations = Location.query.filter_by(is_active=True).order_by(Location.sort_order,
                                                                  Location.name).all()
    reviews = (Review.query.filter(Review.status == 'approved', Review.rating >= 4)
               .order_by(Review.created_at.desc()).limit(6).all())
    average = (db.session.query(func.avg(Review.rating))
               .filter(Review.status == 'approved').scalar())
    stats = {
        'total_cars': available_cars().count(),
        'total_locations': len(locations),
        'happy_customers': User.active_query().filter_by(role='customer').count(),
        'completed_bookings': Booking.query.filter_by(status='completed').count(),
        'average_rating': round(float(average), 1) if average is not None else 0,
    }
    brands = CarBrand.query.filter_by(is_active=True).order_by(CarBrand.sort_order).all()
    return render_template('storefront/home.html', featured_cars=featured_cars,
                           categories=categories, promotions=promotions, locations=locations,
                           reviews=reviews, stats=stats, brands=brands)


@bp.route('/about')
def about():
    stats = {
        'years_in_business': 8,
        'total_cars': Car.query.filter_by(is_verified=True).count(),
        'total_locations': Location.query.filter_by(is_active=True).count(),
        'happy_customers': User.active_query().filter_by(role='customer').count(),
    }
    return render_template('storefront/about.html', stats=stats)


@bp.route('/services')
def services():
    categories = (CarCategory.query.filter_by(is_active=True)
                  .order_by(CarCategory.sort_order, CarCategory.name).all())
    return render_template('storefront/services.html', categories=categories)


@bp.route('/contact', methods=['GET', 'POST'])
def contact():
    locations = (Location.query.filter(Location.is_active.is_(True),
                                       (Location.is_popular.is_(True)) |
                                       (Location.is_airport.is_(True)))
                 .order_by(Location.sort_order, Location.name).all())
    if request.method == 'POST':
        form = FormReader(request.form)
        data = {
            'name': form.str('name', required=True, max_length=255),
            'email': form.str('email', required=True, max_length=255),
            'phone': form.str('phone', max_length=20),
            'subject': form.str('subject', required=True, max_length=255),
            'message': form.str('message', required=True, max_length=5000),
        }
        if data['email'] and '@' not in data['email']:
            form.error('email', 'The email must be a valid email address.')
        try:
            form.validate()
        except ValidationError as e:
            flash_errors(e)
            return render_template('storefront/contact.html', locations=locations,
                                   form=request.form), 422
        message = Contact(**data, user_id=g.user.id if g.user else None, status='new')
        db.session.add(message)
        db.session.commit()
        logger.info("Contact message from %s: %s", message.email, message.subject)
        flash('Thank you for contacting us! We will get back to you soon.', 'success')
        return redirect(url_for('storefront.contact'))
    return render_template('storefront/contact.html', locations=locations, form={})


@bp.route('/locations')
def locations():
    items = [
        {'location': location, 'cars_count': available_count(Car.location_id, location.id)}
        for location in Location.query.filter_by(is_active=True)
                                      .order_by(Location.is_popular.desc(),
                                                Location.is_airport.desc(),
                                                Location.sort_order, Location.name)
    ]
    stats = {
        'total': len(items),
        'airports': sum(1 for item in items if item['location'].is_airport),
        'open_24_7': sum(1 for item in items if item['location'].is_24_7),
        'total_cars': sum(item['cars_count'] for item in items),
    }
    return render_template('storefront/locations.html', items=items, stats=stats)
