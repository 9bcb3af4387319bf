import logging

from flask import current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values
from ..listing import apply_sort, paginate
from ..models import (CAR_STATUSES, FUEL_TYPES, TRANSMISSIONS, Car, CarBrand, CarCategory,
                      CarImage, Location, User)
from ..uploads import IMAGE_EXTENSIONS, delete_upload, has_file, save_upload
from . import bp


logger = logging.getLogger(__name__)

STATUS_CYCLE = {
    'available': 'maintenance',
    'maintenance': 'inactive',
    'inactive': 'available',
    'rented': 'available',
}

SORTS = {
    'created_at': Car.created_at,
    'model': Car.model,
    'year': Car.year,
    'daily_rate': Car.daily_rate,
    'hourly_rate': Car.hourly_rate,
    'status': Car.status,
    'rental_count': Car.rental_count,
    'average_rating': Car.average_rating,
}


def form_choices() -> dict:
    return {
        'owners': User.active_query().filter(User.role.in_(('owner', 'admin')))
                                     .order_by(User.name).all(),
        'brands': CarBrand.query.filter_by(is_active=True).order_by(CarBrand.sort_order,
                                                                    CarBrand.name).all(),
        'categories': CarCategory.query.filter_by(is_active=True)
                                       .order_by(CarCategory.sort_order, CarCategory.name).all(),
        'locations': Location.query.filter_by(is_active=True).order_by(Location.name).all(),
        'statuses': CAR_STATUSES,
        'transmissions': TRANSMISSIONS,
        'fuel_types': FUEL_TYPES,
    }


def parse_features(raw) -> dict:
    """``"gps, bluetooth"`` becomes ``{"gps": True, "bluetooth": True}``."""
    names = [part.strip().lower().replace(' ', '_') for part in (raw or '').split(',')]
    return {name: True for name in names if name}


def read_car_form(car=None) -> dict:
    form = FormReader(request.form)
    data = {
        'owner_id': form.int('owner_id', required=True),
        'category_id': form.int('category_id', required=True),
        'brand_id': form.int('brand_id', required=True),
        'location_id': form.int('location_id'),
        'name': form.str('name', max_length=255),
        'model': form.str('model', required=True, max_length=255),
        'color': form.str('color', max_length=50),
        'year': form.int('year', required=True, min_value=2000, max_value=2030),
        'license_plate': form.str('license_plate', required=True, max_length=20),
        'vin': form.str('vin', max_length=17),
        'seats': form.int('seats', required=True, min_value=2, max_value=20),
        'transmission': form.choice('transmission', TRANSMISSIONS, required=True),
        'fuel_type': form.choice('fuel_type', FUEL_TYPES, required=True),
        'odometer_km': form.int('odometer_km', min_value=0, default=0),
        'insurance_expiry': form.date('insurance_expiry'),
        'registration_expiry': form.date('registration_expiry'),
        'last_maintenance_date': form.date('last_maintenance_date'),
        'next_maintenance_km': form.int('next_maintenance_km', min_value=0),
        'is_delivery_available': form.bool('is_delivery_available'),
        'status': form.choice('status', CAR_STATUSES, required=True),
        'is_verified': form.bool('is_verified'),
        'description': form.str('description'),
        'features': parse_features(form.str('features')),
        'hourly_rate': form.float('hourly_rate', required=True, min_value=0),
        'daily_rate': form.float('daily_rate', required=True, min_value=0),
        'daily_hour_threshold': form.int('daily_hour_threshold', min_value=1, max_value=24,
                                         default=10),
        'deposit_amount': form.float('deposit_amount', min_value=0, default=0),
        'min_rental_hours': form.int('min_rental_hours', min_value=1, default=4),
        'overtime_fee_per_hour': form.float('overtime_fee_per_hour', min_value=0),
        'delivery_fee_per_km': form.float('delivery_fee_per_km', min_value=0),
        'max_delivery_distance': form.int('max_delivery_distance', min_value=0),
    }
    for field, model in (('owner_id', User), ('category_id', CarCategory),
                         ('brand_id', CarBrand), ('location_id', Location)):
        if data[field] is not None and db.session.get(model, data[field]) is None:
            form.error(field, f"The selected {form.label(field)} is invalid.")
    for field in ('license_plate', 'vin'):
        if data[field]:
            data[field] = data[field].upper()
            clash = Car.query.filter(getattr(Car, field) == data[field])
            if car is not None:
                clash = clash.filter(Car.id != car.id)
            if clash.first() is not None:
                form.error(field, f"The {form.label(field)} has already been taken.")
    form.validate()
    if not data['name']:
        brand = db.session.get(CarBrand, data['brand_id'])
        data['name'] = f"{brand.name} {data['model']}"
    return data


@bp.route('/cars')
def cars_index():
    query = Car.query.join(User, Car.owner_id == User.id)
    status = request.args.get('status')
    if status in CAR_STATUSES:
        query = query.filter(Car.status == status)
    category_id = request.args.get('category_id', type=int)
    if category_id:
        query = query.filter(Car.category_id == category_id)
    brand_id = request.args.get('brand_id', type=int)
    if brand_id:
        query = query.filter(Car.brand_id == brand_id)
    verified = request.args.get('verified')
    if verified == 'yes':
        query = query.filter(Car.is_verified.is_(True))
    elif verified == 'no':
        query = query.filter(Car.is_verified.is_(False))
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Car.name.ilike(pattern), Car.model.ilike(pattern),
                                 Car.license_plate.ilike(pattern), Car.vin.ilike(pattern),
                                 Car.color.ilike(pattern), User.name.ilike(pattern),
                                 User.email.ilike(pattern)))
    query = apply_sort(query, request.args.get('sort_by'), request.args.get('sort_order', 'desc'),
                       SORTS, 'created_at')
    cars = paginate(query, current_app.config['PER_PAGE_ADMIN'])
    stats = {
        'total': Car.query.count(),
        'available': Car.query.filter_by(status='available', is_verified=True).count(),
        'rented': Car.query.filter_by(status='rented').count(),
        'maintenance': Car.query.filter_by(status='maintenance').count(),
    }
    return render_template('admin/cars/index.html', cars=cars, stats=stats, filters=request.args,
                           **form_choices())


@bp.route('/cars/create', methods=['GET', 'POST'])
def cars_create():
    if request.method == 'POST':
        try:
            data = read_car_form()
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/cars/form.html', car=None, form=request.form,
                                   **form_choices()), 422
        car = Car(**data)
        try:
            db.session.add(car)
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to create car. Please try again.')
            return redirect(url_for('admin.cars_create'))
        logger.info("Car %s created by %s", car.license_plate, g.user.email)
        flash('Car created successfully.', 'success')
        return redirect(url_for('admin.cars_show', car_id=car.id))
    return render_template('admin/cars/form.html', car=None,
                           form={'status': 'available', 'is_delivery_available': True,
                                 'daily_hour_threshold': 10, 'min_rental_hours': 4},
                           **form_choices())


@bp.route('/cars/<int:car_id>')
def cars_show(car_id: int):
    car = db.get_or_404(Car, car_id)
    return render_template('admin/cars/show.html', car=car)


@bp.route('/cars/<int:car_id>/edit', methods=['GET', 'POST'])
def cars_edit(car_id: int):
    car = db.get_or_404(Car, car_id)
    if request.method == 'POST':
        try:
            data = read_car_form(car)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/cars/form.html', car=car, form=request.form,
                                   **form_choices()), 422
        for key, value in data.items():
            setattr(car, key, value)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to update car. Please try again.')
            return redirect(url_for('admin.cars_edit', car_id=car.id))
        flash('Car updated successfully.', 'success')
        return redirect(url_for('admin.cars_show', car_id=car.id))
    values = model_values(car)
    values['features'] = ', '.join(sorted(k for k, v in (car.features or {}).items() if v))
    return render_template('admin/cars/form.html', car=car, form=values, **form_choices())


@bp.route('/cars/<int:car_id>/delete', methods=['POST'])
def cars_delete(car_id: int):
    car = db.get_or_404(Car, car_id)
    if car.has_open_bookings():
        flash('Cannot delete a car with pending, confirmed or active bookings.', 'error')
        return redirect(url_for('admin.cars_show', car_id=car.id))
    paths = [image.image_path for image in car.images]
    try:
        db.session.delete(car)
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, 'Failed to delete car. It may be in use.')
        return redirect(url_for('admin.cars_show', car_id=car_id))
    for path in paths:
        delete_upload(path)
    logger.info("Car %s deleted by %s", car.license_plate, g.user.email)
    flash('Car deleted successfully.', 'success')
    return redirect(url_for('admin.cars_index'))


@bp.route('/cars/<int:car_id>/toggle-status', methods=['POST'])
def cars_toggle_status(car_id: int):
    car = db.get_or_404(Car, car_id)
    car.status = STATUS_CYCLE.get(car.status, 'available')
    db.session.commit()
    flash(f"Car status changed to {car.status}.", 'success')
    return redirect(url_for('admin.cars_index'))


# ---------------------------------------------------------------------------
# Images

@bp.route('/cars/<int:car_id>/images', methods=['POST'])
def car_images_store(car_id: int):
    car = db.get_or_404(Car, car_id)
    uploads = [f for f in request.files.getlist('images') if has_file(f)]
    limit = current_app.config['MAX_CAR_IMAGES']
    if not uploads:
        flash('Please choose at least one image.', 'error')
        return redirect(url_for('admin.cars_show', car_id=car.id))
    if len(uploads) > limit:
        flash(f"You may upload at most {limit} images at a time.", 'error')
        return redirect(url_for('admin.cars_show', car_id=car.id))

    first_images = len(car.images) == 0
    next_order = max((image.sort_order for image in car.images), default=0) + 1
    saved = []
    try:
        for index, upload in enumerate(uploads):
            path = save_upload(upload, f'cars/{car.id}', IMAGE_EXTENSIONS, field='images')
            saved.append(path)
            db.session.add(CarImage(car_id=car.id, image_path=path,
                                    alt_text=f"{car.display_name} image {next_order + index}",
                                    is_primary=first_images and index == 0,
                                    sort_order=next_order + index))
    except ValidationError as e:
        db.session.rollback()
        for path in saved:
            delete_upload(path)
        flash_errors(e)
        return redirect(url_for('admin.cars_show', car_id=car.id))
    db.session.commit()
    flash(f"{len(uploads)} image(s) uploaded successfully.", 'success')
    return redirect(url_for('admin.cars_show', car_id=car.id))


@bp.route('/cars/<int:car_id>/images/<int:image_id>/primary', methods=['POST'])
def car_images_set_primary(car_id: int, image_id: int):
    image = CarImage.query.filter_by(id=image_id, car_id=car_id).first_or_404()
    image.set_primary()
    db.session.commit()
    flash('Primary image updated.', 'success')
    return redirect(url_for('admin.cars_show', car_id=car_id))


@bp.route('/cars/<int:car_id>/images/reorder', methods=['POST'])
def car_images_reorder(car_id: int):
    car = db.get_or_404(Car, car_id)
    images = {image.id: image for image in car.images}
    try:
        order = [int(part) for part in (request.form.get('order') or '').split(',') if part.strip()]
        order = list(dict.fromkeys(order))
    except ValueError:
        order = None
    if not order or set(order) - set(images):
        flash('Invalid image order.', 'error')
        return redirect(url_for('admin.cars_show', car_id=car.id))
    unlisted = sorted((image for image_id, image in images.items() if image_id not in order),
                      key=lambda image: (image.sort_order, image.id))
    for position, image in enumerate([images[i] for i in order] + unlisted, start=1):
        image.sort_order = position
    db.session.commit()
    flash('Image order updated.', 'success')
    return redirect(url_for('admin.cars_show', car_id=car.id))


@bp.route('/cars/<int:car_id>/images/<int:image_id>/delete', methods=['POST'])
def car_images_delete(car_id: int, image_id: int):
    image = CarImage.query.filter_by(id=image_id, car_id=car_id).first_or_404()
    was_primary = image.is_primary
    path = image.image_path
    db.session.delete(image)
    db.session.flush()
    if was_primary:
        replacement = (CarImage.query.filter_by(car_id=car_id)
                       .order_by(CarImage.sort_order, CarImage.id).first())
        if replacement is not None:
            replacement.is_primary = True
    db.session.commit()
    delete_upload(path)
    flash('Image deleted successfully.', 'success')
    return redirect(url_for('admin.cars_show', car_id=car_id))
