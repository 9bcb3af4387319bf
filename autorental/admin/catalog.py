"""Car brands and car categories.

Both are small lookup tables with the same life cycle (name, unique slug,
active flag, sort order), so the handlers share their helpers.
"""

from flask import current_app, flash, redirect, render_template, request, url_for
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values
from ..listing import apply_search, paginate, unique_slug
from ..models import Car, CarBrand, CarCategory
from . import bp


def catalog_listing(model, foreign_key):
    query = (db.session.query(model, func.count(Car.id).label('cars_count'))
             .outerjoin(Car, foreign_key == model.id)
             .group_by(model.id))
    status = request.args.get('status')
    if status == 'active':
        query = query.filter(model.is_active.is_(True))
    elif status == 'inactive':
        query = query.filter(model.is_active.is_(False))
    query = apply_search(query, request.args.get('search'), model.name)
    items = paginate(query.order_by(model.sort_order, model.name),
                     current_app.config['PER_PAGE_ADMIN'])
    stats = {
        'total': model.query.count(),
        'active': model.query.filter_by(is_active=True).count(),
        'inactive': model.query.filter_by(is_active=False).count(),
    }
    return items, stats


def read_catalog_form(model, record=None, with_details=False) -> dict:
    form = FormReader(request.form)
    data = {
        'name': form.str('name', required=True, max_length=255),
        'is_active': form.bool('is_active', default=record is None),
        'sort_order': form.int('sort_order', min_value=0, default=0),
    }
    if with_details:
        data['icon'] = form.str('icon', max_length=50, default='car')
        data['description'] = form.str('description')
    else:
        data['logo'] = form.str('logo', max_length=255)
    slug = form.str('slug', max_length=255)
    form.validate()
    data['slug'] = unique_slug(model, data['name'], slug,
                               exclude_id=record.id if record else None)
    return data


# ---------------------------------------------------------------------------
# Brands

@bp.route('/car-brands')
def brands_index():
    brands, stats = catalog_listing(CarBrand, Car.brand_id)
    return render_template('admin/catalog/index.html', items=brands, stats=stats,
                           filters=request.args, kind='brand')


@bp.route('/car-brands/create', methods=['GET', 'POST'])
def brands_create():
    if request.method == 'POST':
        try:
            data = read_catalog_form(CarBrand)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/catalog/form.html', item=None, form=request.form,
                                   kind='brand'), 422
        try:
            db.session.add(CarBrand(**data))
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to create car brand. Please try again.')
            return redirect(url_for('admin.brands_create'))
        flash('Car brand created successfully.', 'success')
        return redirect(url_for('admin.brands_index'))
    return render_template('admin/catalog/form.html', item=None, form={'is_active': True},
                           kind='brand')


@bp.route('/car-brands/<int:brand_id>')
def brands_show(brand_id: int):
    brand = db.get_or_404(CarBrand, brand_id)
    return render_template('admin/catalog/show.html', item=brand, kind='brand')


@bp.route('/car-brands/<int:brand_id>/edit', methods=['GET', 'POST'])
def brands_edit(brand_id: int):
    brand = db.get_or_404(CarBrand, brand_id)
    if request.method == 'POST':
        try:
            data = read_catalog_form(CarBrand, brand)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/catalog/form.html', item=brand, form=request.form,
                                   kind='brand'), 422
        for key, value in data.items():
            setattr(brand, key, value)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to update car brand. Please try again.')
            return redirect(url_for('admin.brands_edit', brand_id=brand_id))
        flash('Car brand updated successfully.', 'success')
        return redirect(url_for('admin.brands_index'))
    return render_template('admin/catalog/form.html', item=brand, form=model_values(brand),
                           kind='brand')


@bp.route('/car-brands/<int:brand_id>/toggle-status', methods=['POST'])
def brands_toggle_status(brand_id: int):
    brand = db.get_or_404(CarBrand, brand_id)
    brand.is_active = not brand.is_active
    db.session.commit()
    flash(f"Car brand {'activated' if brand.is_active else 'deactivated'} successfully.", 'success')
    return redirect(url_for('admin.brands_index'))


# ---------------------------------------------------------------------------
# Categories

@bp.route('/car-categories')
def categories_index():
    categories, stats = catalog_listing(CarCategory, Car.category_id)
    return render_template('admin/catalog/index.html', items=categories, stats=stats,
                           filters=request.args, kind='category')


@bp.route('/car-categories/create', methods=['GET', 'POST'])
def categories_create():
    if request.method == 'POST':
        try:
            data = read_catalog_form(CarCategory, with_details=True)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/catalog/form.html', item=None, form=request.form,
                                   kind='category'), 422
        try:
            db.session.add(CarCategory(**data))
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to create car category. Please try again.')
            return redirect(url_for('admin.categories_create'))
        flash('Car category created successfully.', 'success')
        return redirect(url_for('admin.categories_index'))
    return render_template('admin/catalog/form.html', item=None,
                           form={'is_active': True, 'icon': 'car'}, kind='category')


@bp.route('/car-categories/<int:category_id>')
def categories_show(category_id: int):
    category = db.get_or_404(CarCategory, category_id)
    return render_template('admin/catalog/show.html', item=category, kind='category')


@bp.route('/car-categories/<int:category_id>/edit', methods=['GET', 'POST'])
def categories_edit(category_id: int):
    category = db.get_or_404(CarCategory, category_id)
    if request.method == 'POST':
        try:
            data = read_catalog_form(CarCategory, category, with_details=True)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/catalog/form.html', item=category, form=request.form,
                                   kind='category'), 422
        for key, value in data.items():
            setattr(category, key, value)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to update car category. Please try again.')
            return redirect(url_for('admin.categories_edit', category_id=category_id))
        flash('Car category updated successfully.', 'success')
        return redirect(url_for('admin.categories_index'))
    return render_template('admin/catalog/form.html', item=category,
                           form=model_values(category), kind='category')


@bp.route('/car-categories/<int:category_id>/toggle-status', methods=['POST'])
def categories_toggle_status(category_id: int):
    category = db.get_or_404(CarCategory, category_id)
    category.is_active = not category.is_active
    db.session.commit()
    state = 'activated' if category.is_active else 'deactivated'
    flash(f"Car category {state} successfully.", 'success')
    return redirect(url_for('admin.categories_index'))
