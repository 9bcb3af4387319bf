import logging
from datetime import datetime, time

from flask import current_app, flash, g, jsonify, redirect, render_template, request, url_for
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..commands import archive_expired_promotions
from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values, parse_date, parse_datetime, parse_float
from ..listing import apply_search, paginate
from ..models import DISCOUNT_TYPES, PROMOTION_STATUSES, Promotion
from . import bp


logger = logging.getLogger(__name__)

EDITABLE_STATUSES = ('active', 'paused', 'upcoming')


def read_window_bound(form, field, end_of_day=False):
    """Accept a plain date or a date and time for the promotion window."""
    value = form.raw(field)
    if not value:
        form.error(field, f"The {form.label(field)} field is required.")
        return None
    try:
        return parse_datetime(value)
    except ValueError:
        pass
    try:
        day = parse_date(value)
    except ValueError:
        form.error(field, f"The {form.label(field)} is not a valid date.")
        return None
    return datetime.combine(day, time(23, 59, 59) if end_of_day else time(0, 0))


def read_promotion_form(promotion=None) -> dict:
    form = FormReader(request.form)
    code = form.str('code', required=True, max_length=20)
    data = {
        'code': code.upper() if code else code,
        'name': form.str('name', required=True, max_length=255),
        'description': form.str('description'),
        'discount_type': form.choice('discount_type', DISCOUNT_TYPES, required=True),
        'discount_value': form.float('discount_value', required=True, min_value=0,
                                     max_value=100000000),
        'max_discount': form.float('max_discount', min_value=0),
        'min_amount': form.float('min_amount', min_value=0, default=0),
        'min_rental_hours': form.int('min_rental_hours', min_value=1, default=4),
        'max_uses': form.int('max_uses', min_value=1),
        'max_uses_per_user': form.int('max_uses_per_user', min_value=1, default=1),
        'start_date': read_window_bound(form, 'start_date'),
        'end_date': read_window_bound(form, 'end_date', end_of_day=True),
        'status': form.choice('status', EDITABLE_STATUSES, required=True),
        'is_auto_apply': form.bool('is_auto_apply'),
        'is_featured': form.bool('is_featured'),
        'priority': form.int('priority', min_value=0, default=0),
    }
    if data['discount_type'] == 'percentage' and (data['discount_value'] or 0) > 100:
        form.error('discount_value', 'A percentage discount may not be greater than 100.')
    if data['start_date'] and data['end_date'] and data['end_date'] <= data['start_date']:
        form.error('end_date', 'The end date must be a date after start date.')
    if data['code']:
        clash = Promotion.query.filter(func.upper(Promotion.code) == data['code'])
        if promotion is not None:
            clash = clash.filter(Promotion.id != promotion.id)
        if clash.first() is not None:
            form.error('code', 'The code has already been taken.')
    form.validate()
    return data


@bp.route('/promotions')
def promotions_index():
    archive_expired_promotions()
    query = Promotion.query
    status = request.args.get('status')
    if status in PROMOTION_STATUSES:
        query = query.filter(Promotion.status == status)
    discount_type = request.args.get('type')
    if discount_type in DISCOUNT_TYPES:
        query = query.filter(Promotion.discount_type == discount_type)
    query = apply_search(query, request.args.get('search'), Promotion.code, Promotion.name)
    promotions = paginate(query.order_by(Promotion.priority.asc(), Promotion.start_date.desc()),
                          current_app.config['PER_PAGE_ADMIN_SMALL'])
    stats = {
        'total': Promotion.query.count(),
        'active': Promotion.query.filter_by(status='active').count(),
        'featured': Promotion.query.filter_by(is_featured=True).count(),
        'archived': Promotion.query.filter_by(status='archived').count(),
        'total_uses': int(db.session.query(func.coalesce(func.sum(Promotion.used_count), 0)).scalar()),
    }
    return render_template('admin/promotions/index.html', promotions=promotions, stats=stats,
                           filters=request.args, statuses=PROMOTION_STATUSES,
                           types=DISCOUNT_TYPES)


@bp.route('/promotions/create', methods=['GET', 'POST'])
def promotions_create():
    if request.method == 'POST':
        try:
            data = read_promotion_form()
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/promotions/form.html', promotion=None,
                                   form=request.form, types=DISCOUNT_TYPES,
                                   statuses=EDITABLE_STATUSES), 422
        promotion = Promotion(**data, created_by=g.user.id)
        try:
            db.session.add(promotion)
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to create promotion. Please try again.')
            return redirect(url_for('admin.promotions_create'))
        logger.info("Promotion %s created by %s", promotion.code, g.user.email)
        flash('Promotion created successfully.', 'success')
        return redirect(url_for('admin.promotions_index'))
    return render_template('admin/promotions/form.html', promotion=None, form={},
                           types=DISCOUNT_TYPES, statuses=EDITABLE_STATUSES)


@bp.route('/promotions/<int:promotion_id>')
def promotions_show(promotion_id: int):
    promotion = db.get_or_404(Promotion, promotion_id)
    return render_template('admin/promotions/show.html', promotion=promotion)


@bp.route('/promotions/<int:promotion_id>/edit', methods=['GET', 'POST'])
def promotions_edit(promotion_id: int):
    promotion = db.get_or_404(Promotion, promotion_id)
    if request.method == 'POST':
        try:
            data = read_promotion_form(promotion)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/promotions/form.html', promotion=promotion,
                                   form=request.form, types=DISCOUNT_TYPES,
                                   statuses=EDITABLE_STATUSES), 422
        for key, value in data.items():
            setattr(promotion, key, value)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to update promotion. Please try again.')
            return redirect(url_for('admin.promotions_edit', promotion_id=promotion.id))
        flash('Promotion updated successfully.', 'success')
        return redirect(url_for('admin.promotions_show', promotion_id=promotion.id))
    return render_template('admin/promotions/form.html', promotion=promotion,
                           form=model_values(promotion), types=DISCOUNT_TYPES,
                           statuses=EDITABLE_STATUSES)


@bp.route('/promotions/<int:promotion_id>/delete', methods=['POST'])
def promotions_delete(promotion_id: int):
    promotion = db.get_or_404(Promotion, promotion_id)
    if promotion.booking_promotions:
        flash('Failed to delete promotion. It has already been applied to bookings.', 'error')
        return redirect(url_for('admin.promotions_index'))
    try:
        db.session.delete(promotion)
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, 'Failed to delete promotion. Please try again.')
        return redirect(url_for('admin.promotions_index'))
    flash('Promotion deleted successfully.', 'success')
    return redirect(url_for('admin.promotions_index'))


@bp.route('/promotions/<int:promotion_id>/toggle-status', methods=['POST'])
def promotions_toggle_status(promotion_id: int):
    promotion = db.get_or_404(Promotion, promotion_id)
    if promotion.status == 'archived':
        flash('Archived promotions cannot be reactivated.', 'error')
        return redirect(url_for('admin.promotions_index'))
    promotion.status = 'paused' if promotion.status == 'active' else 'active'
    db.session.commit()
    message = 'activated' if promotion.status == 'active' else 'paused'
    flash(f"Promotion {message} successfully.", 'success')
    return redirect(url_for('admin.promotions_index'))


@bp.route('/promotions/<int:promotion_id>/archive', methods=['POST'])
def promotions_archive(promotion_id: int):
    promotion = db.get_or_404(Promotion, promotion_id)
    promotion.status = 'archived'
    db.session.commit()
    logger.info("Promotion %s archived by %s", promotion.code, g.user.email)
    flash('Promotion archived successfully.', 'success')
    return redirect(url_for('admin.promotions_index'))


@bp.route('/promotions/<int:promotion_id>/preview')
def promotions_preview(promotion_id: int):
    """Discount this promotion would give on ``amount``."""
    promotion = db.get_or_404(Promotion, promotion_id)
    amount = request.args.get('amount', type=parse_float)
    if amount is None or amount < 0:
        return jsonify(message='The amount must be a positive number.'), 422
    discount = promotion.calculate_discount(amount)
    return jsonify(
        code=promotion.code,
        amount=amount,
        discount_amount=discount,
        final_amount=round(amount - discount, 2),
        meets_minimum=amount >= (promotion.min_amount or 0),
        is_valid=promotion.is_valid,
    )
