import logging
from datetime import date, datetime

from flask import current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader, model_values
from ..listing import apply_search, paginate
from ..models import ROLES, USER_STATUSES, User
from . import bp


logger = logging.getLogger(__name__)


def user_stats() -> dict:
    users = User.active_query()
    return {
        'total': users.count(),
        'customers': users.filter_by(role='customer').count(),
        'owners': users.filter_by(role='owner').count(),
        'admins': users.filter_by(role='admin').count(),
        'verified': users.filter(User.email_verified_at.isnot(None)).count(),
        'active': users.filter_by(status='active').count(),
    }


def admin_count() -> int:
    return User.active_query().filter_by(role='admin').count()


def check_password(form, field='password'):
    password = form.str(field, required=True)
    if password and len(password) < 8:
        form.error(field, 'Password must be at least 8 characters.')
    if password and password != request.form.get(f'{field}_confirmation'):
        form.error(field, 'Password confirmation does not match.')
    return password


def read_user_form(user=None) -> dict:
    form = FormReader(request.form)
    data = {
        'name': form.str('name', required=True, max_length=255),
        'email': form.str('email', required=True, max_length=255),
        'role': form.choice('role', ROLES, required=True),
        'status': form.choice('status', USER_STATUSES if user else ('active', 'inactive'),
                              required=True),
        'phone': form.str('phone', max_length=20),
        'address': form.str('address'),
        'date_of_birth': form.date('date_of_birth'),
        'bio': form.str('bio', max_length=500),
    }
    if data['email']:
        data['email'] = data['email'].lower()
        if '@' not in data['email']:
            form.error('email', 'The email must be a valid email address.')
        clash = User.query.filter(User.email == data['email'])
        if user is not None:
            clash = clash.filter(User.id != user.id)
        if clash.first() is not None:
            form.error('email', 'This email address is already registered.')
    if data['date_of_birth'] and data['date_of_birth'] >= date.today():
        form.error('date_of_birth', 'Date of birth must be in the past.')
    if user is None:
        data['password'] = check_password(form)
    elif form.has('password'):
        data['password'] = check_password(form)
    form.validate()
    return data


@bp.route('/users')
def users_index():
    query = User.active_query()
    role = request.args.get('role')
    status = request.args.get('status')
    verified = request.args.get('verified')
    if role in ROLES:
        query = query.filter(User.role == role)
    if status in USER_STATUSES:
        query = query.filter(User.status == status)
    if verified == 'yes':
        query = query.filter(User.email_verified_at.isnot(None))
    elif verified == 'no':
        query = query.filter(User.email_verified_at.is_(None))
    query = apply_search(query, request.args.get('search'), User.name, User.email, User.phone)
    users = paginate(query.order_by(User.created_at.desc(), User.id.desc()),
                     current_app.config['PER_PAGE_ADMIN'])
    return render_template('admin/users/index.html', users=users, stats=user_stats(),
                           filters=request.args, roles=ROLES, statuses=USER_STATUSES)


@bp.route('/users/create', methods=['GET', 'POST'])
def users_create():
    if request.method == 'POST':
        try:
            data = read_user_form()
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/users/form.html', user=None, form=request.form,
                                   roles=ROLES, statuses=USER_STATUSES), 422
        password = data.pop('password')
        user = User(**data, email_verified_at=datetime.now())
        user.set_password(password)
        try:
            db.session.add(user)
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to create user.')
            return redirect(url_for('admin.users_create'))
        logger.info("Admin %s created user %s", g.user.email, user.email)
        flash(f"User '{user.name}' has been created successfully.", 'success')
        return redirect(url_for('admin.users_index'))
    return render_template('admin/users/form.html', user=None, form={}, roles=ROLES,
                           statuses=USER_STATUSES)


@bp.route('/users/<int:user_id>')
def users_show(user_id: int):
    user = db.get_or_404(User, user_id)
    recent_bookings = sorted(user.bookings, key=lambda b: b.created_at, reverse=True)[:10]
    return render_template('admin/users/show.html', user=user, recent_bookings=recent_bookings)


@bp.route('/users/<int:user_id>/edit', methods=['GET', 'POST'])
def users_edit(user_id: int):
    user = db.get_or_404(User, user_id)
    if request.method == 'POST':
        try:
            data = read_user_form(user)
        except ValidationError as e:
            flash_errors(e)
            return render_template('admin/users/form.html', user=user, form=request.form,
                                   roles=ROLES, statuses=USER_STATUSES), 422
        password = data.pop('password', None)
        for key, value in data.items():
            setattr(user, key, value)
        if password:
            user.set_password(password)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            report_db_failure(e, 'Failed to update user.')
            return redirect(url_for('admin.users_edit', user_id=user.id))
        flash(f"User '{user.name}' has been updated successfully.", 'success')
        return redirect(url_for('admin.users_show', user_id=user.id))
    return render_template('admin/users/form.html', user=user, form=model_values(user), roles=ROLES,
                           statuses=USER_STATUSES)


@bp.route('/users/<int:user_id>/delete', methods=['POST'])
def users_delete(user_id: int):
    user = db.get_or_404(User, user_id)
    if user.is_admin and admin_count() <= 1:
        flash('Cannot delete the last admin user.', 'error')
        return redirect(url_for('admin.users_show', user_id=user.id))
    if user.id == g.user.id:
        flash('You cannot delete your own account.', 'error')
        return redirect(url_for('admin.users_show', user_id=user.id))
    now = datetime.now()
    user.deleted_at = now
    user.deletion_requested_at = now
    db.session.commit()
    logger.info("Admin %s deleted user %s", g.user.email, user.email)
    flash(f"User '{user.name}' has been deleted successfully.", 'success')
    return redirect(url_for('admin.users_index'))


@bp.route('/users/<int:user_id>/status', methods=['POST'])
def users_change_status(user_id: int):
    user = db.get_or_404(User, user_id)
    form = FormReader(request.form)
    status = form.choice('status', USER_STATUSES, required=True)
    reason = form.str('reason')
    if status in ('suspended', 'banned') and not reason:
        form.error('reason', 'A reason is required when suspending or banning a user.')
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return redirect(url_for('admin.users_show', user_id=user.id))
    if user.id == g.user.id:
        flash('You cannot change your own status.', 'error')
        return redirect(url_for('admin.users_show', user_id=user.id))
    user.status = status
    user.status_note = reason if status in ('suspended', 'banned') else None
    db.session.commit()
    logger.info("User %s status changed to %s by %s", user.email, status, g.user.email)
    flash(f"User status has been changed to '{status}'.", 'success')
    return redirect(url_for('admin.users_show', user_id=user.id))


@bp.route('/users/<int:user_id>/role', methods=['POST'])
def users_change_role(user_id: int):
    user = db.get_or_404(User, user_id)
    form = FormReader(request.form)
    role = form.choice('role', ROLES, required=True)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return redirect(url_for('admin.users_show', user_id=user.id))
    if user.is_admin and role != 'admin' and admin_count() <= 1:
        flash('Cannot change the role of the last admin.', 'error')
        return redirect(url_for('admin.users_show', user_id=user.id))
    if user.id == g.user.id:
        flash('You cannot change your own role.', 'error')
        return redirect(url_for('admin.users_show', user_id=user.id))
    user.role = role
    db.session.commit()
    logger.info("User %s role changed to %s by %s", user.email, role, g.user.email)
    flash(f"User role has been changed to '{role}'.", 'success')
    return redirect(url_for('admin.users_show', user_id=user.id))


@bp.route('/users/<int:user_id>/password', methods=['POST'])
def users_reset_password(user_id: int):
    user = db.get_or_404(User, user_id)
    form = FormReader(request.form)
    password = check_password(form)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return redirect(url_for('admin.users_show', user_id=user.id))
    user.set_password(password)
    db.session.commit()
    flash('User password has been reset successfully.', 'success')
    return redirect(url_for('admin.users_show', user_id=user.id))
