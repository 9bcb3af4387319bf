"""Session based authentication and the access-control decorators."""

import functools
import logging
from urllib.parse import urlsplit

from flask import Blueprint, abort, flash, g, redirect, render_template, request, session, url_for

from .errors import ValidationError, flash_errors
from .extensions import db
from .forms import FormReader
from .models import User


logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

RESTRICTED_MESSAGES = {
    'suspended': 'Your account has been temporarily suspended.',
    'banned': 'Your account has been permanently banned.',
}


def login_required(view):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return redirect(url_for('auth.login', next=request.path))
        return view(*args, **kwargs)

    return wrapped


def admin_required(view):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return redirect(url_for('auth.login', next=request.path))
        if not g.user.is_admin:
            abort(403)
        return view(*args, **kwargs)

    return wrapped


def load_logged_in_user():
    """Populate ``g.user`` and sign out accounts that were suspended or banned."""
    g.user = None
    user_id = session.get('user_id')
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or user.deleted_at is not None:
        session.clear()
        return None
    if user.is_restricted:
        session.clear()
        message = RESTRICTED_MESSAGES[user.status]
        if user.status_note:
            message += f" Reason: {user.status_note}"
        logger.info("Signed out %s user %s", user.status, user.email)
        flash(message, 'error')
        return redirect(url_for('auth.login'))
    g.user = user
    return None


@bp.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'POST':
        form = FormReader(request.form)
        name = form.str('name', required=True, max_length=255)
        email = form.str('email', required=True, max_length=255)
        password = form.str('password', required=True)
        if email and User.query.filter(db.func.lower(User.email) == email.lower()).first():
            form.error('email', 'The email has already been taken.')
        if password and len(password) < 8:
            form.error('password', 'The password must be at least 8 characters.')
        if password and password != request.form.get('password_confirmation'):
            form.error('password', 'The password confirmation does not match.')
        try:
            form.validate()
        except ValidationError as e:
            flash_errors(e)
            return render_template('auth/register.html', form=request.form), 422
        user = User(name=name, email=email.lower(), phone=request.form.get('phone') or None)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        logger.info("Registered user %s", user.email)
        session.clear()
        session['user_id'] = user.id
        flash('Welcome! Your account has been created.', 'success')
        return redirect(url_for('storefront.dashboard'))
    return render_template('auth/register.html', form={})


def is_local_url(target) -> bool:
    """True for a path on this site; browsers read backslashes as slashes."""
    if not target or any(ord(char) < 32 for char in target):
        return False
    normalized = target.replace('\\', '/')
    parts = urlsplit(normalized)
    return normalized.startswith('/') and not parts.scheme and not parts.netloc


@bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        email = (request.form.get('email') or '').strip().lower()
        password = request.form.get('password') or ''
        user = User.active_query().filter(db.func.lower(User.email) == email).first()
        if user is None or not user.check_password(password):
            flash('These credentials do not match our records.', 'error')
            return render_template('auth/login.html', email=email), 401
        if user.is_restricted:
            flash(RESTRICTED_MESSAGES[user.status], 'error')
            return render_template('auth/login.html', email=email), 403
        session.clear()
        session['user_id'] = user.id
        logger.info("User %s logged in", user.email)
        target = request.args.get('next')
        if is_local_url(target):
            return redirect(target)
        if user.is_admin:
            return redirect(url_for('admin.dashboard'))
        return redirect(url_for('storefront.dashboard'))
    return render_template('auth/login.html', email='')


@bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    flash('You have been logged out.', 'success')
    return redirect(url_for('storefront.home'))
