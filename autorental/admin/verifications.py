import logging
from datetime import datetime

from flask import current_app, flash, g, redirect, render_template, request, url_for

from ..errors import ValidationError, flash_errors
from ..extensions import db
from ..forms import FormReader
from ..listing import apply_search, paginate
from ..models import VERIFICATION_STATUSES, User, UserVerification
from . import bp


logger = logging.getLogger(__name__)


@bp.route('/verifications')
def verifications_index():
    query = UserVerification.query.join(User, UserVerification.user_id == User.id)
    status = request.args.get('status')
    if status in VERIFICATION_STATUSES:
        query = query.filter(UserVerification.status == status)
    query = apply_search(query, request.args.get('search'), User.name, User.email)
    verifications = paginate(query.order_by(UserVerification.created_at.desc()),
                             current_app.config['PER_PAGE_ADMIN_SMALL'])
    stats = {value: UserVerification.query.filter_by(status=value).count()
             for value in VERIFICATION_STATUSES}
    stats['total'] = UserVerification.query.count()
    return render_template('admin/verifications/index.html', verifications=verifications,
                           stats=stats, filters=request.args, statuses=VERIFICATION_STATUSES)


@bp.route('/verifications/<int:verification_id>')
def verifications_show(verification_id: int):
    verification = db.get_or_404(UserVerification, verification_id)
    return render_template('admin/verifications/show.html', verification=verification)


@bp.route('/verifications/<int:verification_id>/approve', methods=['POST'])
def verifications_approve(verification_id: int):
    verification = db.get_or_404(UserVerification, verification_id)
    if verification.status == 'verified':
        flash('This verification has already been approved.', 'error')
        return redirect(url_for('admin.verifications_show', verification_id=verification.id))
    verification.status = 'verified'
    verification.verified_by = g.user.id
    verification.verified_at = datetime.now()
    verification.rejected_by = None
    verification.rejected_at = None
    verification.rejected_reason = None
    db.session.commit()
    logger.info("Verification %s approved by %s", verification.id, g.user.email)
    flash('Verification approved successfully.', 'success')
    return redirect(url_for('admin.verifications_show', verification_id=verification.id))


@bp.route('/verifications/<int:verification_id>/reject', methods=['POST'])
def verifications_reject(verification_id: int):
    verification = db.get_or_404(UserVerification, verification_id)
    form = FormReader(request.form)
    reason = form.str('reason', required=True, max_length=1000)
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return redirect(url_for('admin.verifications_show', verification_id=verification.id))
    if verification.status == 'rejected':
        flash('This verification has already been rejected.', 'error')
        return redirect(url_for('admin.verifications_show', verification_id=verification.id))
    verification.status = 'rejected'
    verification.rejected_by = g.user.id
    verification.rejected_at = datetime.now()
    verification.rejected_reason = reason
    verification.verified_by = None
    verification.verified_at = None
    db.session.commit()
    logger.info("Verification %s rejected by %s", verification.id, g.user.email)
    flash('Verification rejected.', 'success')
    return redirect(url_for('admin.verifications_show', verification_id=verification.id))
