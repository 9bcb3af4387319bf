import logging
from datetime import date, datetime, timedelta

from flask import current_app, flash, g, jsonify, redirect, render_template, request, url_for
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PaymentGatewayError, ValidationError, flash_errors, report_db_failure
from ..extensions import db
from ..forms import FormReader
from ..listing import apply_sort, paginate
from ..models import PAYMENT_METHODS, PAYMENT_STATUSES, PAYMENT_TYPES, Booking, Payment
from ..paypal import get_client
from . import bp


logger = logging.getLogger(__name__)

SORTS = {
    'created_at': Payment.created_at,
    'amount': Payment.amount,
    'paid_at': Payment.paid_at,
    'status': Payment.status,
}


def sum_amount(*criteria) -> float:
    query = db.session.query(func.coalesce(func.sum(Payment.amount), 0))
    if criteria:
        query = query.filter(*criteria)
    return float(query.scalar() or 0)


def payment_stats() -> dict:
    stats = {'total': Payment.query.count(), 'total_amount': sum_amount()}
    for status in PAYMENT_STATUSES:
        stats[status] = Payment.query.filter_by(status=status).count()
        stats[f'{status}_amount'] = sum_amount(Payment.status == status)
    return stats


@bp.route('/payments')
def payments_index():
    query = Payment.query.join(Booking, Payment.booking_id == Booking.id)
    status = request.args.get('status')
    if status in PAYMENT_STATUSES:
        query = query.filter(Payment.status == status)
    method = request.args.get('payment_method')
    if method in PAYMENT_METHODS:
        query = query.filter(Payment.payment_method == method)
    payment_type = request.args.get('payment_type')
    if payment_type in PAYMENT_TYPES:
        query = query.filter(Payment.payment_type == payment_type)
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Payment.transaction_id.ilike(pattern),
                                 Payment.paypal_order_id.ilike(pattern),
                                 Booking.booking_code.ilike(pattern)))
    query = apply_sort(query, request.args.get('sort_by'), request.args.get('sort_order', 'desc'),
                       SORTS, 'created_at')
    payments = paginate(query, current_app.config['PER_PAGE_ADMIN'])
    return render_template('admin/payments/index.html', payments=payments, stats=payment_stats(),
                           filters=request.args, statuses=PAYMENT_STATUSES,
                           methods=PAYMENT_METHODS, types=PAYMENT_TYPES)


@bp.route('/payments/<int:payment_id>')
def payments_show(payment_id: int):
    payment = db.get_or_404(Payment, payment_id)
    return render_template('admin/payments/show.html', payment=payment)


@bp.route('/payments/statistics')
def payments_statistics():
    """Counts and completed revenue for today, this week and this month."""
    today = date.today()
    day_start = datetime.combine(today, datetime.min.time())
    week_start = day_start - timedelta(days=today.weekday())
    month_start = day_start.replace(day=1)

    def window(start):
        completed = (Payment.status == 'completed', Payment.paid_at >= start)
        return {
            'count': Payment.query.filter(Payment.created_at >= start).count(),
            'amount': sum_amount(*completed),
        }

    by_method = {
        method: {
            'count': Payment.query.filter_by(payment_method=method).count(),
            'amount': sum_amount(Payment.payment_method == method, Payment.status == 'completed'),
        }
        for method in PAYMENT_METHODS
    }
    by_status = {
        status: {
            'count': Payment.query.filter_by(status=status).count(),
            'amount': sum_amount(Payment.status == status),
        }
        for status in PAYMENT_STATUSES
    }
    return jsonify(today=window(day_start), week=window(week_start), month=window(month_start),
                   by_method=by_method, by_status=by_status)


@bp.route('/payments/<int:payment_id>/refund', methods=['POST'])
def payments_refund(payment_id: int):
    payment = db.get_or_404(Payment, payment_id)
    back = redirect(url_for('admin.payments_show', payment_id=payment.id))
    if payment.status == 'refunded':
        flash('Payment has already been refunded.', 'error')
        return back
    if payment.status != 'completed':
        flash('Only completed payments can be refunded.', 'error')
        return back
    form = FormReader(request.form)
    reason = form.str('reason', max_length=500) or 'Refunded by admin'
    try:
        form.validate()
    except ValidationError as e:
        flash_errors(e)
        return back

    if payment.payment_method == 'paypal' and payment.paypal_capture_id:
        try:
            result = get_client().refund_capture(payment.paypal_capture_id,
                                                 payment.amount_usd, reason)
        except PaymentGatewayError as e:
            logger.error("Refund of payment %s failed at PayPal: %s", payment.transaction_id, e)
            flash('Failed to refund payment through PayPal. Please try again.', 'error')
            return back
        payment.paypal_response = {**(payment.paypal_response or {}), 'refund': result}

    try:
        payment.mark_refunded()
        payment.notes = reason
        booking = payment.booking
        charge = booking.charge
        if charge is not None:
            charge.amount_paid = round((charge.amount_paid or 0) - payment.amount, 2)
            charge.refund_amount = round((charge.refund_amount or 0) + payment.amount, 2)
            charge.refresh_balance()
        still_paid = any(p.status == 'completed' for p in booking.payments if p.id != payment.id)
        if not still_paid:
            booking.payment_status = 'refunded'
        db.session.commit()
    except SQLAlchemyError as e:
        report_db_failure(e, 'Failed to refund payment. Please try again.')
        return back
    logger.info("Payment %s refunded by %s", payment.transaction_id, g.user.email)
    flash('Payment refunded successfully.', 'success')
    return back
