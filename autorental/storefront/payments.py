"""Online payment of bookings through PayPal checkout."""

import logging
from datetime import datetime

from flask import abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from ..auth import login_required
from ..currency import CurrencyConverter
from ..errors import PaymentGatewayError, ValidationError
from ..extensions import db
from ..forms import FormReader
from ..models import Booking, Payment
from ..paypal import capture_details, get_client
from . import bp
from .booking import request_data


logger = logging.getLogger(__name__)

PROCESS_METHODS = ('paypal', 'credit_card', 'bank_transfer')


def error_page(message, booking=None, status=400):
    return render_template('storefront/payments/error.html', message=message,
                           booking=booking), status


@bp.route('/payments/process', methods=['POST'])
@login_required
def payments_process():
    form = FormReader(request_data())
    booking_id = form.int('booking_id', required=True)
    method = form.choice('payment_method', PROCESS_METHODS, required=True)
    payment_type = form.choice('payment_type', ('deposit', 'full_payment'),
                               default='full_payment')
    try:
        form.validate()
    except ValidationError as e:
        return jsonify(success=False, message=e.first_message, errors=e.errors), 422

    booking = db.get_or_404(Booking, booking_id)
    if booking.user_id != g.user.id:
        abort(403)
    if booking.payment_status == 'paid':
        return jsonify(success=False, message='Booking already paid'), 400
    if method != 'paypal':
        return jsonify(success=False, message='Payment method not yet implemented'), 400

    amount = float(booking.deposit_amount if payment_type == 'deposit' else booking.total_amount)
    converter = CurrencyConverter(current_app.config['VND_TO_USD_RATE'])
    conversion = converter.conversion_details(amount)
    amount_usd = conversion['amount_usd']
    try:
        order_id, approval_url, order = get_client().create_order(
            booking.booking_code,
            f"Car rental {booking.booking_code}",
            amount_usd,
            url_for('storefront.paypal_success', _external=True),
            url_for('storefront.paypal_cancel', _external=True),
        )
    except PaymentGatewayError as e:
        logger.error("PayPal order for booking %s failed: %s", booking.booking_code, e)
        return jsonify(success=False, message='Failed to create PayPal order. Please try again.'), 502

    payment = Payment(
        transaction_id=Payment.generate_transaction_id(),
        booking_id=booking.id,
        user_id=g.user.id,
        payment_method='paypal',
        payment_type=payment_type,
        amount=amount,
        amount_usd=amount_usd,
        exchange_rate=converter.rate,
        currency='VND',
        status='pending',
        paypal_order_id=order_id,
        paypal_response={'order': order},
    )
    db.session.add(payment)
    db.session.commit()
    logger.info("Payment %s started for booking %s", payment.transaction_id, booking.booking_code)
    return jsonify(success=True, payment_method='paypal', order_id=order_id,
                   approval_url=approval_url, **conversion)


@bp.route('/payments/paypal/success')
@login_required
def paypal_success():
    order_id = request.args.get('token')
    if not order_id:
        return error_page('Missing payment information. Please contact support.')
    payment = Payment.query.filter_by(paypal_order_id=order_id).first_or_404()
    booking = payment.booking
    if payment.user_id != g.user.id:
        abort(403)
    if payment.status == 'completed':
        return redirect(url_for('storefront.confirmation', booking_id=booking.id))

    try:
        result = get_client().capture_order(order_id)
    except PaymentGatewayError as e:
        logger.error("Capture of PayPal order %s failed: %s", order_id, e)
        payment.mark_failed()
        db.session.commit()
        return error_page('Payment capture failed. Please try again or contact support.', booking)

    details = capture_details(result)
    if details['status'] != 'COMPLETED':
        payment.mark_failed()
        payment.paypal_response = {**(payment.paypal_response or {}), 'capture': result}
        db.session.commit()
        logger.error("PayPal order %s captured with status %s", order_id, details['status'])
        return error_page('Payment capture failed. Please try again or contact support.', booking)

    try:
        payment.mark_completed()
        payment.paypal_capture_id = details['capture_id']
        payment.paypal_payer_id = details['payer_id']
        payment.paypal_payer_email = details['payer_email']
        payment.paypal_response = {**(payment.paypal_response or {}), 'capture': result}
        charge = booking.charge
        if charge is not None:
            charge.amount_paid = round((charge.amount_paid or 0) + payment.amount, 2)
            charge.refresh_balance()
        if booking.status == 'pending':
            booking.status = 'confirmed'
            booking.confirmed_at = datetime.now()
        booking.payment_status = 'paid'
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Recording PayPal capture %s failed: %s", details['capture_id'], e)
        return error_page('An error occurred while processing your payment. Please contact '
                          'support.', booking, 500)

    logger.info("Payment %s completed for booking %s", payment.transaction_id, booking.booking_code)
    flash('Payment completed successfully! Your booking is confirmed.', 'success')
    return redirect(url_for('storefront.confirmation', booking_id=booking.id))


@bp.route('/payments/paypal/cancel')
@login_required
def paypal_cancel():
    order_id = request.args.get('token')
    payment = Payment.query.filter_by(paypal_order_id=order_id).first() if order_id else None
    booking = None
    if payment is not None and payment.user_id == g.user.id:
        booking = payment.booking
        if payment.status == 'pending':
            payment.status = 'cancelled'
            db.session.commit()
        logger.info("Payment %s cancelled by user", payment.transaction_id)
    return render_template('storefront/payments/cancelled.html', booking=booking,
                           message='Payment was cancelled. You can try booking again.')


@bp.route('/payments/<int:payment_id>')
@login_required
def payments_show(payment_id: int):
    payment = db.get_or_404(Payment, payment_id)
    if payment.user_id != g.user.id:
        abort(403)
    return render_template('storefront/payments/show.html', payment=payment)
