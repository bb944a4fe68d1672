# appointments/routes/booking.py
"""
Public booking page endpoints: slot listing, form post, confirmation and
attendee cancellation
"""
import logging
from flask import Blueprint, Response, current_app, jsonify, redirect, request, url_for
from appointments.utils.encoding import encode_slot_listing
from appointments.utils.exceptions import (
    ConfigError, NotificationError, PermanentError, SlotUnavailable, TokenError,
    TokenExpired, TokenNotFound, TransientError, ValidationError
)
from appointments.utils.validators import InputValidator

logger = logging.getLogger(__name__)
booking_bp = Blueprint('booking', __name__)

# form status codes shown by the booking page after a redirect
FORM_STATUS_BAD_INPUT = 1
FORM_STATUS_SLOT_TAKEN = 2
FORM_STATUS_CHECK_EMAIL = 3

FORM_MESSAGES = {
    0: 'Pick a time slot',
    FORM_STATUS_BAD_INPUT: 'Please check the details you entered',
    FORM_STATUS_SLOT_TAKEN: 'This time slot is no longer available. Please pick another slot.',
    FORM_STATUS_CHECK_EMAIL: 'Check your email for a link to confirm your appointment',
}


def _engine():
    return current_app.extensions['appointments']


def _token_error_response(error: TokenError):
    if isinstance(error, TokenNotFound):
        status = 404
    elif isinstance(error, TokenExpired):
        status = 410
    else:
        status = 409
    return jsonify({'error': error.user_message}), status


def _form_redirect(user_id, page_id, sts):
    return redirect(url_for('booking.booking_page', user_id=user_id, page_id=page_id, sts=sts), code=303)


@booking_bp.route('/<user_id>/<page_id>/slots', methods=['GET'])
def list_slots(user_id, page_id):
    """Encoded candidate slots for the booking page renderer"""
    engine = _engine()
    horizon = engine.config.BOOKING_HORIZON_DAYS

    days = request.args.get('days', horizon, type=int)
    if not (1 <= days <= horizon):
        return jsonify({'error': f'Days must be between 1 and {horizon}'}), 400

    try:
        user_id = InputValidator.validate_identifier(user_id, 'User id')
        page_id = InputValidator.validate_identifier(page_id, 'Page id')
        slots = engine.booking.list_slots(user_id, page_id, days)
    except (ValidationError, ConfigError) as e:
        logger.warning(f"Slot listing rejected for {user_id}/{page_id}: {e}")
        return jsonify({'error': str(e)}), 400
    except TransientError as e:
        logger.error(f"Calendar unavailable while listing slots: {e}")
        return jsonify({'error': 'Calendar service temporarily unavailable'}), 503
    except PermanentError as e:
        logger.error(f"Calendar rejected slot listing: {e}")
        return jsonify({'error': 'Calendar service error'}), 502

    tz = engine.settings.get_cls(user_id, page_id).tz
    logger.info(f"📅 Listing {len(slots)} slots for {user_id}/{page_id} ({days} days)")
    return Response(encode_slot_listing(slots, tz), mimetype='text/plain')


@booking_bp.route('/<user_id>/<page_id>/form', methods=['GET'])
def booking_page(user_id, page_id):
    """Where the form redirects back to, with the outcome in `sts`"""
    try:
        user_id = InputValidator.validate_identifier(user_id, 'User id')
        page_id = InputValidator.validate_identifier(page_id, 'Page id')
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400

    sts = request.args.get('sts', 0, type=int)
    if sts not in FORM_MESSAGES:
        sts = 0

    return jsonify({
        'status': sts,
        'message': FORM_MESSAGES[sts],
        'slots_url': url_for('booking.list_slots', user_id=user_id, page_id=page_id)
    })


@booking_bp.route('/<user_id>/<page_id>/form', methods=['POST'])
def booking_form(user_id, page_id):
    """Reserve the chosen slot and send the visitor on to the confirmation link"""
    engine = _engine()
    form = request.form

    try:
        user_id = InputValidator.validate_identifier(user_id, 'User id')
        page_id = InputValidator.validate_identifier(page_id, 'Page id')
        start = InputValidator.validate_slot_datetime(form.get('adatetime'))
        duration = InputValidator.validate_duration(form.get('appt_dur'))
        visitor_fields = InputValidator.validate_visitor_fields(form)

        attempt = engine.booking.reserve(user_id, page_id, start, visitor_fields, duration)

    except (ValidationError, ConfigError) as e:
        logger.warning(f"Booking form rejected for {user_id}/{page_id}: {e}")
        return _form_redirect(user_id, page_id, FORM_STATUS_BAD_INPUT)

    except SlotUnavailable as e:
        logger.info(f"Booking form for {user_id}/{page_id}: {e}")
        return _form_redirect(user_id, page_id, FORM_STATUS_SLOT_TAKEN)

    except TransientError as e:
        logger.error(f"Calendar unavailable while reserving: {e}")
        return jsonify({'error': 'Calendar service temporarily unavailable'}), 503

    except PermanentError as e:
        logger.error(f"Calendar rejected reservation: {e}")
        return jsonify({'error': 'Calendar service error'}), 502

    blob = engine.signer.dumps(attempt.token, attempt.visitor_fields)
    confirm_path = url_for(
        'booking.confirm_booking', user_id=user_id, page_id=page_id, token=attempt.token, d=blob
    )
    if engine.settings.get_email_settings(user_id).skip_email_validation:
        return redirect(confirm_path, code=303)

    # the link only reaches the visitor through their inbox
    confirm_url = engine.config.PUBLIC_BASE_URL.rstrip('/') + confirm_path
    try:
        engine.booking.request_verification(attempt.token, confirm_url)
    except TransientError as e:
        logger.error(f"Mail server unavailable while sending confirmation link: {e}")
        return jsonify({'error': 'Email service temporarily unavailable'}), 503
    except (PermanentError, NotificationError) as e:
        logger.error(f"Confirmation link could not be emailed: {e}")
        return jsonify({'error': 'Email service error'}), 502

    return _form_redirect(user_id, page_id, FORM_STATUS_CHECK_EMAIL)


@booking_bp.route('/<user_id>/<page_id>/<token>/cncf', methods=['GET', 'POST'])
def confirm_booking(user_id, page_id, token):
    """Commit the reservation bound to this link"""
    engine = _engine()

    try:
        visitor = engine.signer.loads(request.args.get('d', ''), token)

        attempt = engine.booking.get_attempt(token)
        if attempt is None or attempt.user_id != user_id or attempt.page_id != page_id:
            raise TokenNotFound("Unknown confirmation token")

        appointment = engine.booking.confirm(token)

    except ValidationError as e:
        logger.warning(f"Rejected confirmation link for {user_id}/{page_id}: {e}")
        return jsonify({'error': str(e)}), 400

    except TokenError as e:
        logger.info(f"Confirmation for {user_id}/{page_id} refused: {type(e).__name__}")
        return _token_error_response(e)

    except SlotUnavailable as e:
        return jsonify({'error': str(e)}), 409

    except TransientError as e:
        logger.error(f"Calendar unavailable while confirming: {e}")
        return jsonify({'error': 'Calendar service temporarily unavailable'}), 503

    except PermanentError as e:
        logger.error(f"Calendar rejected confirmation: {e}")
        return jsonify({'error': 'Calendar service error'}), 502

    return jsonify({
        'success': True,
        'appointment': appointment.to_dict(),
        'visitor': visitor
    })


@booking_bp.route('/<user_id>/<page_id>/<token>/cancel', methods=['POST'])
def cancel_booking(user_id, page_id, token):
    """Attendee cancellation through the link in their emails"""
    engine = _engine()

    if not engine.settings.get_email_settings(user_id).attendee_cancel:
        return jsonify({'error': 'Cancellation is not available for this appointment'}), 403

    attempt = engine.booking.get_attempt(token)
    if attempt is None or attempt.user_id != user_id or attempt.page_id != page_id:
        return _token_error_response(TokenNotFound())

    try:
        attempt = engine.booking.cancel(token)
    except TokenError as e:
        return _token_error_response(e)
    except TransientError as e:
        logger.error(f"Calendar unavailable while cancelling: {e}")
        return jsonify({'error': 'Calendar service temporarily unavailable'}), 503
    except PermanentError as e:
        logger.error(f"Calendar rejected cancellation: {e}")
        return jsonify({'error': 'Calendar service error'}), 502

    return jsonify({'success': True, 'booking': attempt.to_dict()})
