# appointments/routes/settings.py
"""
Organizer settings endpoints
"""
import json
import logging
from flask import Blueprint, Response, current_app, jsonify, request
from appointments.utils.encoding import encode_calendar_listing
from appointments.utils.exceptions import (
    TokenAlreadyUsed, TokenExpired, TokenNotFound, TransientError, PermanentError,
    ValidationError
)
from appointments.utils.validators import InputValidator

logger = logging.getLogger(__name__)
settings_bp = Blueprint('settings', __name__)


def _engine():
    return current_app.extensions['appointments']


@settings_bp.route('/<user_id>', methods=['POST'])
def state_action(user_id):
    """Run a named settings action: a=action, p=page id, d=JSON data"""
    try:
        user_id = InputValidator.validate_identifier(user_id, 'User id')
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400

    params = request.form if request.form else (request.get_json(silent=True) or {})
    action = params.get('a', '')
    page_id = params.get('p')
    data = params.get('d')
    if data is not None and not isinstance(data, str):
        data = json.dumps(data)

    status, body = _engine().actions.dispatch(user_id, action, page_id, data)
    return jsonify(body), status


@settings_bp.route('/<user_id>/calendars', methods=['GET'])
def list_calendars(user_id):
    """Destination calendar choices, encoded like the slot listing"""
    try:
        user_id = InputValidator.validate_identifier(user_id, 'User id')
        calendars = _engine().calendar.list_calendars()
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400
    except TransientError as e:
        logger.error(f"Calendar unavailable while listing calendars for {user_id}: {e}")
        return jsonify({'error': 'Calendar service temporarily unavailable'}), 503
    except PermanentError as e:
        logger.error(f"Calendar rejected calendar listing for {user_id}: {e}")
        return jsonify({'error': 'Calendar service error'}), 502

    logger.info(f"📅 Listing {len(calendars)} calendars for {user_id}")
    return Response(encode_calendar_listing(calendars), mimetype='text/plain')


@settings_bp.route('/<user_id>/appointments/<appointment_id>', methods=['DELETE'])
def cancel_appointment(user_id, appointment_id):
    """Organizer side cancellation of a confirmed appointment"""
    booking = _engine().booking

    attempt = booking.resolve(appointment_id)
    if attempt is None or attempt.user_id != user_id or attempt.appointment_id != appointment_id:
        return jsonify({'error': 'Appointment not found'}), 404

    try:
        attempt = booking.cancel(appointment_id)
    except TokenNotFound:
        return jsonify({'error': 'Appointment not found'}), 404
    except TokenAlreadyUsed:
        return jsonify({'error': 'Appointment is already cancelled'}), 409
    except TokenExpired:
        return jsonify({'error': 'Reservation has expired'}), 410
    except TransientError as e:
        logger.error(f"Calendar unavailable while cancelling {appointment_id}: {e}")
        return jsonify({'error': 'Calendar service temporarily unavailable'}), 503
    except PermanentError as e:
        logger.error(f"Calendar rejected cancellation of {appointment_id}: {e}")
        return jsonify({'error': 'Calendar service error'}), 502

    logger.info(f"Organizer {user_id} cancelled appointment {appointment_id}")
    return jsonify({'success': True, 'booking': attempt.to_dict()})
