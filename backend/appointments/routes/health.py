# appointments/routes/health.py
"""
Health check endpoints
"""
import logging
from flask import Blueprint, current_app, jsonify
from appointments.utils.timeutils import utc_now

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)

@health_bp.route('/health', methods=['GET'])
def health_check():
    """Basic health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'timestamp': utc_now().isoformat(),
        'service': 'Appointments',
        'version': '1.0.0'
    })

@health_bp.route('/health/detailed', methods=['GET'])
def detailed_health_check():
    """Detailed health check with service dependencies"""
    engine = current_app.extensions['appointments']
    config = engine.config

    email_status = 'configured' if getattr(engine.sender, 'is_configured', True) else 'not_configured'

    return jsonify({
        'status': 'healthy',
        'timestamp': utc_now().isoformat(),
        'service': 'Appointments',
        'version': '1.0.0',
        'dependencies': {
            'calendar_backend': type(engine.calendar).__name__,
            'email': email_status,
            'reminder_worker': 'running' if engine.worker.running else 'stopped'
        },
        'config': {
            'business_name': config.BUSINESS_NAME,
            'timezone': config.TIMEZONE,
            'reservation_ttl_minutes': int(config.RESERVATION_TTL.total_seconds() // 60),
            'hold_reserved_slots': config.HOLD_RESERVED_SLOTS
        }
    })
