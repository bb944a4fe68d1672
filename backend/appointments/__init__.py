# appointments/__init__.py
"""
Flask application factory for the Appointments booking service
"""
import logging
from flask import Flask, jsonify
from flask_cors import CORS
from appointments.config import Config
from appointments.services.engine import build_engine

logger = logging.getLogger(__name__)

def create_app(config_class=Config, engine=None):
    """Create and configure Flask application"""

    app = Flask(__name__)
    app.config.from_object(config_class)
    config_class.validate_config()

    # Configure CORS
    CORS(app,
         origins=config_class.CORS_ORIGINS,
         allow_headers=['Content-Type', 'Authorization'],
         methods=['GET', 'POST', 'DELETE', 'OPTIONS']
    )

    if engine is None:
        engine = build_engine(config_class)
    app.extensions['appointments'] = engine

    # Register blueprints
    from appointments.routes.health import health_bp
    from appointments.routes.settings import settings_bp
    from appointments.routes.booking import booking_bp

    app.register_blueprint(health_bp, url_prefix='/api')
    app.register_blueprint(settings_bp, url_prefix='/api/state')
    app.register_blueprint(booking_bp, url_prefix='/api/pub')

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    if config_class.START_REMINDER_WORKER:
        engine.worker.start()

    logger.info("Flask application created successfully")
    return app
