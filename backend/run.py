# backend/run.py
import logging
import os

from appointments import create_app
from appointments.config import get_config

config_class = get_config()

# Configure logging
logging.basicConfig(
    level=getattr(logging, config_class.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = create_app(config_class)

if __name__ == "__main__":
    port = int(os.environ.get('PORT', 5000))

    logger.info("📅 Starting Appointments booking service...")
    logger.info(f"🌍 Timezone: {config_class.TIMEZONE}")
    logger.info(f"🗓️ Calendar backend: {config_class.CALENDAR_BACKEND}")
    logger.info(f"🌐 Server: http://localhost:{port}")

    # the reloader would start a second reminder worker
    app.run(host='0.0.0.0', port=port, debug=getattr(config_class, 'DEBUG', False), use_reloader=False)
