"""
AMOLO.AI chat relay

Main entry point for the application.
"""

from amolo.logging_config import setup_logging
from amolo.settings import get_settings
from amolo.api import create_app

settings = get_settings()

# Setup logging
logger = setup_logging(settings.log_level)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {settings.app_name} on port {settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())
