"""
Main entry point for the statement pipeline service.

This module loads configuration, initializes storage and starts the
FastAPI server.
"""
import sys
from pathlib import Path

# Add project root to Python path for module imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

from core.config import get_settings
from core.exceptions import ConfigurationError
from core.logger import setup_logger

# Load environment variables from .env file
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    print("Warning: .env file not found. Using environment variables or defaults.")

logger = setup_logger(__name__)


def main():
    """Main application entry point."""
    try:
        settings = get_settings()
        settings.ensure_directories()

        import uvicorn
        from app.api import app
        from core.db import get_db

        get_db()

        logger.info(f"Starting {settings.app_name}")
        logger.info(f"Model: {settings.model_id}")
        logger.info(f"Log Level: {settings.log_level}")
        logger.info(f"Database: {settings.database_path}")
        logger.info(f"Analytics sink: {settings.analytics_path}")
        logger.info(f"Reprocess policy: {settings.reprocess_policy}")

        if not settings.model_gateway_url:
            logger.warning("MODEL_GATEWAY_URL is not set; classification runs will fail")
        if not settings.extraction_service_url:
            logger.warning("EXTRACTION_SERVICE_URL is not set; extraction runs will fail")

        logger.info(f"Starting server on {settings.host}:{settings.port}")

        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower()
        )

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        if e.details:
            logger.error(f"Details: {e.details}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
