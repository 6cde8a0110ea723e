import logging
import os

from google.cloud import logging as google_cloud_logging

from chat_orchestrator.config import Settings

logger = logging.getLogger(__name__)

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure root logging once per process. Entry points call this, libraries never do."""
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=_FORMAT)

    # Drop broken GOOGLE_APPLICATION_CREDENTIALS paths to prefer ADC
    gac = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if gac and not os.path.exists(gac):
        os.environ.pop("GOOGLE_APPLICATION_CREDENTIALS", None)
        logger.info("Ignoring missing GOOGLE_APPLICATION_CREDENTIALS at %s", gac)

    if not settings.enable_cloud_logging:
        return
    try:
        google_cloud_logging.Client(project=settings.google_project).setup_logging(
            log_level=getattr(logging, settings.log_level, logging.INFO)
        )
        logger.info("Cloud Logging configured")
    except Exception as e:
        logger.warning("Cloud Logging unavailable, using stderr only: %s", e)
