"""
Configure the logger shared across the API
"""

import logging
from core.config import get_settings

logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
# Keep botocore request chatter out of the application log
logging.getLogger("botocore").setLevel(logging.WARNING)

logger = logging.getLogger("gallerycms")
