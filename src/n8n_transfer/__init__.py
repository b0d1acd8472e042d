"""n8n Bridge - Transfer workflows from a source n8n instance to a target instance."""

import logging

__version__ = "0.1.0"
__license__ = "MIT"

# Suppress verbose third-party library logging
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpcore.connection").setLevel(logging.WARNING)
logging.getLogger("httpcore.http11").setLevel(logging.WARNING)
