# =============================================================================
# NetSmart -- Package Logger
# =============================================================================
#
# Every module logs through this single logger.  The library never installs
# handlers; configure ``logging.getLogger("netsmart")`` in the application.
# =============================================================================

import logging

logger = logging.getLogger("netsmart")
logger.addHandler(logging.NullHandler())
