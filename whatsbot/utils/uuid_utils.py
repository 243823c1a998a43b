"""UUID utilities for correlation IDs and fallback message IDs."""

import uuid


def correlation_id() -> str:
    """Generate a new UUID v4 correlation ID.

    Correlation IDs link a traffic log entry to the console line and the
    API response that produced it.

    Returns:
        A UUID v4 string.
    """
    return str(uuid.uuid4())


def short_id() -> str:
    """Generate a short 8-character ID.

    Used when WhatsApp Web does not expose the id of a message we just sent.
    """
    return str(uuid.uuid4())[:8]
