"""WhatsApp bot: resilient session lifecycle, auto-replies and a send API."""

__version__ = "0.1.0"
