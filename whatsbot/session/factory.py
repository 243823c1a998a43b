"""Builds fresh WhatsApp Web sessions with the container launch configuration."""

from whatsbot.config import BotConfig
from whatsbot.session.whatsapp_web import WhatsAppWebSession

# Chromium flags for restricted containers. The three background flags stop
# Chromium from throttling a hidden tab, which silently stalls WhatsApp Web.
LAUNCH_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-blink-features=AutomationControlled",
)

# Seconds Chromium gets to start before the launch is abandoned
BROWSER_STARTUP_TIMEOUT = 60.0


class SessionFactory:
    """Creates a new, uninitialized session on every call."""

    def __init__(self, config: BotConfig):
        self.config = config

    def create(self) -> WhatsAppWebSession:
        return WhatsAppWebSession(
            auth_dir=self.config.auth_dir,
            cache_dir=self.config.cache_dir,
            launch_args=LAUNCH_ARGS,
            headless=self.config.headless,
            startup_timeout=BROWSER_STARTUP_TIMEOUT,
            poll_interval=self.config.poll_interval,
            screenshots_path=self.config.logs_path,
        )

    __call__ = create
