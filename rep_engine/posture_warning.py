import logging

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Check your form"


class PostureWarningSystem:
    """Rate-limits posture warnings to one per cooldown window."""

    def __init__(self, cooldown_ms=2000):
        self.cooldown_ms = cooldown_ms
        self.last_warning_ms = None

    def ready(self, now):
        return self.last_warning_ms is None or now - self.last_warning_ms >= self.cooldown_ms

    def check(self, now, bad_form, issue=None):
        """Return the warning message to raise at ``now``, or None.

        ``bad_form`` must be the debounced posture state, never a raw verdict.
        """
        if not bad_form or not self.ready(now):
            return None
        self.last_warning_ms = now
        message = issue or DEFAULT_MESSAGE
        logger.debug("Posture warning at %d ms: %s", now, message)
        return message

    def reset(self):
        self.last_warning_ms = None
