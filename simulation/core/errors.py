"""Errors surfaced by the level control loop.

Only configuration rejections and startup failures leave the core;
arithmetic edge cases are resolved where they occur.
"""


class InvalidConfigurationError(ValueError):
    """Tuning or process parameters were rejected.

    The previous valid configuration stays in effect.
    """

    def __init__(self, field: str, value, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class LoopStartupError(RuntimeError):
    """The tick scheduler could not be started."""
