# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging configuration with secret redaction.

Usage:
    # In the entry point, once per process
    from devenv.logging import configure_logging
    secret_filter = configure_logging(verbose=args.verbose)
    secret_filter.register_secret(value)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.debug("Injecting secret: %s", key)

Components receive a ``logging.Logger`` explicitly; the only process-wide
setup is the handler installed by ``configure_logging()``.
"""

import logging
import re


LOGGER_NAME = "devenv"

_DEFAULT_FORMAT = "%(levelname)s %(name)s: %(message)s"


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Any registered secret appearing in a log message or in a string
    argument is replaced with ``[REDACTED]``. Secrets are held by the
    filter instance, so separate filters (and separate tests) do not
    share state.

    Example:
        secret_filter = SecretFilter()
        secret_filter.register_secret("abc123")
        handler.addFilter(secret_filter)
        logger.info("Using key: abc123")
        # Output: "Using key: [REDACTED]"
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        self._pattern: re.Pattern[str] | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact registered secrets in place.

        Returns:
            Always True (records are modified, never suppressed).
        """
        if self._pattern is not None:
            record.msg = self._pattern.sub("[REDACTED]", str(record.msg))
            if record.args:
                record.args = tuple(
                    self._pattern.sub("[REDACTED]", arg)
                    if isinstance(arg, str)
                    else arg
                    for arg in record.args
                )
        return True

    def register_secret(self, secret: str) -> None:
        """Register a value to redact. Empty strings are ignored."""
        if secret:
            self._secrets.add(secret)
            self._rebuild_pattern()

    def clear_secrets(self) -> None:
        self._secrets.clear()
        self._pattern = None

    def _rebuild_pattern(self) -> None:
        if self._secrets:
            # Longest first so overlapping secrets are fully masked
            escaped = [
                re.escape(s)
                for s in sorted(self._secrets, key=len, reverse=True)
            ]
            self._pattern = re.compile("|".join(escaped))
        else:
            self._pattern = None


def configure_logging(
    *,
    verbose: bool = False,
    format_string: str | None = None,
    secret_filter: SecretFilter | None = None,
) -> SecretFilter:
    """Configure the ``devenv`` logger for a CLI invocation.

    Installs a single stderr handler with a secret-redacting filter.
    Verbose mode logs at DEBUG; otherwise only warnings and errors are
    logged, because normal progress is printed by the CLI itself.

    Args:
        verbose: Enable DEBUG diagnostics.
        format_string: Custom format string.
        secret_filter: Filter to attach. A new one is created if omitted.

    Returns:
        The attached SecretFilter, for registering secrets.
    """
    if format_string is None:
        format_string = _DEFAULT_FORMAT
    if secret_filter is None:
        secret_filter = SecretFilter()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))
    handler.addFilter(secret_filter)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    # Remove existing handlers to avoid duplicates
    for existing_handler in logger.handlers[:]:
        logger.removeHandler(existing_handler)

    logger.addHandler(handler)
    return secret_filter
