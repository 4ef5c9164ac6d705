import logging
import re

_VOTE_PATH_TOKEN_PATTERN = re.compile(r"(/vote/)[^\s/?\"]+")


class HealthEndpointFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "/healthz" in message or "/readyz" in message:
            return " 200 " not in message
        return True


class VotingTokenRedactionFilter(logging.Filter):
    """Strip one-time voting tokens from access log lines.

    Voting links carry the raw token in the path (``/vote/<token>``). Anyone who
    can read the logs could otherwise replay an unused link.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "/vote/" not in message:
            return True

        redacted, count = _VOTE_PATH_TOKEN_PATTERN.subn(r"\1[redacted]", message)
        if count:
            record.msg = redacted
            record.args = ()
        return True
