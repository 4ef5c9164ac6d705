import logging

from django.test import SimpleTestCase

from config.logging_filters import HealthEndpointFilter, VotingTokenRedactionFilter


def _record(msg: str, *args: object, name: str = "django.server") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


class HealthEndpointFilterTests(SimpleTestCase):
    def test_successful_health_checks_are_dropped(self) -> None:
        filt = HealthEndpointFilter()

        self.assertFalse(filt.filter(_record('"GET /healthz HTTP/1.1" 200 12')))
        self.assertTrue(filt.filter(_record('"GET /healthz HTTP/1.1" 503 12')))
        self.assertTrue(filt.filter(_record('"GET /api/voting/vote/ HTTP/1.1" 200 12')))

    def test_handles_gunicorn_format(self) -> None:
        filt = HealthEndpointFilter()

        record = _record(
            '- - - [27/Jan/2026:10:49:08 +0000] "GET /readyz HTTP/1.1" 200 37 "-" "Go-http-client/1.1"',
            name="gunicorn.access",
        )
        self.assertFalse(filt.filter(record))


class VotingTokenRedactionFilterTests(SimpleTestCase):
    def test_token_in_vote_path_is_redacted(self) -> None:
        filt = VotingTokenRedactionFilter()
        record = _record('"GET /vote/%s HTTP/1.1" %s 512', "eyJwIjoidm90ZSJ9:AbCdEf123", 200)

        self.assertTrue(filt.filter(record))

        self.assertEqual(record.getMessage(), '"GET /vote/[redacted] HTTP/1.1" 200 512')
        self.assertEqual(record.args, ())

    def test_query_string_survives_redaction(self) -> None:
        filt = VotingTokenRedactionFilter()
        record = _record('"GET /vote/abc:def?lang=en HTTP/1.1" 200 512')

        filt.filter(record)

        self.assertEqual(record.getMessage(), '"GET /vote/[redacted]?lang=en HTTP/1.1" 200 512')

    def test_other_messages_are_untouched(self) -> None:
        filt = VotingTokenRedactionFilter()
        record = _record('"POST /api/voting/%s/ HTTP/1.1" 201 80', "vote")

        self.assertTrue(filt.filter(record))

        self.assertEqual(record.msg, '"POST /api/voting/%s/ HTTP/1.1" 201 80')
        self.assertEqual(record.args, ("vote",))
