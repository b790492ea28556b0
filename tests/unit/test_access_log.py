"""
Unit tests for the access log.
"""

import json
import logging

import pytest

from asynchttp.access_log import AccessLog, Exchange, dump_request
from asynchttp.http import parse_request


@pytest.fixture
def exchange() -> Exchange:
    return Exchange(
        session_id="3f2a9c1e",
        client_address=("127.0.0.1", 50000),
        method="GET",
        target="/abc",
        version="HTTP/1.1",
    )


class TestAccessLog:

    def test_text_format(self, exchange: Exchange):
        line = AccessLog("text").format(exchange, 200, 140, timestamp="10/Jun/2024:10:55:36 +0000")

        assert line.startswith('127.0.0.1 - - [10/Jun/2024:10:55:36 +0000] "GET /abc HTTP/1.1" 200 140 ')
        assert line.endswith("ms [3f2a9c1e]")

    def test_json_format(self, exchange: Exchange):
        entry = json.loads(AccessLog("json").format(exchange, 405, 120))

        assert entry["session_id"] == "3f2a9c1e"
        assert entry["client_ip"] == "127.0.0.1"
        assert entry["method"] == "GET"
        assert entry["target"] == "/abc"
        assert entry["status_code"] == 405
        assert entry["bytes_sent"] == 120
        assert entry["duration_ms"] >= 0

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            AccessLog("xml")

    def test_response_sent_logs_to_access_logger(self, exchange: Exchange, caplog):
        with caplog.at_level(logging.INFO, logger="asynchttp.access"):
            AccessLog().response_sent(exchange, 200, 10)

        assert len(caplog.records) == 1
        assert caplog.records[0].name == "asynchttp.access"
        assert '"GET /abc HTTP/1.1" 200 10' in caplog.records[0].getMessage()

    def test_exchange_from_request(self):
        request = parse_request(b"HEAD /x HTTP/1.0\r\n\r\n", ("10.0.0.1", 1234))
        exchange = Exchange.from_request("abcd1234", request)

        assert (exchange.method, exchange.target, exchange.version) == ("HEAD", "/x", "HTTP/1.0")
        assert exchange.client_address == ("10.0.0.1", 1234)


class TestDumpRequest:

    def test_dump_lists_every_header(self, caplog):
        request = parse_request(b"GET /abc HTTP/1.1\r\nHost: x\r\nAccept: */*\r\n\r\n")

        with caplog.at_level(logging.DEBUG, logger="asynchttp.access.dump"):
            dump_request("s1", request)

        message = caplog.records[0].getMessage()
        assert "[s1] GET /abc HTTP/1.1" in message
        assert "Host: x" in message
        assert "Accept: */*" in message

    def test_dump_skipped_above_debug(self, caplog):
        request = parse_request(b"GET / HTTP/1.1\r\n\r\n")

        with caplog.at_level(logging.INFO, logger="asynchttp.access.dump"):
            dump_request("s1", request)

        assert caplog.records == []
