# growatt_ingest/tests/test_client_deadline.py
#
# Runs the client against a real local socket server that misbehaves after
# sending the response headers.

import socketserver
import threading
import time

import pytest
import requests

from growatt_ingest.config import GrowattAPIConfig
from growatt_ingest.errors import VendorTimeout
from growatt_ingest.logging import get_logger
from growatt_ingest.services.growatt_client import GrowattAPIClient
from growatt_ingest.tests.fakes import TOKEN, Recorder

BODY = b'{"data": {"pac": "1500", "fac": "50.01"}}'


class _SlowVendorHandler(socketserver.BaseRequestHandler):
    def handle(self):
        self.request.recv(65536)
        head = (
            "HTTP/1.1 200 OK\r\n"
            "Content-Type: application/json\r\n"
            f"Content-Length: {len(BODY)}\r\n"
            "Connection: close\r\n\r\n"
        ).encode("ascii")
        released = self.server.released
        try:
            self.request.sendall(head)
            if self.server.mode == "stall":
                self.request.sendall(BODY[:7])
                released.wait(3)
                self.request.sendall(BODY[7:])
            else:
                for i in range(len(BODY)):
                    if released.wait(0.15):
                        return
                    self.request.sendall(BODY[i:i + 1])
        except OSError:
            return  # client hung up


class _SlowVendor(socketserver.ThreadingTCPServer):
    daemon_threads = True
    block_on_close = False
    allow_reuse_address = True

    def __init__(self, mode):
        super().__init__(("127.0.0.1", 0), _SlowVendorHandler)
        self.mode = mode
        self.released = threading.Event()

    @property
    def base_url(self):
        host, port = self.server_address
        return f"http://{host}:{port}/v1/"


@pytest.fixture
def slow_vendor(request):
    server = _SlowVendor(request.param)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.released.set()
    server.shutdown()
    server.server_close()


def _client():
    cfg = GrowattAPIConfig(timeout=0.5, max_attempts=1)
    return GrowattAPIClient(cfg, get_logger("growatt-test.deadline"), session=requests.Session(), sleep=Recorder())


@pytest.mark.parametrize("slow_vendor", ["stall"], indirect=True)
def test_stalled_body_is_a_timeout(slow_vendor):
    client = _client()

    started = time.monotonic()
    with pytest.raises(VendorTimeout) as excinfo:
        client.request(slow_vendor.base_url, TOKEN, "GET", "/device/inverter/last_new_data")

    assert excinfo.value.tag == "timeout"
    assert excinfo.value.http_status == 504
    assert time.monotonic() - started < 1.5


@pytest.mark.parametrize("slow_vendor", ["trickle"], indirect=True)
def test_trickled_body_hits_total_deadline(slow_vendor):
    client = _client()

    started = time.monotonic()
    with pytest.raises(VendorTimeout):
        client.request(slow_vendor.base_url, TOKEN, "GET", "/device/inverter/last_new_data")

    assert time.monotonic() - started < 1.0
