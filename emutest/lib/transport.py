"""HTTP APDU transport to the emulator.

Request:  POST <url>  {"apduHex": "e0010000"}
Response: {"data": "<response hex including status word>"}

HTTP via urllib (no requests dependency).
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request

from emutest.lib.errors import EmuConnectionError, TransportError

log = logging.getLogger(__name__)

SW_OK = 0x9000


def build_apdu(cla: int, ins: int, p1: int, p2: int, data: bytes = b"") -> bytes:
    """Short APDU: CLA INS P1 P2 Lc data."""
    if len(data) > 255:
        msg = f"APDU data too long for a short APDU: {len(data)} bytes"
        raise ValueError(msg)
    return bytes([cla, ins, p1, p2, len(data)]) + data


def status_word(response: bytes) -> int:
    if len(response) < 2:
        msg = f"APDU response too short: {response.hex()!r}"
        raise TransportError(msg)
    return int.from_bytes(response[-2:], "big")


class HttpTransport:
    """Request/response APDU channel over HTTP."""

    def __init__(self, url: str, timeout: float = 10) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.closed = False

    @classmethod
    def open(cls, url: str, timeout: float = 10) -> HttpTransport:
        """Check the endpoint answers, then return a transport bound to it.

        Any HTTP response (even an error status) proves the server is up;
        only network-level failures are connection errors.
        """
        try:
            with urllib.request.urlopen(url, timeout=timeout) as resp:
                resp.read()
        except urllib.error.HTTPError:
            pass
        except (urllib.error.URLError, OSError) as e:
            msg = f"Cannot open transport {url}: {e}"
            raise EmuConnectionError(msg) from e
        log.debug("Transport open on %s", url)
        return cls(url, timeout=timeout)

    def exchange(self, apdu: bytes) -> bytes:
        """Send one raw APDU, return the raw response (data + status word)."""
        if self.closed:
            msg = f"Transport {self.url} is closed"
            raise TransportError(msg)
        payload = json.dumps({"apduHex": apdu.hex()}).encode()
        req = urllib.request.Request(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            msg = f"APDU exchange failed: HTTP {e.code}"
            raise TransportError(msg) from e
        except (urllib.error.URLError, OSError) as e:
            msg = f"APDU exchange failed: {e}"
            raise TransportError(msg) from e
        except json.JSONDecodeError as e:
            msg = f"APDU exchange returned invalid JSON: {e}"
            raise TransportError(msg) from e

        if "error" in body:
            msg = f"APDU exchange failed: {body['error']}"
            raise TransportError(msg)
        try:
            return bytes.fromhex(body.get("data", ""))
        except ValueError as e:
            msg = f"APDU response is not hex: {body.get('data')!r}"
            raise TransportError(msg) from e

    def send(
        self,
        cla: int,
        ins: int,
        p1: int,
        p2: int,
        data: bytes = b"",
        status_list: tuple[int, ...] = (SW_OK,),
    ) -> bytes:
        """Build and exchange an APDU; raise unless the status word is accepted."""
        response = self.exchange(build_apdu(cla, ins, p1, p2, data))
        sw = status_word(response)
        if sw not in status_list:
            msg = f"APDU {cla:02x}{ins:02x} returned status 0x{sw:04x}"
            raise TransportError(msg, status_word=sw)
        return response

    def close(self) -> None:
        self.closed = True
