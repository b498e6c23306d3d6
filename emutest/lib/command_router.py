"""HTTP service exposing the session's APDU transport to external probes.

Endpoints:
    GET  /health  -> {"status": "ok", "transport": "<url>"}
    POST /apdu    {"apduHex": "..."} -> {"data": "..."}

The server runs uvicorn in a daemon thread so it can live alongside the
synchronous test driver.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from emutest.lib.errors import TransportError
from emutest.lib.transport import HttpTransport

log = logging.getLogger(__name__)


class ApduRequest(BaseModel):
    apduHex: str  # noqa: N815


class CommandRouter:
    """Routes APDUs received over HTTP to an open transport."""

    def __init__(
        self,
        host: str,
        port: int,
        options: dict[str, Any] | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.options = options or {}
        self.transport = transport
        self.app = self._build_app()
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="emutest command router")

        @app.get("/health")
        def health() -> dict[str, Any]:
            return {"status": "ok", "transport": self.transport.url if self.transport else None}

        @app.post("/apdu")
        def apdu(request: ApduRequest) -> dict[str, str]:
            if self.transport is None:
                raise HTTPException(status_code=503, detail="No transport attached")
            try:
                payload = bytes.fromhex(request.apduHex)
            except ValueError:
                raise HTTPException(status_code=400, detail="apduHex is not valid hex") from None
            # One exchange at a time: the device handles APDUs sequentially
            with self._lock:
                try:
                    response = self.transport.exchange(payload)
                except TransportError as e:
                    raise HTTPException(status_code=502, detail=str(e)) from None
            return {"data": response.hex()}

        return app

    def start_server(self) -> None:
        """Start serving in the background and wait until the socket is bound."""
        if self.running:
            return
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.options.get("log_level", "warning"),
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, name="emutest-router", daemon=True)
        self._thread.start()

        timeout = self.options.get("startup_timeout", 5)
        deadline = time.monotonic() + timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.stop_server()
                msg = f"Command router failed to start on {self.host}:{self.port}"
                raise RuntimeError(msg)
            time.sleep(0.05)
        log.info("Command router listening on %s:%d", self.host, self.port)

    def stop_server(self) -> None:
        """Stop serving. Safe to call when not started."""
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
