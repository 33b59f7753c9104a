"""HTTP endpoint that lets phones check in over CWMP.

A CWMP session is a series of POSTs from the phone. The first carries an
Inform; each later one carries the answer to the previous RPC (or nothing),
and the ACS replies with the next RPC or an empty 204 that ends the session.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response

from phonepro.errors import PhoneproError

from .remote import RemoteManagementClient

logger = logging.getLogger(__name__)

SESSION_COOKIE = "cwmpsid"
CWMP_MEDIA_TYPE = "text/xml"


def session_key(request: Request) -> tuple[str, bool]:
    """Return the CWMP session key and whether it is new to the phone."""
    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        return cookie, False
    # phones that ignore cookies keep one TCP connection per session
    peer = request.client
    return (f"conn-{peer.host}-{peer.port}" if peer else "conn-unknown"), True


def create_acs_app(client: RemoteManagementClient) -> FastAPI:
    """Build the ACS application around ``client``."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await client.drain()
        logger.info("ACS stopped")

    app = FastAPI(
        title="phonepro ACS",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.post("/{path:path}")
    async def cwmp_session(request: Request) -> Response:
        body = await request.body()
        key, new_session = session_key(request)
        try:
            envelope = client.handle_message(body, key)
        except PhoneproError as exc:
            peer = request.client.host if request.client else "?"
            logger.warning("Rejected CWMP message from %s: %s", peer, exc)
            return Response(status_code=400)

        if envelope is None:
            response = Response(status_code=204)
        else:
            response = Response(content=envelope, media_type=CWMP_MEDIA_TYPE)
        if new_session:
            response.set_cookie(SESSION_COOKIE, key, path="/")
        return response

    return app


async def run_acs(client: RemoteManagementClient, host: str, port: int) -> None:
    """Serve CWMP check-ins until interrupted."""
    config = uvicorn.Config(
        create_acs_app(client),
        host=host,
        port=port,
        log_config=None,
        access_log=False,
    )
    logger.info("ACS listening on %s:%d", host, port)
    await uvicorn.Server(config).serve()
