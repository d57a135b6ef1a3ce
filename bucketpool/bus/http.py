# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
HTTP message bus for BucketPool.

Hosts in different processes share the admin channel by posting every
message to every peer. Each peer hands the message to its local
subscribers, which keep or ignore it based on its channel.

Endpoints:
- POST /pool/messages: body is one encoded message
- GET /pool/health: liveness of the bus itself
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import aiohttp
from aiohttp import web

from bucketpool.bus.interface import MessageBus
from bucketpool.utils.logger import logger


class HttpMessageBus(MessageBus):
    """HTTP fan-out bus built on aiohttp.

    Example:
        >>> bus = HttpMessageBus("0.0.0.0", 9100, peers=["10.0.0.2:9100", "10.0.0.3:9100"])
        >>> await bus.start()
        >>> await bus.publish(ADMIN_CHANNEL, text)
        >>> await bus.stop()
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 9100,
        peers: Optional[List[str]] = None,
        timeout_ms: int = 2000,
    ) -> None:
        """Initialize the bus.

        Args:
            host: Host to bind the HTTP server
            port: Port to bind the HTTP server
            peers: Other pool members in host:port format
            timeout_ms: Timeout for each post in milliseconds
        """
        super().__init__()
        self.host = host
        self.port = port
        self.peers: List[str] = list(peers or [])
        self.timeout_ms = timeout_ms

        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._session: Optional[aiohttp.ClientSession] = None

        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the HTTP server and client session."""
        if self._running:
            return

        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=10,
            keepalive_timeout=30,
        )
        self._session = aiohttp.ClientSession(connector=connector)

        self._app = web.Application()
        self._app.router.add_post("/pool/messages", self._handle_message)
        self._app.router.add_get("/pool/health", self._handle_health)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        self._running = True
        logger.info(f"Pool message bus started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server and close the client session."""
        if not self._running:
            return

        self._running = False

        if self._session:
            await self._session.close()
            self._session = None

        if self._site:
            await self._site.stop()

        if self._runner:
            await self._runner.cleanup()

        logger.info("Pool message bus stopped")

    async def publish(self, channel: str, message: str) -> None:
        """Deliver locally, then post the message to every peer."""
        self._deliver(message)

        if not self.peers:
            return

        results = await asyncio.gather(
            *(self._post(peer, message) for peer in self.peers),
            return_exceptions=True,
        )
        for peer, result in zip(self.peers, results):
            if isinstance(result, Exception):
                logger.warning(f"Publish to {peer} on channel {channel} failed: {result}")

    async def _post(self, peer_address: str, message: str) -> bool:
        """Post one message to a peer.

        Returns:
            True if the peer accepted the message
        """
        if not self._session:
            return False

        url = f"http://{peer_address}/pool/messages"
        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)

        try:
            async with self._session.post(
                url,
                data=message,
                headers={"Content-Type": "application/json"},
                timeout=timeout,
            ) as resp:
                if resp.status < 300:
                    return True
                logger.warning(f"Post to {peer_address} failed: {resp.status}")
                return False
        except asyncio.TimeoutError:
            logger.debug(f"Post to {peer_address} timed out")
            return False
        except aiohttp.ClientError as e:
            logger.debug(f"Post to {peer_address} failed: {e}")
            return False

    async def _handle_message(self, request: web.Request) -> web.Response:
        """Handle a message posted by a peer."""
        text = await request.text()
        if not text:
            return web.json_response({"error": "Empty message"}, status=400)

        self._deliver(text)
        return web.json_response({"status": "accepted"}, status=202)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Report whether the bus is serving and how many peers it posts to."""
        return web.json_response({
            "status": "ok",
            "running": self._running,
            "peers": len(self.peers),
            "listeners": self.listener_count,
        })
