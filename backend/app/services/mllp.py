"""MLLP (Minimal Lower Layer Protocol) transport for HL7 v2.

Frames are <VT> message <FS><CR>. The server reads one frame at a time,
hands the decoded message to an async handler and writes the handler's
ACK back framed on the same connection.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from app.services.hl7_parser import MLLP_START, MLLP_TRAILER, frame_mllp, generate_nak

logger = logging.getLogger(__name__)

START_BYTE = MLLP_START.encode()
END_BYTES = MLLP_TRAILER.encode()
DEFAULT_MAX_MESSAGE_BYTES = 1024 * 1024

MessageHandler = Callable[[str], Awaitable[str]]


def decode_frame(frame: bytes) -> str:
    """Decode a raw frame (without trailer) to text, tolerating bad bytes."""
    start = frame.find(START_BYTE)
    payload = frame[start + 1 :] if start != -1 else frame
    return payload.decode("utf-8", errors="replace")


class MLLPServer:
    """Asyncio TCP listener that dispatches MLLP frames to a handler.

    Usage:
        server = MLLPServer(receiver_handler, host="0.0.0.0", port=2575)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        handler: MessageHandler,
        host: str = "0.0.0.0",
        port: int = 2575,
        max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
    ):
        self.handler = handler
        self.host = host
        self.port = port
        self.max_message_bytes = max_message_bytes
        self._server: asyncio.Server | None = None

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (useful when started with port=0)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port,
            limit=self.max_message_bytes,
        )
        logger.info("MLLP listener started on %s:%s", self.host, self.bound_port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("MLLP listener stopped")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        logger.info("MLLP connection from %s", peer)
        try:
            while True:
                try:
                    frame = await reader.readuntil(END_BYTES)
                except asyncio.IncompleteReadError:
                    # Peer closed the connection
                    break
                except asyncio.LimitOverrunError:
                    logger.warning("MLLP frame from %s exceeds %d bytes, closing", peer, self.max_message_bytes)
                    break

                message = decode_frame(frame[: -len(END_BYTES)])
                try:
                    ack = await self.handler(message)
                except Exception:
                    logger.exception("MLLP handler failed for message from %s", peer)
                    ack = generate_nak("AE", "Internal processing error")

                writer.write(frame_mllp(ack).encode("utf-8"))
                await writer.drain()
        except ConnectionError as e:
            logger.info("MLLP connection from %s dropped: %s", peer, type(e).__name__)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass


async def send_message(host: str, port: int, message: str, timeout: float = 10.0) -> str:
    """Send one HL7 message over MLLP and return the unframed ACK.

    Raises:
        asyncio.TimeoutError: If connecting or reading the ACK takes longer than timeout.
        ConnectionError: If the peer closes before sending a complete ACK.
    """
    reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    try:
        writer.write(frame_mllp(message).encode("utf-8"))
        await writer.drain()
        try:
            frame = await asyncio.wait_for(reader.readuntil(END_BYTES), timeout)
        except asyncio.IncompleteReadError as e:
            raise ConnectionError("Connection closed before ACK was received") from e
        return decode_frame(frame[: -len(END_BYTES)])
    finally:
        writer.close()
        await writer.wait_closed()
