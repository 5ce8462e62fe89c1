from __future__ import annotations
import logging
from typing import Callable, Optional

from llm_stream.core.ports import Backend
from llm_stream.core.stream import DeltaStream
from llm_stream.storage.transcript import Transcript
from llm_stream.transport.http import StreamingTransport
from llm_stream.ui.renderer import StreamRenderer

logger = logging.getLogger(__name__)


class ChatSession:
    """
    One backend, one transcript. Each turn streams a reply through a fresh
    renderer and hands the accumulated text to the transcript.
    """

    def __init__(
        self,
        backend: Backend,
        transcript: Transcript,
        transport: StreamingTransport,
        renderer_factory: Callable[[], StreamRenderer],
        logger: Optional[logging.Logger] = None,
    ):
        self.backend = backend
        self.transcript = transcript
        self.transport = transport
        self.renderer_factory = renderer_factory
        self._log = logger or logging.getLogger(__name__)

    async def run_turn(self, user_text: str) -> str:
        self.transcript.append_message("user", user_text)
        request = self.backend.build_request(self.transcript.messages)

        renderer = self.renderer_factory()
        renderer.start()
        stream: Optional[DeltaStream] = None
        try:
            events = await self.transport.open(request, self.backend.framing)
            stream = DeltaStream(events, self.backend)
            reply = await renderer.render(stream)
        except BaseException:
            renderer.abort()
            # keep whatever arrived before the failure
            if renderer.reply:
                self._log.warning("Reply interrupted; keeping %d chars as partial", len(renderer.reply))
                self.transcript.append_message("assistant", renderer.reply, status="partial")
            raise
        finally:
            # releases the HTTP response if rendering stopped early
            if stream is not None:
                await stream.aclose()

        if reply:
            self.transcript.append_message("assistant", reply)
        return reply
