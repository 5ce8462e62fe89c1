"""
Backend-agnostic delta stream.

Every provider adapter is reduced to the same shape here: a lazy, single-use
sequence of text fragments that ends with `End` or a `TransportError`.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union

from llm_stream.core.errors import CleanEof, DecodeError, ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delta:
    """One incremental fragment of model text. Empty means "nothing visible, keep going"."""
    text: str = ""


@dataclass(frozen=True)
class Fragment:
    delta: Delta


@dataclass(frozen=True)
class End:
    pass


@dataclass(frozen=True)
class TransportError:
    error: ProviderError

    @property
    def is_clean_eof(self) -> bool:
        return isinstance(self.error, CleanEof)


StreamOutcome = Union[Fragment, End, TransportError]

END = End()
EMPTY = Delta("")


class DeltaStream:
    """
    Wraps the raw events of one transport connection and a backend adapter.

    `next()` returns one StreamOutcome at a time. Iterating with `async for`
    yields Delta objects and stops on End or a clean EOF; any other transport
    error is raised. Once terminated, the stream keeps returning End.
    """

    def __init__(self, events: AsyncIterator[Any], backend, *, logger: Optional[logging.Logger] = None):
        self._events = events
        self._backend = backend
        self._log = logger or logging.getLogger(__name__)
        self._done = False
        self._pending_end = False

    @property
    def done(self) -> bool:
        return self._done

    async def next(self) -> StreamOutcome:
        if self._done:
            return END
        if self._pending_end:
            await self._terminate()
            return END

        try:
            raw = await self._events.__anext__()
        except StopAsyncIteration:
            await self._terminate()
            return END
        except ProviderError as e:
            await self._terminate()
            return TransportError(e)

        try:
            event = self._backend.decode(raw)
        except DecodeError as e:
            self._log.warning("Skipping undecodable %s event: %s", self._backend.name, e)
            return Fragment(EMPTY)

        delta = self._backend.extract(event)
        if self._backend.is_final(event):
            if delta.text:
                # deliver the text first, End on the following call
                self._pending_end = True
                return Fragment(delta)
            await self._terminate()
            return END
        return Fragment(delta)

    async def aclose(self) -> None:
        await self._terminate()

    async def _terminate(self) -> None:
        if self._done:
            return
        self._done = True
        closer = getattr(self._events, "aclose", None)
        if closer is not None:
            await closer()

    def __aiter__(self) -> "DeltaStream":
        return self

    async def __anext__(self) -> Delta:
        outcome = await self.next()
        if isinstance(outcome, Fragment):
            return outcome.delta
        if isinstance(outcome, TransportError) and not outcome.is_clean_eof:
            raise outcome.error
        raise StopAsyncIteration
