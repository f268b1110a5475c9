import asyncio
import logging
from typing import Optional, Protocol

from .errors import PipelineClosed
from .metrics import forecast_failures, forecast_requests, pipeline_queue_size
from .schemas import ForecastResult

logger = logging.getLogger(__name__)

# Closes the request lane; the worker exits when it reaches it.
_CLOSE = object()


class Forecaster(Protocol):
    async def fetch(self, city_name: str) -> ForecastResult: ...


class ForecastPipeline:
    """
    Serialize forecast requests from any number of callers into a single lane.

    Each request is queued together with a private reply future, and one worker
    task drains the queue, awaiting the client for one request at a time. The
    provider therefore never sees more than one call in flight from this
    pipeline, and a reply can only reach the caller that issued the request.
    """

    def __init__(self, client: Forecaster):
        self._client = client
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self._closed:
            raise PipelineClosed("forecast pipeline is closed")
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="forecast-pipeline")

    async def close(self) -> None:
        """
        Close the request lane and wait for the worker to finish what was queued before.
        """
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)
        if self._worker is None:
            self._fail_pending()
            return
        if not self._worker.done():
            await asyncio.wait([self._worker])

    async def __aenter__(self) -> "ForecastPipeline":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def forecast(self, city_name: str) -> ForecastResult:
        """
        Queue a request and wait for its result.

        Cancelling the caller cancels its reply future; the worker then skips
        the request, or drops the result if the call is already in flight.
        """
        if self._worker is None and not self._closed:
            raise PipelineClosed("forecast pipeline is not started")
        if self._closed or self._worker.done():
            raise PipelineClosed("forecast pipeline is closed")

        reply: "asyncio.Future[ForecastResult]" = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((city_name, reply))
        forecast_requests.inc()
        pipeline_queue_size.set(self._queue.qsize())
        return await reply

    async def _run(self) -> None:
        current: Optional[asyncio.Future] = None
        try:
            while True:
                item = await self._queue.get()
                pipeline_queue_size.set(self._queue.qsize())
                if item is _CLOSE:
                    break

                city_name, reply = item
                if reply.done():
                    logger.debug("skipping abandoned forecast request city=%s", city_name)
                    continue

                current = reply
                try:
                    result = await self._client.fetch(city_name)
                except Exception as exc:
                    forecast_failures.labels(kind=type(exc).__name__).inc()
                    if not reply.done():
                        reply.set_exception(exc)
                else:
                    if not reply.done():
                        reply.set_result(result)
                    else:
                        logger.debug("dropping forecast for departed caller city=%s", city_name)
                current = None
        finally:
            self._closed = True
            if current is not None and not current.done():
                current.set_exception(PipelineClosed("forecast pipeline stopped mid-call"))
            self._fail_pending()
            logger.info("forecast pipeline stopped")

    def _fail_pending(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSE:
                continue
            _, reply = item
            if not reply.done():
                reply.set_exception(PipelineClosed("forecast pipeline is closed"))
        pipeline_queue_size.set(0)
