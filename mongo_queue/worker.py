"""
Queue Worker

Background worker that claims messages from a Queue and processes them.
"""

import asyncio
from typing import Callable, Awaitable, Optional
from loguru import logger

from mongo_queue.exceptions import QueueOperationError, RecursionLimitError, UnidentifiedAckError
from mongo_queue.models import ClaimedMessage
from mongo_queue.queue import Queue


class QueueWorker:
    """
    Background worker for processing queued messages.

    Continuously polls the queue and runs the handler on each claimed
    message. A message is acked only when the handler returns; a failing
    handler leaves the lease to expire so the message is claimed again
    (and eventually dead-lettered by the queue).

    Attributes:
        queue: Queue to consume
        handler: Async function to process each message
        max_concurrent: Maximum number of concurrent message processors
        poll_interval: Seconds to wait after an empty or failed poll
        heartbeat_interval: Seconds between lease extensions (None disables)
        visibility: Lease length passed to get() and ping()
    """

    def __init__(
        self,
        queue: Queue,
        handler: Callable[[ClaimedMessage], Awaitable[None]],
        max_concurrent: int = 10,
        poll_interval: float = 1.0,
        heartbeat_interval: Optional[float] = None,
        visibility: Optional[float] = None,
    ):
        self.queue = queue
        self.handler = handler
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.visibility = visibility
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the worker.

        Begins polling the queue and processing messages.
        Runs until stop() is called.
        """
        if self._running:
            logger.warning("Worker already running")
            return

        self._running = True
        logger.info(
            f"Queue worker started on {self.queue.name} (max_concurrent={self.max_concurrent}, "
            f"poll_interval={self.poll_interval}s)"
        )

        try:
            while self._running:
                # Claim only when a processing slot is free, so leases are
                # not burnt while waiting on the semaphore
                await self._semaphore.acquire()
                if not self._running:
                    self._semaphore.release()
                    break

                try:
                    message = await self.queue.get(visibility=self.visibility)
                except (QueueOperationError, RecursionLimitError) as e:
                    self._semaphore.release()
                    logger.bind(queue=self.queue.name, error=str(e)).warning(
                        f"Polling {self.queue.name} failed, retrying in {self.poll_interval}s: {e}"
                    )
                    await asyncio.sleep(self.poll_interval)
                    continue
                except BaseException:
                    self._semaphore.release()
                    raise

                if message:
                    task = asyncio.create_task(self._process_message(message))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                else:
                    self._semaphore.release()
                    await asyncio.sleep(self.poll_interval)

        except Exception as e:
            logger.opt(exception=True).error(f"Worker crashed: {e}")
            raise

        finally:
            self._running = False
            logger.info(f"Queue worker stopped on {self.queue.name}")

    async def stop(self) -> None:
        """
        Stop the worker.

        Gracefully shuts down:
        1. Stops claiming new messages
        2. Waits for in-flight messages to complete
        3. Cancels any remaining tasks
        """
        if not self._running:
            return

        logger.info("Stopping queue worker...")
        self._running = False

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} tasks to complete...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._tasks, return_exceptions=True),
                    timeout=30.0
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for tasks, cancelling remaining")
                for task in self._tasks:
                    task.cancel()

    async def _process_message(self, message: ClaimedMessage) -> None:
        """
        Process a single claimed message, then ack it.

        Args:
            message: Message leased by get()
        """
        heartbeat = None
        if self.heartbeat_interval:
            heartbeat = asyncio.create_task(self._heartbeat(message))

        try:
            logger.debug(f"Processing message {message.id} (try {message.tries})")

            await self.handler(message)

            if heartbeat:
                heartbeat.cancel()
            await self.queue.ack(message.ack)

            logger.bind(message_id=message.id, tries=message.tries).info(
                f"Message {message.id} processed successfully"
            )

        except UnidentifiedAckError:
            logger.bind(message_id=message.id, tries=message.tries).warning(
                f"Lease on message {message.id} expired before ack; it will be redelivered"
            )

        except Exception as e:
            logger.bind(
                message_id=message.id,
                tries=message.tries,
                error=str(e),
            ).opt(exception=True).error(f"Failed to process message {message.id}: {e}")

        finally:
            if heartbeat:
                heartbeat.cancel()
            self._semaphore.release()

    async def _heartbeat(self, message: ClaimedMessage) -> None:
        """Keep the lease alive while the handler runs."""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.queue.ping(message.ack, visibility=self.visibility)
            except UnidentifiedAckError:
                logger.warning(f"Lost lease on message {message.id}")
                return
            except QueueOperationError as e:
                logger.warning(f"Heartbeat for message {message.id} failed: {e}")
