"""Send queue: deduplication and retry buffer for outbound mail.

Guarantees:
1. Identical mail (same recipient, subject and body prefix) submitted
   twice within the dedup window is only accepted once
2. Mail that could not be sent can be requeued, up to ``max_attempts``
3. Every enqueue/dequeue/requeue/drop is recorded in a bounded debug log
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from ..constants import (
    DEDUP_BODY_PREFIX,
    DEDUP_SWEEP_INTERVAL,
    MAX_DEBUG_LOG,
    MAX_SEND_ATTEMPTS,
    MESSAGE_DEDUP_WINDOW,
)

logger = logging.getLogger(__name__)


@dataclass
class QueuedMail:
    """Outbound mail waiting to be sent."""

    id: str
    to: str
    subject: str
    body: str
    timestamp: float
    attempts: int
    hash: str
    headers: dict[str, str] | None = None


def content_hash(to: str, subject: str, body: str) -> str:
    """Digest over recipient, subject and the first 200 body characters."""
    content = f"{to}|{subject}|{body[:DEDUP_BODY_PREFIX]}"
    return hashlib.blake2b(content.encode("utf-8"), digest_size=8).hexdigest()


class SendQueue:
    """FIFO of outbound mail with a sliding dedup window."""

    def __init__(
        self,
        dedup_window: float = MESSAGE_DEDUP_WINDOW,
        max_attempts: int = MAX_SEND_ATTEMPTS,
        max_debug_log: int = MAX_DEBUG_LOG,
        sweep_interval: float = DEDUP_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.dedup_window = dedup_window
        self.max_attempts = max_attempts
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._queue: deque[QueuedMail] = deque()
        self._recent_hashes: dict[str, float] = {}
        self._debug_log: deque[str] = deque(maxlen=max_debug_log)
        self._sweep_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the periodic sweep of expired dedup hashes."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    @property
    def sweep_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def close(self) -> None:
        """Stop the sweep and drop everything queued."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    # =========================================================================
    # Queue operations
    # =========================================================================

    def enqueue(
        self,
        to: str,
        subject: str,
        body: str,
        headers: dict[str, str] | None = None,
    ) -> str | None:
        """Queue a mail under a fresh id.

        Returns:
            The queue id, or None if the mail was rejected as a duplicate
        """
        queue_id = str(uuid.uuid4())
        return queue_id if self.enqueue_with_id(queue_id, to, subject, body, headers) else None

    def enqueue_with_id(
        self,
        queue_id: str,
        to: str,
        subject: str,
        body: str,
        headers: dict[str, str] | None = None,
    ) -> bool:
        """Queue a mail under a caller-chosen id.

        Returns:
            False if the mail was rejected as a duplicate
        """
        digest = content_hash(to, subject, body)
        now = self._clock()

        last_seen = self._recent_hashes.get(digest)
        if last_seen is not None and now - last_seen < self.dedup_window:
            self._record(f"Duplicate message rejected: {subject} to {to}")
            return False

        self._queue.append(
            QueuedMail(
                id=queue_id,
                to=to,
                subject=subject,
                body=body,
                timestamp=now,
                attempts=0,
                hash=digest,
                headers=headers or None,
            )
        )
        self._recent_hashes[digest] = now
        self._record(f"Message queued: {subject} to {to} ({queue_id})")
        return True

    def dequeue(self) -> QueuedMail | None:
        """Pop the oldest mail and count the attempt."""
        if not self._queue:
            return None
        mail = self._queue.popleft()
        mail.attempts += 1
        self._record(f"Message dequeued: {mail.subject} to {mail.to} (attempt {mail.attempts})")
        return mail

    def requeue(self, mail: QueuedMail) -> bool:
        """Put a mail back at the front for another attempt.

        Returns:
            False if the mail has used up its attempts and was dropped
        """
        if mail.attempts < self.max_attempts:
            self._queue.appendleft(mail)
            self._record(f"Message requeued: {mail.subject} to {mail.to} (attempt {mail.attempts})")
            return True

        self._record(
            f"Message dropped after {self.max_attempts} attempts: {mail.subject} to {mail.to}",
            level=logging.WARNING,
        )
        return False

    def remove(self, queue_id: str) -> bool:
        for mail in self._queue:
            if mail.id == queue_id:
                self._queue.remove(mail)
                self._record(f"Message removed from queue: {mail.subject} to {mail.to} ({queue_id})")
                return True
        return False

    def size(self) -> int:
        return len(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def is_empty(self) -> bool:
        return not self._queue

    def get_all(self) -> tuple[QueuedMail, ...]:
        return tuple(self._queue)

    def clear(self) -> None:
        self._queue.clear()
        self._recent_hashes.clear()
        self._record("Queue cleared")

    def sweep(self) -> int:
        """Evict dedup hashes older than twice the window.

        Returns:
            Number of hashes evicted
        """
        now = self._clock()
        horizon = self.dedup_window * 2
        expired = [h for h, seen in self._recent_hashes.items() if now - seen > horizon]
        for digest in expired:
            del self._recent_hashes[digest]
        if expired:
            self._record(f"Cleaned up {len(expired)} expired hash(es)")
        return len(expired)

    @property
    def tracked_hashes(self) -> int:
        return len(self._recent_hashes)

    # =========================================================================
    # Debug log
    # =========================================================================

    def debug_log(self) -> tuple[str, ...]:
        """Rolling log of queue activity, oldest first."""
        return tuple(self._debug_log)

    def clear_debug_log(self) -> None:
        self._debug_log.clear()

    def _record(self, message: str, level: int = logging.DEBUG) -> None:
        stamp = datetime.now(UTC).isoformat()
        self._debug_log.append(f"[{stamp}] {message}")
        logger.log(level, f"SendQueue: {message}")
