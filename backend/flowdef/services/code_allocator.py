"""Code allocation for workflow and task identities.

Codes are 64-bit integers that are never reused. The generator decides how
codes are produced (time-based in production, sequential in tests); the
allocator double-checks each candidate against storage before handing it out.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod

from flowdef.db.definition_store import DefinitionStore, definition_store

logger = logging.getLogger(__name__)

MAX_CODE = (1 << 63) - 1


class CodeGenerator(ABC):
    """Produces candidate codes."""

    @abstractmethod
    def next_code(self) -> int:
        """Return a code never returned before by this generator."""
        ...


class SnowflakeCodeGenerator(CodeGenerator):
    """Time-ordered generator: 41 bits of milliseconds, 10 worker bits, 12 sequence bits."""

    EPOCH_MS = 1_609_459_200_000  # 2021-01-01T00:00:00Z
    WORKER_BITS = 10
    SEQUENCE_BITS = 12
    MAX_WORKER_ID = (1 << WORKER_BITS) - 1
    SEQUENCE_MASK = (1 << SEQUENCE_BITS) - 1

    def __init__(self, worker_id: int = 1):
        if not 0 <= worker_id <= self.MAX_WORKER_ID:
            raise ValueError(f"worker_id must be between 0 and {self.MAX_WORKER_ID}")
        self._worker_id = worker_id
        self._last_ms = -1
        self._sequence = 0
        self._lock = threading.Lock()

    def _current_ms(self) -> int:
        return int(time.time() * 1000)

    def next_code(self) -> int:
        with self._lock:
            now_ms = self._current_ms()
            if now_ms < self._last_ms:
                raise RuntimeError(
                    f"Clock moved backwards by {self._last_ms - now_ms}ms; refusing to generate codes"
                )
            if now_ms == self._last_ms:
                self._sequence = (self._sequence + 1) & self.SEQUENCE_MASK
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond
                    while now_ms <= self._last_ms:
                        now_ms = self._current_ms()
            else:
                self._sequence = 0
            self._last_ms = now_ms

            return (
                ((now_ms - self.EPOCH_MS) << (self.WORKER_BITS + self.SEQUENCE_BITS))
                | (self._worker_id << self.SEQUENCE_BITS)
                | self._sequence
            )


class SequentialCodeGenerator(CodeGenerator):
    """Deterministic generator counting up from `start`."""

    def __init__(self, start: int = 1):
        if start < 1:
            raise ValueError("start must be positive")
        self._next = start
        self._lock = threading.Lock()

    def next_code(self) -> int:
        with self._lock:
            code = self._next
            if code > MAX_CODE:
                raise RuntimeError("Code space exhausted")
            self._next += 1
            return code


class CodeAllocator:
    """Hands out codes that are unique across the whole store.

    Example:
        allocator = CodeAllocator(SnowflakeCodeGenerator(worker_id=3))
        code = await allocator.allocate()
    """

    def __init__(
        self,
        generator: CodeGenerator,
        store: DefinitionStore = definition_store,
        max_attempts: int = 100,
    ):
        self._generator = generator
        self._store = store
        self._max_attempts = max_attempts

    async def validate_unique(self, code: int) -> bool:
        """Check that a code has never been assigned in storage."""
        if code <= 0 or code > MAX_CODE:
            return False
        return not await self._store.code_in_use(code)

    async def allocate(self) -> int:
        """Allocate one unused code."""
        for _ in range(self._max_attempts):
            code = self._generator.next_code()
            if await self.validate_unique(code):
                return code
            logger.warning(f"Generated code {code} is already in use, retrying")
        raise RuntimeError(
            f"Could not allocate an unused code after {self._max_attempts} attempts"
        )

    async def allocate_many(self, count: int) -> list[int]:
        """Allocate `count` unused codes."""
        return [await self.allocate() for _ in range(count)]
