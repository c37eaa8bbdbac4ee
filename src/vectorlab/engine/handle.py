"""Ownership and lifecycle of the single engine behind an index."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import structlog

from vectorlab.errors import IndexClosedError

if TYPE_CHECKING:
    from collections.abc import Callable

    from vectorlab.config import IndexConfig
    from vectorlab.engine.protocols import SearchEngine

    EngineFactory = Callable[[IndexConfig], SearchEngine]

logger = structlog.get_logger(__name__)


class HandleState(str, Enum):
    """Lifecycle states of an engine handle."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class EngineHandle:
    """Exclusively owns one engine and releases it exactly once.

    The engine is created and initialised lazily by ``initialize``; ``close``
    is terminal and any later access raises ``IndexClosedError``.
    """

    def __init__(self, factory: EngineFactory) -> None:
        """Store the factory used to build the engine on first use."""
        self._factory = factory
        self._engine: SearchEngine | None = None
        self._state = HandleState.UNINITIALIZED

    @property
    def state(self) -> HandleState:
        """Current lifecycle state."""
        return self._state

    @property
    def initialized(self) -> bool:
        """Whether the engine has been created and initialised."""
        return self._state is HandleState.INITIALIZED

    def ensure_open(self) -> None:
        """Raise ``IndexClosedError`` once the handle is closed."""
        if self._state is HandleState.CLOSED:
            message = "index is closed"
            raise IndexClosedError(message)

    def initialize(self, config: IndexConfig) -> SearchEngine:
        """Return the engine, creating and initialising it if needed."""
        self.ensure_open()
        if self._engine is not None:
            return self._engine
        engine = self._factory(config)
        engine.init()
        self._engine = engine
        self._state = HandleState.INITIALIZED
        logger.debug("engine.initialized", backend=engine.name, dimension=config.dimension)
        return engine

    @property
    def engine(self) -> SearchEngine:
        """The initialised engine."""
        self.ensure_open()
        if self._engine is None:
            message = "engine accessed before initialisation"
            raise RuntimeError(message)
        return self._engine

    def close(self) -> bool:
        """Release the engine; return ``True`` only on the call that freed it."""
        if self._state is HandleState.CLOSED:
            return False
        engine, self._engine = self._engine, None
        self._state = HandleState.CLOSED
        if engine is None:
            return False
        engine.free()
        logger.debug("engine.freed", backend=engine.name)
        return True
