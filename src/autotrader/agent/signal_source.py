# src/autotrader/agent/signal_source.py
"""Signal producers consumed by the trading agent."""

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiofiles

from autotrader.models.trade_signal import TradeSignal


logger = logging.getLogger(__name__)


@runtime_checkable
class SignalSource(Protocol):
    async def get_signals(self) -> list[TradeSignal]:
        """Return the signals available since the last call (may be empty)."""
        ...


class QueueSignalSource:
    """Push-based source: producers call ``push``, the agent drains batches."""

    def __init__(self, maxsize: int = 1000, max_batch: int = 100):
        self._queue: asyncio.Queue[TradeSignal] = asyncio.Queue(maxsize=maxsize)
        self._max_batch = max_batch

    async def push(self, signal: TradeSignal) -> None:
        """Queue ``signal``, waiting while the queue is full."""
        await self._queue.put(signal)

    def pending(self) -> int:
        """Number of queued signals."""
        return self._queue.qsize()

    async def get_signals(self) -> list[TradeSignal]:
        """Drain up to ``max_batch`` queued signals without waiting."""
        signals: list[TradeSignal] = []
        while len(signals) < self._max_batch:
            try:
                signals.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return signals


class JsonlSignalSource:
    """Tails a JSON-lines file written by an external signal producer.

    Each line is one signal payload accepted by ``TradeSignal.from_dict``.
    Malformed lines are logged and skipped.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._offset = 0

    async def get_signals(self) -> list[TradeSignal]:
        """Return signals from lines completed since the last call."""
        if not self._path.exists():
            return []

        if self._path.stat().st_size < self._offset:
            logger.info(f"Signal file {self._path} was truncated, reading from start")
            self._offset = 0

        async with aiofiles.open(self._path, "rb") as f:
            await f.seek(self._offset)
            raw = await f.read()

        # Keep a partially written trailing line for the next call
        complete, newline, _ = raw.rpartition(b"\n")
        if not newline:
            return []
        self._offset += len(complete) + len(newline)

        signals = []
        for line in complete.decode("utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                signals.append(TradeSignal.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed signal line in {self._path}: {e}")
        return signals


class PriceRecordingSource:
    """Wraps a source and reports each signal's reference price.

    Used in paper mode to feed signal prices into the simulated exchange.
    """

    def __init__(self, source: SignalSource, on_price: Callable[[str, float], None]):
        self._source = source
        self._on_price = on_price

    async def get_signals(self) -> list[TradeSignal]:
        """Return the wrapped source's signals after reporting their prices."""
        signals = await self._source.get_signals()
        for signal in signals:
            if signal.has_valid_price:
                self._on_price(signal.symbol, signal.price)
        return signals
