"""Tests for signal sources."""

import json
from datetime import datetime
from unittest.mock import Mock

import pytest

from autotrader.agent import JsonlSignalSource, PriceRecordingSource, QueueSignalSource, SignalSource
from autotrader.models import SignalSide, TradeSignal


def signal_line(**payload) -> str:
    return json.dumps(payload) + "\n"


class TestJsonlSignalSource:
    """Tests for tailing a JSON-lines signal file."""

    @pytest.mark.asyncio
    async def test_missing_file_yields_nothing(self, tmp_path):
        source = JsonlSignalSource(tmp_path / "signals.jsonl")
        assert await source.get_signals() == []

    @pytest.mark.asyncio
    async def test_reads_new_lines_once(self, tmp_path):
        path = tmp_path / "signals.jsonl"
        path.write_text(signal_line(symbol="btcusdt", side="buy", confidence=0.8, price=50000))
        source = JsonlSignalSource(path)

        signals = await source.get_signals()

        assert len(signals) == 1
        assert signals[0].symbol == "BTCUSDT"
        assert signals[0].side == SignalSide.BUY
        assert await source.get_signals() == []

    @pytest.mark.asyncio
    async def test_partial_line_is_kept_for_later(self, tmp_path):
        path = tmp_path / "signals.jsonl"
        full = signal_line(symbol="ETHUSDT", side="SELL", confidence=0.7, price=3000)
        path.write_text(full[:20])
        source = JsonlSignalSource(path)

        assert await source.get_signals() == []

        with open(path, "a") as f:
            f.write(full[20:])

        signals = await source.get_signals()
        assert [s.symbol for s in signals] == ["ETHUSDT"]

    @pytest.mark.asyncio
    async def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "signals.jsonl"
        path.write_text(
            "not json\n"
            + signal_line(symbol="BTCUSDT", side="HOLD", confidence=0.8)
            + signal_line(side="BUY", confidence=0.8)
            + signal_line(symbol="ADAUSDT", side="BUY", confidence=0.9, price=0.5)
        )
        source = JsonlSignalSource(path)

        signals = await source.get_signals()

        assert [s.symbol for s in signals] == ["ADAUSDT"]

    @pytest.mark.asyncio
    async def test_invalid_utf8_does_not_shift_offset(self, tmp_path):
        """Undecodable bytes must not cause the next line to be cut short."""
        path = tmp_path / "signals.jsonl"
        path.write_bytes(b"\xff\xfe garbage\n")
        source = JsonlSignalSource(path)

        assert await source.get_signals() == []

        with open(path, "a") as f:
            f.write(signal_line(symbol="ETHUSDT", side="BUY", confidence=0.8, price=3000))

        signals = await source.get_signals()
        assert [s.symbol for s in signals] == ["ETHUSDT"]

    @pytest.mark.asyncio
    async def test_truncated_file_is_reread(self, tmp_path):
        path = tmp_path / "signals.jsonl"
        path.write_text(
            signal_line(symbol="BTCUSDT", side="BUY", confidence=0.8, price=50000)
            + signal_line(symbol="ETHUSDT", side="BUY", confidence=0.8, price=3000)
        )
        source = JsonlSignalSource(path)
        await source.get_signals()

        path.write_text(signal_line(symbol="ADAUSDT", side="BUY", confidence=0.8))

        signals = await source.get_signals()
        assert [s.symbol for s in signals] == ["ADAUSDT"]


def make_signal(symbol="BTCUSDT", price=50000.0) -> TradeSignal:
    return TradeSignal(
        symbol=symbol,
        side=SignalSide.BUY,
        confidence=0.8,
        timestamp=datetime(2024, 1, 15, 10, 0),
        price=price,
    )


class TestQueueSignalSource:
    def test_satisfies_protocol(self):
        assert isinstance(QueueSignalSource(), SignalSource)

    @pytest.mark.asyncio
    async def test_batches_are_bounded(self):
        source = QueueSignalSource(max_batch=2)
        for symbol in ("BTCUSDT", "ETHUSDT", "ADAUSDT"):
            await source.push(make_signal(symbol=symbol))

        first = await source.get_signals()
        second = await source.get_signals()

        assert [s.symbol for s in first] == ["BTCUSDT", "ETHUSDT"]
        assert [s.symbol for s in second] == ["ADAUSDT"]
        assert source.pending() == 0
        assert await source.get_signals() == []


@pytest.mark.asyncio
async def test_price_recording_source_reports_valid_prices():
    inner = QueueSignalSource()
    await inner.push(make_signal())
    await inner.push(make_signal(symbol="ETHUSDT", price=None))
    on_price = Mock()

    signals = await PriceRecordingSource(inner, on_price).get_signals()

    assert len(signals) == 2
    on_price.assert_called_once_with("BTCUSDT", 50000.0)
