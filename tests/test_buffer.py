"""Tests for the bounded ring buffers."""

import pytest

from paneboard.buffer import LineBuffer, RingBuffer


class TestRingBuffer:
    def test_keeps_newest_items(self):
        buffer = RingBuffer[str](maxlen=3)
        for key in "abcd":
            buffer.append(key)

        assert buffer.get_items() == ["b", "c", "d"]
        assert len(buffer) == 3

    def test_never_exceeds_capacity(self):
        buffer = RingBuffer[int](maxlen=10)
        for i in range(1000):
            buffer.append(i)
            assert len(buffer) <= buffer.capacity

        assert buffer.get_items(2) == [998, 999]

    def test_get_items_zero(self):
        buffer = RingBuffer[int](maxlen=5)
        buffer.append(1)
        assert buffer.get_items(0) == []

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            RingBuffer(maxlen=0)

    def test_clear(self):
        buffer = RingBuffer[int](maxlen=5)
        buffer.append(1)
        buffer.clear()
        assert list(buffer) == []


class TestLineBuffer:
    def test_strips_trailing_newlines(self):
        buffer = LineBuffer(maxlen=5)
        buffer.append("first\n")
        buffer.append("second")

        assert buffer.get_text() == "first\nsecond"

    def test_get_text_last_lines(self):
        buffer = LineBuffer(maxlen=5)
        for line in ("a", "b", "c"):
            buffer.append(line)

        assert buffer.get_text(n=2) == "b\nc"
