import pytest

from battery_trace.buffer import Sample, SampleBuffer


def test_append_prunes_samples_older_than_window():
    buffer = SampleBuffer(window_seconds=90)
    for ts, level in [(0, 0.50), (50, 0.51), (100, 0.52)]:
        buffer.append(Sample(ts, level))

    assert [s.ts for s in buffer] == [50, 100]
    assert buffer.oldest() == Sample(50, 0.51)
    assert buffer.newest() == Sample(100, 0.52)


def test_sample_exactly_at_window_edge_is_kept():
    buffer = SampleBuffer(window_seconds=90)
    buffer.append(Sample(10, 0.5))
    buffer.append(Sample(100, 0.6))

    assert len(buffer) == 2


def test_prune_never_drops_newest_and_is_idempotent():
    buffer = SampleBuffer(window_seconds=90)
    buffer.append(Sample(0, 0.5))
    buffer.append(Sample(10, 0.6))

    buffer.prune(1000)
    once = list(buffer)
    buffer.prune(1000)

    assert once == [Sample(10, 0.6)]
    assert list(buffer) == once


def test_equal_timestamps_are_appended():
    buffer = SampleBuffer()
    buffer.append(Sample(5, 0.5))
    buffer.append(Sample(5, 0.5))

    assert len(buffer) == 2


def test_out_of_order_sample_is_rejected():
    buffer = SampleBuffer()
    buffer.append(Sample(10, 0.5))

    with pytest.raises(ValueError):
        buffer.append(Sample(9, 0.6))
    assert len(buffer) == 1


def test_empty_buffer_and_clear():
    buffer = SampleBuffer()
    assert buffer.oldest() is None
    assert buffer.newest() is None

    buffer.append(Sample(1, 0.1))
    buffer.clear()

    assert len(buffer) == 0
    assert buffer.newest() is None


def test_window_must_be_positive():
    with pytest.raises(ValueError):
        SampleBuffer(window_seconds=0)
