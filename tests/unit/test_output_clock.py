# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from fakes import ManualClock

from biosyn.audio.clock import ClockState, MixingOutputClock
from biosyn.audio.frames import AudioBuffer

RATE = 1_000


def constant(value: float, frames: int, channels: int = 1) -> AudioBuffer:
    return AudioBuffer(
        samples=np.full((channels, frames), value, dtype=np.float32),
        sample_rate=RATE,
    )


def test_clock_advances_only_by_rendered_samples():
    clock = ManualClock(RATE)
    assert clock.now() == 0.0

    clock.render(250)
    assert clock.now() == pytest.approx(0.25)


def test_overlapping_sources_are_mixed_and_clipped():
    clock = ManualClock(RATE)
    clock.start_source(constant(0.6, 10), 0.0)
    clock.start_source(constant(0.6, 10), 0.005)

    block = clock.render(20)[:, 0]

    np.testing.assert_allclose(block[:5], 0.6, rtol=1e-6)
    np.testing.assert_allclose(block[5:10], 1.0)
    np.testing.assert_allclose(block[10:15], 0.6, rtol=1e-6)
    np.testing.assert_allclose(block[15:], 0.0)


def test_source_spanning_blocks_is_rendered_continuously():
    clock = ManualClock(RATE)
    samples = np.arange(8, dtype=np.float32).reshape(1, 8) / 10
    clock.start_source(AudioBuffer(samples=samples, sample_rate=RATE), 0.002)

    first = clock.render(5)[:, 0]
    second = clock.render(5)[:, 0]

    np.testing.assert_allclose(np.concatenate([first, second])[2:10], samples[0], rtol=1e-6)


def test_mono_source_is_duplicated_across_output_channels():
    clock = MixingOutputClock(sample_rate=RATE, channels=2)
    clock.start_source(constant(0.5, 4), 0.0)

    block = clock.render(4)

    assert block.shape == (4, 2)
    np.testing.assert_allclose(block[:, 0], block[:, 1])


def test_on_ended_fires_after_final_sample():
    clock = ManualClock(RATE)
    ended = []
    clock.start_source(constant(0.1, 10), 0.0, on_ended=ended.append)

    clock.render(9)
    assert not ended

    clock.render(1)
    assert len(ended) == 1
    assert clock.scheduled_count == 0


def test_stopped_source_is_silenced_immediately():
    clock = ManualClock(RATE)
    ended = []
    source = clock.start_source(constant(0.5, 100), 0.0, on_ended=ended.append)
    clock.render(10)

    source.stop()
    source.stop()

    assert source.ended
    assert ended == [source]
    assert not clock.render(10).any()


@pytest.mark.asyncio
async def test_suspended_clock_renders_silence_without_advancing():
    clock = ManualClock(RATE)
    clock.start_source(constant(0.5, 100), 0.0)
    await clock.suspend()

    assert clock.state is ClockState.SUSPENDED
    assert not clock.render(50).any()
    assert clock.now() == 0.0

    await clock.resume()
    assert clock.render(50).any()


@pytest.mark.asyncio
async def test_close_releases_device_once_and_rejects_new_sources():
    clock = ManualClock(RATE)
    pending = clock.start_source(constant(0.5, 100), 1.0)

    await clock.close()
    await clock.close()

    assert clock.state is ClockState.CLOSED
    assert clock.device_closes == 1
    assert pending.ended
    with pytest.raises(RuntimeError):
        clock.start_source(constant(0.5, 10), 0.0)
