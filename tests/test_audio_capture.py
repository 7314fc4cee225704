import io
import wave

import numpy as np

from recorder.services.audio_capture import AudioCapture, RollingAudioBuffer, encode_wav


def test_buffer_keeps_only_the_most_recent_samples():
    buf = RollingAudioBuffer(sample_rate=10, capacity_seconds=1)

    buf.append(np.arange(6, dtype=np.float32))
    buf.append(np.arange(6, 12, dtype=np.float32))

    assert buf.last(1).tolist() == [float(v) for v in range(2, 12)]
    assert buf.last(0.3).tolist() == [9.0, 10.0, 11.0]


def test_buffer_clear():
    buf = RollingAudioBuffer(sample_rate=10, capacity_seconds=1)
    buf.append(np.ones(5, dtype=np.float32))

    buf.clear()

    assert buf.last(1).size == 0


def test_wav_encoding():
    data = encode_wav(np.zeros(1600, dtype=np.float32), 16000)

    with wave.open(io.BytesIO(data)) as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 16000
        assert wf.getnframes() == 1600
    assert encode_wav(np.zeros(0, dtype=np.float32), 16000) == b""


def test_paused_blocks_are_dropped(settings):
    capture = AudioCapture("session-1", settings=settings)
    block = np.full((1600, 2), 0.25, dtype=np.float32)

    capture._on_block(block)
    capture.pause()
    capture._on_block(block)
    capture.resume()

    assert capture.buffer.last(60).size == 1600
    assert len(capture.snapshot_wav(15)) > 1600 * 2
    assert capture.export_audio() == b""
