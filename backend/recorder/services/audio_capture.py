from __future__ import annotations

import io
import threading
import wave
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import numpy as np
import logging
import warnings
import soxr

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - allow import on systems without PortAudio
    sd = None

try:
    import soundcard as sc  # optional fallback for system loopback
except Exception:
    sc = None

from recorder.config import Settings


logger = logging.getLogger("recorder.audio")

# Capture tuning
DEFAULT_BLOCKSIZE = 4096  # frames; larger buffers reduce discontinuity
if sc is not None:
    # Best-effort: suppress benign discontinuity warnings from soundcard
    try:
        warnings.filterwarnings("ignore", category=sc.SoundcardRuntimeWarning)  # type: ignore[attr-defined]
    except AttributeError:
        pass


class AudioSource(Protocol):
    """What the session controller needs from a capture backend."""

    audio_format: str

    def start(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> Dict[str, Any]: ...

    def snapshot_wav(self, seconds: float) -> bytes: ...

    def export_audio(self) -> bytes: ...


class RollingAudioBuffer:
    """Fixed-capacity ring of mono float32 samples."""

    def __init__(self, sample_rate: int, capacity_seconds: float) -> None:
        self.sample_rate = sample_rate
        self._capacity = max(1, int(sample_rate * capacity_seconds))
        self._data = np.zeros(self._capacity, dtype=np.float32)
        self._filled = 0
        self._pos = 0
        self._lock = threading.Lock()

    def append(self, samples: np.ndarray) -> None:
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size >= self._capacity:
            samples = samples[-self._capacity :]
        with self._lock:
            n = samples.size
            end = self._pos + n
            if end <= self._capacity:
                self._data[self._pos : end] = samples
            else:
                first = self._capacity - self._pos
                self._data[self._pos :] = samples[:first]
                self._data[: n - first] = samples[first:]
            self._pos = end % self._capacity
            self._filled = min(self._capacity, self._filled + n)

    def last(self, seconds: float) -> np.ndarray:
        with self._lock:
            n = min(self._filled, int(self.sample_rate * seconds))
            if n <= 0:
                return np.zeros(0, dtype=np.float32)
            start = (self._pos - n) % self._capacity
            if start + n <= self._capacity:
                return self._data[start : start + n].copy()
            return np.concatenate([self._data[start:], self._data[: (start + n) % self._capacity]])

    def clear(self) -> None:
        with self._lock:
            self._filled = 0
            self._pos = 0


def _to_mono_int16(data: np.ndarray) -> np.ndarray:
    """Convert float32/other shaped buffers to mono int16 for WAV writing."""
    data_f32 = data.astype(np.float32, copy=False)
    if data_f32.ndim == 2 and data_f32.shape[1] > 1:
        data_f32 = data_f32.mean(axis=1)
    return np.clip(data_f32 * 32767.0, -32768, 32767).astype(np.int16).reshape(-1)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode mono float32 samples in [-1, 1] as a 16-bit PCM WAV file."""
    if samples.size == 0:
        return b""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)  # int16
        wf.setframerate(sample_rate)
        wf.writeframes(_to_mono_int16(samples).tobytes())
    return buf.getvalue()


def _open_wav(path: Path, samplerate: int) -> wave.Wave_write:
    path.parent.mkdir(parents=True, exist_ok=True)
    wf = wave.open(str(path), "wb")
    wf.setnchannels(1)
    wf.setsampwidth(2)  # int16
    wf.setframerate(samplerate)
    return wf


class AudioCapture:
    """Records one session: the full track goes to a WAV file, the trailing
    window stays in memory for the rolling transcription.

    ``mode`` is ``mic`` (input device) or ``visio`` (system output loopback,
    WASAPI through sounddevice with a soundcard fallback).
    """

    audio_format = "wav"

    def __init__(
        self,
        session_id: str,
        mode: str = "mic",
        device_id: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or Settings()
        self.session_id = session_id
        self.mode = mode
        self.device_id = device_id
        self.target_rate = self._settings.sample_rate
        self.path = self._settings.audio_dir / session_id / "recording.wav"
        self.buffer = RollingAudioBuffer(self.target_rate, self._settings.window_seconds * 2)

        self._stream: Optional[Any] = None
        self._wav: Optional[wave.Wave_write] = None
        self._wav_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._paused = threading.Event()
        self.frames = 0
        self.device_rate: Optional[int] = None
        self.backend: Optional[str] = None

    def _on_block(self, data: np.ndarray) -> None:
        if self._paused.is_set():
            return
        f32 = _to_mono_int16(data).astype(np.float32) / 32768.0
        if self.device_rate and self.device_rate != self.target_rate:
            f32 = soxr.resample(f32, self.device_rate, self.target_rate)
        self.buffer.append(f32)
        with self._wav_lock:
            if self._wav is not None:
                self._wav.writeframes(np.clip(f32 * 32767.0, -32768, 32767).astype(np.int16).tobytes())
                self.frames += f32.shape[0]

    def _callback(self, indata, frames, time, status):  # noqa: ANN001 - external callback signature
        if status:  # pragma: no cover
            logger.debug("Capture status: %s", status)
        try:
            self._on_block(indata)
        except Exception:  # pragma: no cover - never raise inside PortAudio callbacks
            logger.exception("Audio block dropped")

    def start(self) -> None:
        if sd is None:
            raise RuntimeError("sounddevice not available")
        self._wav = _open_wav(self.path, self.target_rate)
        if self.mode == "visio":
            self._start_loopback()
        else:
            self._start_mic()

    def _start_mic(self) -> None:
        dev = int(self.device_id) if self.device_id is not None else (
            sd.default.device[0] if sd.default.device is not None else None
        )
        info = sd.query_devices(dev, "input")
        self.device_rate = int(info.get("default_samplerate", 48000))
        channels = max(1, min(2, int(info.get("max_input_channels", 1)) or 1))
        self._stream = sd.InputStream(
            device=dev,
            channels=channels,
            dtype="float32",
            samplerate=self.device_rate,
            blocksize=DEFAULT_BLOCKSIZE,
            callback=self._callback,
        )
        self._stream.start()
        self.backend = "sounddevice"
        logger.info("Mic capture started", extra={"device": info.get("name"), "rate": self.device_rate})

    def _start_loopback(self) -> None:
        dev = int(self.device_id) if self.device_id is not None else (
            sd.default.device[1] if sd.default.device is not None else None
        )
        try:
            info = sd.query_devices(dev, "output")
        except Exception:
            info = sd.query_devices(dev)
        self.device_rate = int(info.get("default_samplerate", 48000)) or 48000
        # Some headsets expose 6/8 channels; we downmix.
        channels = max(1, int(info.get("max_output_channels", 2) or 2))
        try:
            wasapi = sd.WasapiSettings(loopback=True)  # type: ignore[attr-defined]
            self._stream = sd.InputStream(
                device=dev,
                channels=channels,
                dtype="float32",
                samplerate=self.device_rate,
                blocksize=DEFAULT_BLOCKSIZE,
                callback=self._callback,
                extra_settings=wasapi,  # type: ignore[arg-type]
            )
            self._stream.start()
            self.backend = "sounddevice"
        except Exception:
            # Fallback to soundcard loopback using the loopback microphone API
            if sc is None:
                raise
            self._thread = threading.Thread(target=self._soundcard_loop, args=(info.get("name"),), daemon=True)
            self._thread.start()
            self.backend = "soundcard"
        logger.info("System loopback started", extra={"backend": self.backend, "rate": self.device_rate})

    def _soundcard_loop(self, device_name: Optional[str]) -> None:
        mic = None
        try:
            if device_name:
                mic = sc.get_microphone(str(device_name), include_loopback=True)
        except Exception:
            mic = None
        if mic is None:
            spk = sc.default_speaker()
            mic = sc.get_microphone(spk.name, include_loopback=True)
        with mic.recorder(samplerate=self.device_rate, blocksize=DEFAULT_BLOCKSIZE) as rec:
            while not self._stop_event.is_set():
                self._on_block(rec.record(DEFAULT_BLOCKSIZE))

    def pause(self) -> None:
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    def stop(self) -> Dict[str, Any]:
        try:
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
            self._stop_event.set()
            if self._thread is not None:
                self._thread.join(timeout=1.0)
        finally:
            with self._wav_lock:
                if self._wav is not None:
                    self._wav.close()
                    self._wav = None
        self._stream = None
        return {
            "path": str(self.path),
            "frames": self.frames,
            "rate": self.target_rate,
            "duration_ms": int(self.frames * 1000 / self.target_rate) if self.target_rate else 0,
            "backend": self.backend,
        }

    def snapshot_wav(self, seconds: float) -> bytes:
        return encode_wav(self.buffer.last(seconds), self.target_rate)

    def export_audio(self) -> bytes:
        if not self.path.exists():
            return b""
        return self.path.read_bytes()
