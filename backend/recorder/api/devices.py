from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel
import logging

try:
    import sounddevice as sd
except Exception:
    sd = None  # PortAudio may be missing on headless hosts

logger = logging.getLogger("recorder.api")

router = APIRouter(prefix="/devices", tags=["devices"])


class Device(BaseModel):
    id: str
    name: str
    kind: str  # mic | visio
    is_default: bool = False


@router.get("")
def list_capture_sources() -> dict[str, list[Device]]:
    """Microphones for ``mic`` recordings and output devices usable for ``visio`` loopback."""
    mics: list[Device] = []
    loopback: list[Device] = []
    if sd is None:
        return {"mic": mics, "visio": loopback}

    try:
        default_in = sd.default.device[0] if sd.default.device is not None else None
        default_out = sd.default.device[1] if sd.default.device is not None else None
        for idx, dev in enumerate(sd.query_devices()):
            label = dev.get("name", f"Device {idx}")
            if dev.get("max_input_channels", 0) > 0:
                mics.append(Device(id=str(idx), name=label, kind="mic", is_default=idx == default_in))
            if dev.get("max_output_channels", 0) > 0:
                loopback.append(Device(id=str(idx), name=label, kind="visio", is_default=idx == default_out))
    except Exception:
        logger.warning("Device enumeration failed", exc_info=True)

    return {"mic": mics, "visio": loopback}
