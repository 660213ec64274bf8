"""Actuation command wire format: one JSON object per line.

    {"ctrl": {"version": 1, "roll": r, "pitch": p, "yaw": 0.0, "thrust": t}}\\n
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict

PROTOCOL_VERSION = 1


class CommandFormatError(ValueError):
    pass


@dataclass(frozen=True)
class ActuationCommand:
    thrust: float
    pitch: float
    roll: float
    yaw: float = 0.0
    version: int = PROTOCOL_VERSION

    def to_payload(self) -> Dict[str, Any]:
        return {
            "ctrl": {
                "version": int(self.version),
                "roll": float(self.roll),
                "pitch": float(self.pitch),
                "yaw": float(self.yaw),
                "thrust": float(self.thrust),
            }
        }

    def encode(self) -> str:
        return json.dumps(self.to_payload(), separators=(", ", ": ")) + "\n"


def encode_command(thrust: float, pitch: float, roll: float) -> str:
    return ActuationCommand(thrust=float(thrust), pitch=float(pitch), roll=float(roll)).encode()


def disarm_command() -> ActuationCommand:
    return ActuationCommand(thrust=0.0, pitch=0.0, roll=0.0)


def parse_command(line: str) -> ActuationCommand:
    """Inverse of ActuationCommand.encode(); raises CommandFormatError on anything malformed."""
    if isinstance(line, (bytes, bytearray)):
        line = bytes(line).decode("utf-8", errors="strict")
    try:
        obj = json.loads(str(line).strip())
    except ValueError as e:
        raise CommandFormatError(f"not JSON: {e}") from e
    ctrl = obj.get("ctrl") if isinstance(obj, dict) else None
    if not isinstance(ctrl, dict):
        raise CommandFormatError("missing 'ctrl' object")
    try:
        vals = {k: float(ctrl[k]) for k in ("thrust", "pitch", "roll", "yaw")}
        version = int(ctrl.get("version", PROTOCOL_VERSION))
    except (KeyError, TypeError, ValueError) as e:
        raise CommandFormatError(f"bad ctrl field: {e}") from e
    if not all(math.isfinite(v) for v in vals.values()):
        raise CommandFormatError("non-finite ctrl value")
    return ActuationCommand(version=version, **vals)
