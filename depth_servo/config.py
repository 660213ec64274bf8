"""Configuration helpers and defaults (YAML + CLI overrides)."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from .controller import LostTargetPolicy
from .pid import AxisCfg, depth_axis_defaults, lateral_axis_defaults, vertical_axis_defaults
from .pipeline import ThresholdKnobs
from .transport import parse_hostport


class ConfigError(ValueError):
    pass


def _axis_dict(a: AxisCfg) -> Dict[str, Any]:
    return {
        "setpoint": a.setpoint,
        "kp": a.kp,
        "ki": a.ki,
        "kd": a.kd,
        "bias": a.bias,
        "invert": a.invert,
        "integral_min": a.integral_min,
        "integral_max": a.integral_max,
    }


DEFAULTS: Dict[str, Any] = {
    "sensor": {
        "source": "realsense",   # realsense | synthetic
        "width": 640,
        "height": 480,
        "fps": 30,
    },
    "knobs": {
        "min_depth": 500,
        "max_depth": 1500,
        "min_blob_area": 100.0,
        "max_blob_area": 20000.0,
    },
    "control": {
        "tick_ms": 50.0,
    },
    "axes": {
        "vertical": _axis_dict(vertical_axis_defaults()),
        "depth": _axis_dict(depth_axis_defaults()),
        "lateral": _axis_dict(lateral_axis_defaults()),
    },
    "transport": {
        "kind": "udp",           # udp | zmq | print
        "endpoint": "127.0.0.1:1212",
        "linger_ms": 200,
    },
    "telemetry": {
        "enabled": False,
        "path": "logs/servo_telemetry.csv",
        "max_bytes": 10 * 1024 * 1024,
        "every_n": 1,
    },
    "lost_target": {
        "max_age_s": 1.0,
        "action": "hold",        # hold | disarm
    },
}


def _deep_update(dst: dict, src: dict) -> dict:
    for k, v in (src or {}).items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def _parse_scalar(value: str) -> object:
    text = str(value).strip()
    if not text:
        return ""
    low = text.lower()
    if low in ("true", "yes", "on"):
        return True
    if low in ("false", "no", "off"):
        return False
    if low in ("null", "none", "~"):
        return None
    try:
        if "." in text or "e" in low:
            return float(text)
        return int(text)
    except ValueError:
        return text.strip("\"'")


def set_dotted(cfg: dict, dotted_key: str, value: Any) -> None:
    parts = [p for p in str(dotted_key).split(".") if p]
    if not parts:
        raise ConfigError(f"empty config key in override {dotted_key!r}")
    node = cfg
    for p in parts[:-1]:
        if p not in node or not isinstance(node[p], dict):
            node[p] = {}
        node = node[p]
    node[parts[-1]] = value


def get_dotted(cfg: dict, dotted_key: str, default: Any = None) -> Any:
    node: Any = cfg
    for part in str(dotted_key).split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        else:
            return default
    return node


def load_yaml_dict(path: Optional[str]) -> dict:
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top level must be a mapping")
    return data


def load_config_dict(path: Optional[str] = None, overrides: Iterable[str] = ()) -> dict:
    """Defaults <- YAML file <- `key.path=value` overrides."""
    cfg = copy.deepcopy(DEFAULTS)
    _deep_update(cfg, load_yaml_dict(path))
    for item in overrides or ():
        key, sep, raw = str(item).partition("=")
        if not sep:
            raise ConfigError(f"override must look like key.path=value (got {item!r})")
        set_dotted(cfg, key.strip(), _parse_scalar(raw))
    return cfg


# -------------------------------
# Typed view
# -------------------------------

@dataclass
class SensorCfg:
    source: str = "realsense"
    width: int = 640
    height: int = 480
    fps: int = 30


@dataclass
class ServoConfig:
    sensor: SensorCfg = field(default_factory=SensorCfg)
    knobs: ThresholdKnobs = field(default_factory=ThresholdKnobs)
    tick_ms: float = 50.0
    vertical: AxisCfg = field(default_factory=vertical_axis_defaults)
    depth: AxisCfg = field(default_factory=depth_axis_defaults)
    lateral: AxisCfg = field(default_factory=lateral_axis_defaults)
    transport: Dict[str, Any] = field(default_factory=dict)
    telemetry: Dict[str, Any] = field(default_factory=dict)
    lost_target: LostTargetPolicy = field(default_factory=LostTargetPolicy)


def _opt_float(v: Any) -> Optional[float]:
    return None if v is None else float(v)


def _as_bool(key: str, v: Any) -> bool:
    # Quoted YAML ("false") and --set strings go through the same scalar rules.
    if isinstance(v, str):
        v = _parse_scalar(v)
    if not isinstance(v, bool):
        raise ConfigError(f"{key} must be true or false (got {v!r})")
    return v


def _axis_from_dict(name: str, d: Any) -> AxisCfg:
    if not isinstance(d, dict):
        raise ConfigError(f"axes.{name} must be a mapping")
    try:
        a = AxisCfg(
            setpoint=float(d.get("setpoint", 0.0)),
            kp=float(d.get("kp", 0.0)),
            ki=float(d.get("ki", 0.0)),
            kd=float(d.get("kd", 0.0)),
            bias=float(d.get("bias", 0.0)),
            invert=_as_bool("invert", d.get("invert", False)),
            integral_min=_opt_float(d.get("integral_min")),
            integral_max=_opt_float(d.get("integral_max")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"axes.{name}: {e}") from e
    lo, hi = a.integral_bounds()
    if lo > hi:
        raise ConfigError(f"axes.{name}: integral_min > integral_max")
    return a


def build_config(cfg: Dict[str, Any]) -> ServoConfig:
    try:
        s = cfg.get("sensor") or {}
        sensor = SensorCfg(
            source=str(s.get("source", "realsense")).strip().lower(),
            width=int(s.get("width", 640)),
            height=int(s.get("height", 480)),
            fps=int(s.get("fps", 30)),
        )
        k = cfg.get("knobs") or {}
        knobs = ThresholdKnobs(
            min_depth=int(k.get("min_depth", 500)),
            max_depth=int(k.get("max_depth", 1500)),
            min_blob_area=float(k.get("min_blob_area", 100.0)),
            max_blob_area=float(k.get("max_blob_area", 20000.0)),
        )
        tick_ms = float(get_dotted(cfg, "control.tick_ms", 50.0))
        lt = cfg.get("lost_target") or {}
        lost = LostTargetPolicy(
            max_age_s=float(lt.get("max_age_s", 1.0)),
            action=str(lt.get("action", "hold")).strip().lower(),  # type: ignore[arg-type]
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(str(e)) from e

    if sensor.source not in ("realsense", "synthetic"):
        raise ConfigError(f"sensor.source must be realsense or synthetic (got {sensor.source!r})")
    if sensor.width <= 0 or sensor.height <= 0 or sensor.fps <= 0:
        raise ConfigError("sensor.width/height/fps must be > 0")
    if not tick_ms > 0.0:
        raise ConfigError(f"control.tick_ms must be > 0 (got {tick_ms})")
    if lost.action not in ("hold", "disarm"):
        raise ConfigError(f"lost_target.action must be hold or disarm (got {lost.action!r})")

    axes = cfg.get("axes") or {}
    transport = dict(cfg.get("transport") or {})
    kind = str(transport.get("kind", "udp")).strip().lower()
    if kind not in ("udp", "zmq", "print"):
        raise ConfigError(f"transport.kind must be udp, zmq or print (got {kind!r})")
    if kind == "udp":
        try:
            parse_hostport(str(transport.get("endpoint", "")))
        except ValueError as e:
            raise ConfigError(f"transport.endpoint must be host:port ({e})") from e

    return ServoConfig(
        sensor=sensor,
        knobs=knobs,
        tick_ms=tick_ms,
        vertical=_axis_from_dict("vertical", axes.get("vertical", {})),
        depth=_axis_from_dict("depth", axes.get("depth", {})),
        lateral=_axis_from_dict("lateral", axes.get("lateral", {})),
        transport=transport,
        telemetry=dict(cfg.get("telemetry") or {}),
        lost_target=lost,
    )


def load_config(path: Optional[str] = None, overrides: Iterable[str] = ()) -> ServoConfig:
    return build_config(load_config_dict(path, overrides))
