"""
Configuration management for the AR city overlay.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional
import yaml

from .models import LatLon


DEFAULT_CITIES_PATH = Path(__file__).parent / "data" / "cities.json"


@dataclass(frozen=True)
class Settings:
    """User-facing settings, read as an immutable snapshot once per frame."""

    max_distance_km: float = 1000.0  # stored in km whatever the display units
    units: Literal["km", "mi"] = "km"
    hfov_deg: float = 60.0
    heading_offset_deg: float = 0.0
    smoothing: float = 0.15  # 0..0.3
    show_offscreen_indicators: bool = False


@dataclass
class FusionConfig:
    """Orientation fusion tuning."""

    accel_gain: float = 0.02  # trust in gravity-derived tilt
    yaw_correction_gain: float = 0.01  # pull toward magnetic heading
    grace_period_s: float = 2.0
    tick_hz: float = 60.0
    sensor_frequency_hz: float = 60.0

    # Virtual (pointer drag) source, degrees per pixel
    sensitivity_heading: float = 0.1
    sensitivity_pitch: float = 0.1
    virtual_pitch_limit_deg: float = 89.0


@dataclass
class LayoutConfig:
    """Label layout and fade animation parameters."""

    fade_in_per_s: float = 4.0
    fade_out_per_s: float = 3.0
    max_frame_dt_s: float = 0.1
    draw_alpha_threshold: float = 0.01

    # Fixed line height, independent of the font backend
    line_height_px: float = 24.0
    padding_px: float = 12.0
    label_margin_px: float = 4.0
    edge_margin_px: float = 6.0
    horizon_gap_px: float = 6.0
    min_step_px: float = 12.0
    step_gap_px: float = 6.0
    corner_radius_px: float = 6.0


@dataclass
class CameraConfig:
    """Camera capture configuration."""

    index: int = 0
    width: int = 1280
    height: int = 720


@dataclass
class HardwareConfig:
    """MAVLink flight controller used as orientation hardware."""

    mavlink_port: Optional[str] = None  # None = no hardware, "auto" = first detected port
    mavlink_baud: int = 115200
    heartbeat_timeout_s: float = 5.0
    stream_rate_hz: int = 50
    use_autopilot_attitude: bool = True


@dataclass
class DisplayConfig:
    """Window configuration."""

    window_name: str = "AR Cities"
    fullscreen: bool = False
    device_pixel_ratio: float = 1.0


@dataclass
class Config:
    """Main configuration container."""

    settings: Settings = field(default_factory=Settings)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    hardware: HardwareConfig = field(default_factory=HardwareConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)

    observer: LatLon = field(default_factory=lambda: LatLon(39.9960, -74.0621))
    cities_path: Path = DEFAULT_CITIES_PATH
    verbose: bool = False

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "settings" in data:
            config.settings = Settings(**data["settings"])
        if "fusion" in data:
            config.fusion = FusionConfig(**data["fusion"])
        if "layout" in data:
            config.layout = LayoutConfig(**data["layout"])
        if "camera" in data:
            config.camera = CameraConfig(**data["camera"])
        if "hardware" in data:
            config.hardware = HardwareConfig(**data["hardware"])
        if "display" in data:
            config.display = DisplayConfig(**data["display"])
        if "observer" in data:
            config.observer = LatLon(**data["observer"])
        if "cities_path" in data:
            config.cities_path = Path(data["cities_path"])

        config.verbose = data.get("verbose", False)

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import dataclasses

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return {k: convert(v) for k, v in dataclasses.asdict(obj).items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
