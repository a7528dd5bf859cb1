"""Manages application configuration via an INI file."""

import configparser
import logging
from pathlib import Path
from typing import Optional

from rasterlab.logging_setup import get_app_data_dir

log = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "core": {
        # Undo steps kept per document; the oldest is evicted past this
        "history_capacity": "50",
        # "clamp" (extend edge pixels) or "skip" (copy the border ring unprocessed)
        "border_policy": "clamp",
    },
    "limits": {
        # Upper bounds for the operators whose cost grows with their parameter
        "max_blur_radius": "10",
        "max_median_radius": "5",
        "max_gaussian_sigma": "5.0",
    },
    "export": {
        "format": "PNG",  # "PNG" or "JPEG"
        "jpeg_quality": "90",
        "filename_prefix": "image",
    },
}


class AppConfig:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else get_app_data_dir() / "rasterlab.ini"
        self.config = configparser.ConfigParser()
        self.load()

    def load(self):
        """Loads the config, creating it with defaults if it doesn't exist."""
        if not self.config_path.exists():
            log.info(f"Creating default config at {self.config_path}")
            self.config.read_dict(DEFAULT_CONFIG)
            self.save()
        else:
            log.info(f"Loading config from {self.config_path}")
            self.config.read(self.config_path)
            # Ensure all sections and keys exist
            missing = False
            for section, keys in DEFAULT_CONFIG.items():
                if not self.config.has_section(section):
                    self.config.add_section(section)
                for key, value in keys.items():
                    if not self.config.has_option(section, key):
                        self.config.set(section, key, value)
                        missing = True
            if missing:
                self.save()

    def save(self):
        """Saves the current configuration to the INI file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with self.config_path.open("w") as f:
                self.config.write(f)
            log.info(f"Saved config to {self.config_path}")
        except OSError as e:
            log.warning(f"Failed to save config to {self.config_path}: {e}")

    def get(self, section, key, fallback=None):
        return self.config.get(section, key, fallback=fallback)

    def getint(self, section, key, fallback=None):
        return self.config.getint(section, key, fallback=fallback)

    def getfloat(self, section, key, fallback=None):
        return self.config.getfloat(section, key, fallback=fallback)

    def getboolean(self, section, key, fallback=None):
        return self.config.getboolean(section, key, fallback=fallback)

    def set(self, section, key, value):
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, key, str(value))

    # Typed accessors for the values the editing core reads

    @property
    def history_capacity(self) -> int:
        try:
            return max(1, self.getint("core", "history_capacity", fallback=50))
        except ValueError:
            log.warning("Invalid history_capacity in config, using 50")
            return 50

    @property
    def border_policy(self) -> str:
        value = (self.get("core", "border_policy", fallback="clamp") or "clamp").strip().lower()
        if value not in ("clamp", "skip"):
            log.warning(f"Unknown border_policy {value!r} in config, using 'clamp'")
            return "clamp"
        return value

    def limits(self) -> dict:
        """The [limits] section as keyword arguments for parameter_ranges()."""
        defaults = DEFAULT_CONFIG["limits"]
        try:
            return {
                "max_blur_radius": self.getfloat("limits", "max_blur_radius", fallback=float(defaults["max_blur_radius"])),
                "max_median_radius": self.getint("limits", "max_median_radius", fallback=int(defaults["max_median_radius"])),
                "max_gaussian_sigma": self.getfloat("limits", "max_gaussian_sigma", fallback=float(defaults["max_gaussian_sigma"])),
            }
        except ValueError as e:
            log.warning(f"Invalid [limits] in config, using defaults: {e}")
            return {
                "max_blur_radius": float(defaults["max_blur_radius"]),
                "max_median_radius": int(defaults["max_median_radius"]),
                "max_gaussian_sigma": float(defaults["max_gaussian_sigma"]),
            }


# Global config instance
config = AppConfig()
