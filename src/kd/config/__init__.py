"""kd configuration package."""

from kd.config.settings import Settings, format_duration, load_settings, parse_duration


__all__: list[str] = ["Settings", "format_duration", "load_settings", "parse_duration"]
