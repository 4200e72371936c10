"""Global channelizer configuration management.

This module provides a global configuration context holding the caller's
launch policy (tile size, backend, legacy kernels, sample blocks). Every
argument of ``channelize`` that is left as ``None`` is taken from here.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .kernels import LEGACY_TILE_SIZE, MAX_SAMPLE_BLOCKS, TILE_SIZES

BACKENDS = ("cuda", "numba", "jax", "numpy")


class ChannelizerConfig(BaseModel):
    """Launch policy of the channelizer.

    The tile size is a performance parameter: outputs agree across tile
    sizes up to floating-point summation order. Choosing it is left to the
    caller.
    """

    model_config = ConfigDict(extra="allow")

    tile_size: int = Field(32, description="Tile size M (block of M x M threads)")
    backend: Optional[str] = Field(
        None, description="Execution backend; None selects from the input device"
    )
    legacy: bool = Field(
        False, description="Use the non-templated fallback CUDA kernels"
    )
    sample_blocks: Optional[int] = Field(
        None,
        ge=1,
        le=MAX_SAMPLE_BLOCKS,
        description="Blocks sharing the strided loop over sample indices",
    )
    sample_rate: Optional[float] = Field(
        None, gt=0, description="Per-channel output sample rate in Hz"
    )

    extra: Dict[str, Any] = Field(
        default_factory=dict, description="Custom user-defined parameters"
    )

    @field_validator("tile_size")
    @classmethod
    def check_tile_size(cls, value: int) -> int:
        if value not in TILE_SIZES:
            raise ValueError(f"tile_size must be one of {TILE_SIZES}, got {value}")
        return value

    @field_validator("backend")
    @classmethod
    def check_backend(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.lower()
        if value not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {value!r}")
        return value

    @model_validator(mode="after")
    def check_legacy_tile(self) -> "ChannelizerConfig":
        """The legacy kernels exist only for the 32 x 32 tile."""
        if self.legacy and self.tile_size != LEGACY_TILE_SIZE:
            raise ValueError(
                f"legacy kernels require tile_size={LEGACY_TILE_SIZE}, got {self.tile_size}"
            )
        return self

    @classmethod
    def from_yaml(cls, path: str) -> "ChannelizerConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            ChannelizerConfig instance
        """
        import yaml

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        extra = data.pop("extra", {})
        config = cls(**data)
        config.extra.update(extra)
        return config

    def to_yaml(self, path: str):
        """Save configuration to YAML file.

        Args:
            path: Path where YAML file will be saved
        """
        import yaml

        data = self.model_dump()

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def launch_params(self) -> dict:
        """Arguments of ``channelize`` governed by this configuration."""
        return {
            "tile_size": self.tile_size,
            "backend": self.backend,
            "legacy": self.legacy,
            "sample_blocks": self.sample_blocks,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get a parameter value, checking extra dict if not in main fields.

        Args:
            key: Parameter name
            default: Default value if key not found

        Returns:
            Parameter value or default
        """
        if key in type(self).model_fields:
            return getattr(self, key)
        return self.extra.get(key, default)

    def set(self, key: str, value: Any):
        """Set a parameter value, using extra dict for custom parameters.

        Args:
            key: Parameter name
            value: Parameter value
        """
        if key in type(self).model_fields:
            setattr(self, key, value)
        else:
            self.extra[key] = value


# ============================================================================
# Global Configuration Context
# ============================================================================

_global_config: Optional[ChannelizerConfig] = None


def set_config(config: ChannelizerConfig):
    """Set the global channelizer configuration.

    Args:
        config: ChannelizerConfig instance to use globally
    """
    global _global_config
    _global_config = config


def get_config() -> Optional[ChannelizerConfig]:
    """Get the current global channelizer configuration.

    Returns:
        Current ChannelizerConfig instance, or None if not set
    """
    return _global_config


def clear_config():
    """Clear the global configuration."""
    global _global_config
    _global_config = None


def require_config() -> ChannelizerConfig:
    """Get the current config, raising an error if not set.

    Returns:
        Current ChannelizerConfig instance

    Raises:
        RuntimeError: If no config is currently set
    """
    config = get_config()
    if config is None:
        raise RuntimeError(
            "No channelizer configuration is set. Please call set_config(config) first."
        )
    return config
