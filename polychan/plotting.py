from typing import Any, Optional, Tuple

import matplotlib as mpl
import matplotlib.font_manager as fm
import matplotlib.pyplot as plt
import numpy as np

from .backend import to_host
from .config import get_config
from .logger import get_logger

logger = get_logger(__name__)


def apply_default_theme() -> None:
    try:
        font_prop = fm.FontProperties(family="Roboto", weight="regular")
        fm.findfont(font_prop, fallback_to_default=False)
        font_name = "Roboto"
    except ValueError:
        font_name = "sans"
        logger.debug("Roboto font not found, falling back to default sans-serif.")

    mpl.rcParams.update(
        {
            "figure.figsize": (5, 3.5),
            "font.family": font_name,
            "font.size": 12,
            "lines.linewidth": 2,
            "axes.linewidth": 1,
            "axes.grid": False,
            "axes.titleweight": "bold",
            "figure.autolayout": True,
            "figure.facecolor": "white",
            "savefig.facecolor": "white",
            "savefig.dpi": 300,
            "xtick.direction": "in",
            "ytick.direction": "in",
            "xtick.major.width": 1,
            "ytick.major.width": 1,
            "xtick.major.size": 4,
            "ytick.major.size": 4,
            "xtick.top": True,
            "ytick.right": True,
        }
    )


def channel_power(
    y: Any,
    sample_rate: Optional[float] = None,
    db: bool = True,
    ax: Optional[Any] = None,
    title: Optional[str] = "Channel Power",
    show: bool = False,
    **kwargs: Any,
) -> Optional[Tuple[Any, Any]]:
    """
    Plots the power of the channelizer output as a time x channel waterfall.

    Args:
        y: Channelizer output, ``(n_pts, n_chans)``. NumPy or CuPy.
        sample_rate: Per-channel sample rate in Hz. Defaults to the
            ``sample_rate`` of the global config when one is set. If known,
            the time axis is in seconds, otherwise in samples.
        db: Plot ``10 log10 |y|^2`` instead of linear power.
        ax: Optional matplotlib axis to plot on.
        title: Title of the plot. If None, no title is set.
        show: Whether to call plt.show() after plotting.
        **kwargs: Additional arguments passed to ax.imshow.

    Returns:
        Tuple of (figure, axis) if show is False, otherwise None.
    """
    if sample_rate is None:
        config = get_config()
        if config is not None:
            sample_rate = config.sample_rate

    power = np.abs(to_host(y)) ** 2
    if power.ndim != 2:
        raise ValueError(f"y must be 2-D (n_pts, n_chans), got shape {power.shape}")
    if db:
        power = 10 * np.log10(np.maximum(power, np.finfo(power.dtype).tiny))

    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure

    n_pts, n_chans = power.shape
    t_end = n_pts / sample_rate if sample_rate else n_pts
    kwargs.setdefault("aspect", "auto")
    kwargs.setdefault("origin", "lower")
    kwargs.setdefault("cmap", "viridis")
    image = ax.imshow(power, extent=(-0.5, n_chans - 0.5, 0, t_end), **kwargs)
    fig.colorbar(image, ax=ax, label="Power [dB]" if db else "Power")

    ax.set_xlabel("Channel")
    ax.set_ylabel("Time [s]" if sample_rate else "Sample")
    if title:
        ax.set_title(title)

    if show:
        plt.show()
        return None
    return fig, ax
