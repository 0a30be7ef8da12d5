"""
Visualization Utilities
=======================

Quicklooks for the analysis outputs:
    - Color-coded land cover maps
    - True color and spectral index maps of a composite
    - Urban area time series
    - Validation confusion matrix
"""

from typing import Dict, List, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import LinearSegmentedColormap

from urbangrowth import CLASS_NAMES, NODATA_CLASS
from urbangrowth.data.raster import ClassifiedRaster, Composite
from urbangrowth.utils.report import GrowthReport


CLASS_COLORS = {
    0: (255, 0, 0),       # Urban - Red
    1: (0, 128, 0),       # Vegetation - Green
    2: (210, 180, 140),   # Bare soil / Desert - Tan
    3: (0, 0, 255),       # Water - Blue
}

NODATA_COLOR = (255, 255, 255)

# Display ranges and palettes per index: (vmin, vmax, colors)
INDEX_STYLES = {
    'NDVI': (-0.2, 0.5, ['brown', 'yellow', 'lightgreen', 'green', 'darkgreen']),
    'NDBI': (-0.3, 0.3, ['blue', 'white', 'red']),
    'BUI': (-0.4, 0.4, ['green', 'white', 'orange', 'red']),
    'MNDWI': (-0.4, 0.4, ['brown', 'white', 'lightblue', 'blue']),
}


def prediction_to_rgb(
    prediction: np.ndarray,
    colors: Dict[int, Tuple] = None
) -> np.ndarray:
    """
    Convert class map to RGB image.

    Args:
        prediction: 2D array of class indices
        colors: Color mapping dictionary

    Returns:
        RGB image array (H, W, 3)
    """
    colors = colors or CLASS_COLORS
    rgb = np.empty(prediction.shape + (3,), dtype=np.uint8)
    rgb[:] = NODATA_COLOR

    for class_id, color in colors.items():
        rgb[prediction == class_id] = color

    return rgb


def save_landcover_map(classified: ClassifiedRaster, save_path: str, title: str = None):
    """Save a land cover quicklook with legend."""
    fig, ax = plt.subplots(figsize=(10, 10))
    ax.imshow(prediction_to_rgb(classified.data))
    ax.set_title(title or f"{classified.year} - Land Cover", fontsize=14, fontweight='bold')
    ax.axis('off')

    handles = [
        plt.Rectangle((0, 0), 1, 1, color=tuple(c / 255 for c in CLASS_COLORS[i]))
        for i in sorted(CLASS_COLORS)
    ]
    ax.legend(handles, [CLASS_NAMES[i] for i in sorted(CLASS_COLORS)], loc='lower right')

    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def save_rgb_map(
    composite: Composite,
    save_path: str,
    bands: Sequence[str] = ('B4', 'B3', 'B2'),
    vmin: float = 0,
    vmax: float = 3000,
    gamma: float = 1.3,
    title: str = None
):
    """Save a true color quicklook stretched to [vmin, vmax] with gamma correction."""
    rgb = np.stack([composite.band(b) for b in bands], axis=-1)
    scaled = np.clip((rgb - vmin) / (vmax - vmin), 0, 1) ** (1 / gamma)
    scaled = np.where(np.isfinite(scaled), scaled, 1.0)

    fig, ax = plt.subplots(figsize=(10, 10))
    ax.imshow(scaled)
    ax.set_title(title or f"{composite.year} - RGB", fontsize=14, fontweight='bold')
    ax.axis('off')
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def save_index_map(
    composite: Composite,
    band: str,
    vmin: float,
    vmax: float,
    cmap: Union[str, List[str]],
    save_path: str,
    title: str = None
):
    """
    Save a spectral index quicklook.

    Args:
        composite: Composite carrying ``band``
        band: Index band, e.g. 'NDVI'
        vmin: Value mapped to the first color
        vmax: Value mapped to the last color
        cmap: Matplotlib colormap name or list of colors to interpolate
        save_path: PNG path
        title: Figure title
    """
    if not isinstance(cmap, str):
        cmap = LinearSegmentedColormap.from_list(band, list(cmap))

    fig, ax = plt.subplots(figsize=(10, 10))
    im = ax.imshow(np.ma.masked_invalid(composite.band(band)), cmap=cmap, vmin=vmin, vmax=vmax)
    plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
    ax.set_title(title or f"{composite.year} - {band}", fontsize=14, fontweight='bold')
    ax.axis('off')
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def save_urban_mask(mask: np.ndarray, save_path: str, title: str = "New Urban Growth"):
    """Save a binary urban mask (1 = urban) in red over white."""
    rgb = np.empty(mask.shape + (3,), dtype=np.uint8)
    rgb[:] = NODATA_COLOR
    rgb[mask == 1] = CLASS_COLORS[0]
    rgb[(mask != 1) & (mask != NODATA_CLASS)] = (235, 235, 235)

    fig, ax = plt.subplots(figsize=(10, 10))
    ax.imshow(rgb)
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.axis('off')
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def plot_urban_growth(report: GrowthReport, save_path: str):
    """Plot urban area per year."""
    rows = report.rows()

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.plot(
        [r.year for r in rows],
        [r.urban_area_km2 for r in rows],
        marker='o',
        color='red',
        linewidth=2
    )
    ax.set_xlabel('Year', fontsize=12)
    ax.set_ylabel('Urban Area (km²)', fontsize=12)
    ax.set_title(f"Urban Growth - {report.region_code}", fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def plot_confusion_matrix(
    confusion_matrix: np.ndarray,
    class_names: List[str],
    save_path: str,
    title: str = "Validation Confusion Matrix"
):
    """Plot the validation error matrix (rows reference, columns predicted)."""
    fig, ax = plt.subplots(figsize=(7, 6))
    im = ax.imshow(confusion_matrix, cmap='Blues')
    plt.colorbar(im, ax=ax)

    ax.set_xticks(np.arange(len(class_names)))
    ax.set_yticks(np.arange(len(class_names)))
    ax.set_xticklabels(class_names, rotation=45, ha='right')
    ax.set_yticklabels(class_names)
    ax.set_xlabel('Predicted', fontsize=12)
    ax.set_ylabel('Reference', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')

    thresh = confusion_matrix.max() / 2
    for i in range(len(class_names)):
        for j in range(len(class_names)):
            ax.text(
                j, i, f'{confusion_matrix[i, j]}',
                ha='center', va='center',
                color='white' if confusion_matrix[i, j] > thresh else 'black'
            )

    plt.tight_layout()
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
