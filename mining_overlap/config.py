# config.py - Configuration for the mining footprint overlap analysis
# Edit paths and parameters as needed; run_pipeline.py overrides them per run.

from pathlib import Path
import os

# ── Paths ──────────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
OUTPUTS_DIR = BASE_DIR / "outputs"

# Input data
SITES_FILE = DATA_DIR / "mining_properties.csv"
CLASSIFICATION_LAYER_FILE = DATA_DIR / "protected_areas.tif"

# Output directories
DRAWS_DIR = OUTPUTS_DIR / "draws"
REPORTS_DIR = OUTPUTS_DIR / "reports"
FIGURES_DIR = OUTPUTS_DIR / "figures"

OVERLAP_REPORT_FILE = REPORTS_DIR / "overlap_report.xlsx"
POWER_REPORT_FILE = REPORTS_DIR / "power_analysis.xlsx"

# ── Simulation parameters ──────────────────────────────────────────────────────
RANDOM_SEED = 42
N_DRAWS = 1000                  # Ensemble size when no power analysis is run
PILOT_DRAWS = 100               # Pilot ensemble for the power analysis
MAX_SHIFT_M = 1000.0            # Uniform jitter on each axis, metres
N_JOBS = 1                      # joblib workers (-1 = all cores)

# Equal-area CRS for buffer generation and area measurement (metres)
SITES_CRS = "EPSG:4326"
PROJECTED_CRS = "EPSG:6933"

# Segments per quarter circle when buffering points
BUFFER_RESOLUTION = 16

# ── Classification layer ───────────────────────────────────────────────────────
# Cell values treated as "not protected" and dropped like no-data
UNCLASSIFIED_VALUES = (0,)

# ── Statistics ─────────────────────────────────────────────────────────────────
CI_PERCENTILES = (2.5, 97.5)
M2_PER_KM2 = 1e6

# ── Power analysis ─────────────────────────────────────────────────────────────
EFFECT_FRACTION = 0.05          # Detectable effect as a fraction of the pilot mean
SIG_LEVEL = 0.05
TARGET_POWER = 0.95

# ── Visualization parameters ──────────────────────────────────────────────────
FIGURE_DPI = 300
FIGURE_FORMAT = ["png"]
FIGSIZE_STANDARD = (10, 6)
TOP_N_SITES = 25


def ensure_output_dirs(outputs_dir: Path = OUTPUTS_DIR) -> dict:
    """Create the output directory tree and return its paths by name."""
    outputs_dir = Path(outputs_dir)
    dirs = {
        "draws": outputs_dir / "draws",
        "reports": outputs_dir / "reports",
        "figures": outputs_dir / "figures",
    }
    for path in dirs.values():
        os.makedirs(path, exist_ok=True)
    return dirs
