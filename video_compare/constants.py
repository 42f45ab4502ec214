# Worker defaults
DEFAULT_FRAME_THREADS = 1
DEFAULT_INCREMENT = 1
DEFAULT_START_FRAME = 0

# Live progress smoothing: the display average weights the last N samples
RUNNING_AVERAGE_WINDOW = 10

# Summary statistics
LOW_PERCENTILE = 5
HIGH_PERCENTILE = 95

# Metric selection
DEFAULT_METRIC = "ssimulacra2"
METRIC_CHOICES = ["ssimulacra2", "ssim", "psnr"]

# External tools, overridable through the environment
SSIMULACRA2_BIN_ENV = "SSIMULACRA2_BIN"
FFMPEG_BIN_ENV = "FFMPEG_BIN"
FFPROBE_BIN_ENV = "FFPROBE_BIN"
VSPIPE_BIN_ENV = "VSPIPE_BIN"

# Input dispatch
STDIN_PATH = "-"
Y4M_EXTENSIONS = (".y4m",)
SCRIPT_EXTENSIONS = (".vpy",)
RAW_EXTENSIONS = (".yuv", ".raw")
DEFAULT_RAW_PIX_FMT = "yuv420p"

# Chart export
CHART_WIDTH = 1500
CHART_HEIGHT = 1000
CHART_DPI = 100
CHART_SERIES = "tab:cyan"
CHART_FILL_ALPHA = 0.5

# Reference white used when mapping PQ content into SDR range (cd/m^2)
PQ_REFERENCE_WHITE = 203.0
