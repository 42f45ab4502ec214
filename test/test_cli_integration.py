import os
import subprocess
import sys

import cv2
import numpy as np

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_cli(*args, stdin=None):
    cmd = [sys.executable, "-m", "video_compare.main"] + [str(a) for a in args]
    return subprocess.run(cmd, capture_output=True, text=True, cwd=REPO_ROOT, stdin=stdin)


def test_cli_help():
    """Test that the CLI prints help for both subcommands."""
    result = run_cli("--help")
    assert result.returncode == 0
    assert "usage:" in result.stdout
    assert "video" in result.stdout and "image" in result.stdout

    result = run_cli("video", "--help")
    assert result.returncode == 0
    assert "--frame-threads" in result.stdout
    assert "--src-matrix" in result.stdout


def test_cli_video_identical(make_y4m):
    """Test comparing a clip with itself."""
    src = make_y4m("src.y4m", 10)
    result = run_cli("video", src, src, "--metric", "ssim", "-f", "2")
    assert result.returncode == 0, result.stderr
    assert "Video Score for 10 frames" in result.stdout
    assert "Mean: 1.00000000" in result.stdout


def test_cli_video_increment_and_verbose(make_y4m):
    """Test per-frame output with an increment."""
    src = make_y4m("src.y4m", 10)
    result = run_cli("video", src, src, "--metric", "psnr", "-i", "3", "-v")
    assert result.returncode == 0, result.stderr
    assert "Video Score for 4 frames" in result.stdout
    for index in (0, 3, 6, 9):
        assert f"Frame {index}:" in result.stdout
    assert "Frame 1:" not in result.stdout


def test_cli_video_window(make_y4m):
    """Test start frame, frame count and increment together."""
    src = make_y4m("src.y4m", 20)
    result = run_cli("video", src, src, "--metric", "ssim", "--start-frame", "5",
                     "--frames", "3", "--increment", "2", "-v")
    assert result.returncode == 0, result.stderr
    assert "Video Score for 3 frames" in result.stdout
    for index in (5, 7, 9):
        assert f"Frame {index}:" in result.stdout


def test_cli_video_csv_and_graph(make_y4m, tmp_path):
    """Test CSV and chart export from the CLI."""
    src = make_y4m("src.y4m", 6)
    dst = make_y4m("dst.y4m", 6, extra=" XCOLORRANGE=FULL")
    csv_path = tmp_path / "scores.csv"
    graph_dir = tmp_path / "charts"
    result = run_cli("video", src, dst, "--metric", "ssim", "--csv", csv_path,
                     "-g", "--graph-dir", graph_dir)
    assert result.returncode == 0, result.stderr

    lines = csv_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "frame,score"
    assert len(lines) == 7
    charts = os.listdir(graph_dir)
    assert len(charts) == 1 and charts[0].startswith("ssim-video-")
    assert "Chart saved to" in result.stdout


def test_cli_frame_count_mismatch(make_y4m):
    """Test that a frame count mismatch warns and still scores."""
    src = make_y4m("src.y4m", 10)
    dst = make_y4m("dst.y4m", 8)
    result = run_cli("video", src, dst, "--metric", "ssim")
    assert result.returncode == 0, result.stderr
    assert "Video Score for 8 frames" in result.stdout
    assert "Frame count mismatch" in result.stderr


def test_cli_stdin_input(make_y4m):
    """Test reading the source clip from stdin."""
    src = make_y4m("src.y4m", 4)
    with open(src, "rb") as f:
        result = run_cli("video", "-", src, "--metric", "ssim", stdin=f)
    assert result.returncode == 0, result.stderr
    assert "Video Score for 4 frames" in result.stdout


def test_cli_raw_input(tmp_path, make_y4m):
    """Test raw YUV input with explicit geometry."""
    raw = tmp_path / "clip.yuv"
    raw.write_bytes(bytes([16] * 256 + [128] * 128) * 3)
    result = run_cli("video", raw, raw, "--width", "16", "--height", "16",
                     "--pix-fmt", "I420", "--metric", "psnr")
    assert result.returncode == 0, result.stderr
    assert "Video Score for 3 frames" in result.stdout


def test_cli_both_stdin_rejected():
    """Test that only one input may come from stdin."""
    result = run_cli("video", "-", "-", "--metric", "ssim")
    assert result.returncode == 1
    assert "Error:" in result.stderr


def test_cli_missing_input(tmp_path):
    """Test a missing input file."""
    result = run_cli("video", tmp_path / "missing.y4m", tmp_path / "missing.y4m", "--metric", "ssim")
    assert result.returncode == 1
    assert "not found" in result.stderr


def test_cli_start_frame_beyond_end(make_y4m):
    """Test a start frame past the end of the clip."""
    src = make_y4m("src.y4m", 5)
    result = run_cli("video", src, src, "--metric", "ssim", "--start-frame", "5")
    assert result.returncode == 1
    assert "Start frame" in result.stderr


def test_cli_invalid_increment(make_y4m):
    """Test that a zero increment is rejected."""
    src = make_y4m("src.y4m", 5)
    result = run_cli("video", src, src, "--metric", "ssim", "-i", "0")
    assert result.returncode == 1


def test_cli_bad_colorimetry_token(make_y4m):
    """Test that an unknown colorimetry name is a usage error."""
    src = make_y4m("src.y4m", 2)
    result = run_cli("video", src, src, "--src-matrix", "bogus")
    assert result.returncode == 2
    assert "usage:" in result.stderr


def test_cli_unsupported_colorimetry(make_y4m):
    """Test that an unsupported matrix is reported."""
    src = make_y4m("src.y4m", 2)
    result = run_cli("video", src, src, "--metric", "ssim", "--dst-matrix", "ictcp")
    assert result.returncode == 1
    assert "ICTCP" in result.stderr


def test_cli_image(tmp_path):
    """Test the image subcommand."""
    img = np.tile(np.arange(32, dtype=np.uint8)[np.newaxis, :, np.newaxis] * 8, (32, 1, 3))
    src = tmp_path / "src.png"
    dst = tmp_path / "dst.png"
    cv2.imwrite(str(src), img)
    cv2.imwrite(str(dst), 255 - img)

    result = run_cli("image", src, dst, "--metric", "psnr")
    assert result.returncode == 0, result.stderr
    assert result.stdout.startswith("Score: ")


def test_cli_missing_ssimulacra2(make_y4m, tmp_path):
    """Test the default metric without the ssimulacra2 tool installed."""
    src = make_y4m("src.y4m", 2)
    env = dict(os.environ, PATH=str(tmp_path))
    env.pop("SSIMULACRA2_BIN", None)
    cmd = [sys.executable, "-m", "video_compare.main", "video", str(src), str(src)]
    result = subprocess.run(cmd, capture_output=True, text=True, cwd=REPO_ROOT, env=env)
    assert result.returncode == 1
    assert "ssimulacra2" in result.stderr
