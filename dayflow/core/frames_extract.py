"""
Frame sampling from recorded chunks using ffmpeg.
"""

import logging
import subprocess
from pathlib import Path

from dayflow.core.security_utils import run_subprocess_capture
from dayflow.core.error_codes import ProviderError
from dayflow.core.constants import ErrorCode, FRAME_SAMPLE_COUNT

logger = logging.getLogger(__name__)


def sample_timestamps(duration_sec: float, count: int = FRAME_SAMPLE_COUNT) -> list[float]:
    """
    Evenly spaced sample points, each in the middle of its slice,
    so the first and last frames never sit on a container boundary.
    """
    if count <= 0 or duration_sec <= 0:
        return []
    step = duration_sec / count
    return [step * (i + 0.5) for i in range(count)]


def get_video_duration(video_path: Path) -> float:
    """Get video duration in seconds using ffprobe."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(video_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=30)
        if result.returncode == 0:
            return float(result.stdout.strip())
    except (OSError, ValueError, subprocess.TimeoutExpired) as e:
        logger.warning("ffprobe failed for %s: %s", video_path, e)

    return 0.0


def extract_frames(video_path: Path, output_dir: Path, duration_sec: float,
                   count: int = FRAME_SAMPLE_COUNT) -> list[Path]:
    """
    Extract `count` JPEG frames spread evenly over the video.
    Returns frame paths in playback order.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    # Trust the container over the nominal window when they disagree
    probed = get_video_duration(video_path)
    if probed > 0:
        duration_sec = min(duration_sec, probed) if duration_sec > 0 else probed

    timestamps = sample_timestamps(duration_sec, count)
    if not timestamps:
        raise ProviderError(f"Cannot sample frames from {video_path.name}: empty duration",
                            code=ErrorCode.FRAME_EXTRACTION)

    frames = []
    for idx, ts in enumerate(timestamps):
        frame_path = output_dir / f"frame_{idx:03d}.jpg"
        args = [
            "ffmpeg",
            "-y",
            "-ss", f"{ts:.3f}",
            "-i", str(video_path),
            "-frames:v", "1",
            "-q:v", "3",
            str(frame_path),
        ]

        try:
            result = run_subprocess_capture(args, timeout=60)
        except Exception as e:
            raise ProviderError(f"Frame {idx} extraction failed: {e}",
                                code=ErrorCode.FRAME_EXTRACTION)

        if result.returncode != 0 or not frame_path.exists():
            stderr = result.stderr[:200] if result.stderr else "unknown error"
            raise ProviderError(f"ffmpeg frame {idx} failed: {stderr}",
                                code=ErrorCode.FRAME_EXTRACTION)

        frames.append(frame_path)

    logger.info("Extracted %d frames from %s", len(frames), video_path.name)
    return frames
