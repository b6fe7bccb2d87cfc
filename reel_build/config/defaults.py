"""Default configuration for the reel build pipeline."""

DEFAULT_RUNTIME = {
    "output_root": ".",
    "page_path": "index.html",
    "audio_path": "assets/audio.mp3",
    "basename": "festival",
    "log_level": "INFO",
}

DEFAULT_CAPTURE = {
    "browser": "chromium",
    "device_scale_factor": 1,
    "navigation_timeout_ms": 30000,
    "show_progress": True,
}

DEFAULT_ENCODE = {
    "binary": "ffmpeg",
    "video_codec": "libx264",
    "profile": "high",
    "pix_fmt": "yuv420p",
    "crf": 18,
    "audio_codec": "aac",
    "audio_bitrate": "192k",
    "stderr_tail_chars": 1200,
}
