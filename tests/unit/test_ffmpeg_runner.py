from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path

from reel_build.assembler.ffmpeg_runner import EncodeError, FfmpegEncoder, staging_path
from reel_build.formats.registry import FormatDescriptor


class FfmpegRunnerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fmt = FormatDescriptor(key="1x1", width=1080, height=1080, fps=60, duration=10.0)

    def test_encode_command(self) -> None:
        cmd = FfmpegEncoder().build_encode_command(self.fmt, Path("tmp/1x1/frames"), Path("dist/1x1/out.mp4"), 20)
        self.assertEqual(
            cmd,
            [
                "ffmpeg", "-y", "-framerate", "60", "-i", "tmp/1x1/frames/%06d.png",
                "-c:v", "libx264", "-profile:v", "high", "-pix_fmt", "yuv420p",
                "-movflags", "+faststart", "-crf", "20", "dist/1x1/out.mp4",
            ],
        )

    def test_mux_command(self) -> None:
        cmd = FfmpegEncoder().build_mux_command(Path("s.mp4"), Path("a.mp3"), Path("f.mp4"), "128k")
        self.assertEqual(cmd[:6], ["ffmpeg", "-y", "-i", "s.mp4", "-i", "a.mp3"])
        self.assertIn("-shortest", cmd)
        self.assertEqual(cmd[cmd.index("-c:v") + 1], "copy")
        self.assertEqual(cmd[cmd.index("-b:a") + 1], "128k")
        self.assertEqual(cmd[-1], "f.mp4")

    def test_missing_binary_is_unavailable(self) -> None:
        encoder = FfmpegEncoder(binary="ffmpeg-binary-that-does-not-exist")
        with self.assertRaises(EncodeError) as ctx:
            encoder.check_available()
        self.assertIn("not found on PATH", str(ctx.exception))

    def test_mux_requires_inputs(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            with self.assertRaises(EncodeError):
                FfmpegEncoder().mux_audio(root / "silent.mp4", root / "a.mp3", root / "out.mp4", "192k")
            self.assertFalse((root / "out.mp4").exists())

    def _fake_binary(self, root: Path, exit_code: int) -> str:
        # Writes to the last argument (the output path) and exits with exit_code.
        script = root / f"fake-ffmpeg-{exit_code}"
        script.write_text(
            "#!/bin/sh\nfor last; do :; done\nprintf partial > \"$last\"\necho boom >&2\nexit %d\n" % exit_code,
            encoding="utf-8",
        )
        script.chmod(0o755)
        return str(script)

    @unittest.skipUnless(os.name == "posix", "needs a POSIX shell")
    def test_failed_encode_leaves_no_output(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            out_path = root / "dist" / "1x1" / "out.mp4"
            encoder = FfmpegEncoder(binary=self._fake_binary(root, 1))
            with self.assertRaises(EncodeError) as ctx:
                encoder.encode_video(self.fmt, root / "frames", out_path, 18)
            self.assertIn("FFMPEG_ENCODE_FAILED (1): boom", str(ctx.exception))
            self.assertFalse(out_path.exists())
            self.assertFalse(staging_path(out_path).exists())

    @unittest.skipUnless(os.name == "posix", "needs a POSIX shell")
    def test_successful_encode_moves_output_into_place(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            out_path = root / "dist" / "1x1" / "out.mp4"
            FfmpegEncoder(binary=self._fake_binary(root, 0)).encode_video(self.fmt, root / "frames", out_path, 18)
            self.assertEqual(out_path.read_bytes(), b"partial")
            self.assertFalse(staging_path(out_path).exists())

    def test_staging_path_keeps_container_suffix(self) -> None:
        self.assertEqual(staging_path(Path("dist/A/festival_A.mp4")), Path("dist/A/festival_A.partial.mp4"))


if __name__ == "__main__":
    unittest.main()
