from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from reel_build.common.errors import (
    CapabilityError,
    ConfigurationError,
    DependencyError,
    PipelineError,
    PreconditionError,
)
from reel_build.common.types import RunFlags
from reel_build.pipeline_runner import run_build
from tests.fakes import BuildWorkspace, FakeEncoder, FakeRenderer, small_registry


class BuildFailureTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.ws = BuildWorkspace(Path(tmp.name))
        self.registry = small_registry()

    def _run(self, flags: RunFlags, renderer=None, encoder=None, **config):
        return run_build(
            flags,
            self.ws.config(**config),
            renderer or FakeRenderer(),
            encoder or FakeEncoder(),
            registry=self.registry,
        )

    def test_unknown_format_touches_nothing(self) -> None:
        renderer, encoder = FakeRenderer(), FakeEncoder()
        with self.assertRaises(ConfigurationError) as ctx:
            self._run(RunFlags(selected_format_keys=("A", "Z"), clean=True), renderer, encoder)
        self.assertEqual(ctx.exception.code, "FORMAT_UNKNOWN")
        self.assertIn("Valid options: A, B", str(ctx.exception))
        self.assertFalse(self.ws.root.exists())
        self.assertEqual((renderer.acquired, encoder.availability_checks), (0, 0))

    def test_skip_render_without_frames_names_the_remedy(self) -> None:
        renderer = FakeRenderer()
        with self.assertRaises(DependencyError) as ctx:
            self._run(RunFlags(skip_render=True), renderer)
        err = ctx.exception
        self.assertEqual(err.code, "FRAMES_MISSING")
        self.assertEqual(err.stage, "encode")
        self.assertEqual(err.format_key, "A")
        self.assertIn("--skip-render", err.message)
        self.assertEqual((renderer.acquired, renderer.released), (1, 1))
        self.assertFalse(self.ws.paths.silent_video("A").exists())
        self.assertFalse(self.ws.paths.manifest_path.exists())

    def test_renderer_released_when_later_format_fails(self) -> None:
        renderer = FakeRenderer(fail_on={("render", "B")})
        with self.assertRaises(CapabilityError) as ctx:
            self._run(RunFlags(), renderer)
        self.assertEqual(ctx.exception.code, "RENDER_FAILED")
        self.assertEqual(ctx.exception.stage, "render")
        self.assertEqual(ctx.exception.format_key, "B")
        self.assertEqual((renderer.acquired, renderer.released), (1, 1))

        # A finished; its intermediates survive because the run failed.
        self.assertTrue(self.ws.paths.final_video("A").exists())
        self.assertTrue(self.ws.paths.first_frame("A").exists())
        self.assertFalse(self.ws.paths.manifest_path.exists())

    def test_resume_after_failure_only_redoes_missing_work(self) -> None:
        with self.assertRaises(CapabilityError):
            self._run(RunFlags(), FakeRenderer(fail_on={("still", "B")}))
        renderer, encoder = FakeRenderer(), FakeEncoder()
        self._run(RunFlags(), renderer, encoder)
        self.assertEqual(renderer.calls, [("still", "B")])
        self.assertEqual(encoder.calls, [])
        self.assertTrue(self.ws.paths.manifest_path.exists())

    def test_interrupted_render_is_redone_on_next_run(self) -> None:
        with self.assertRaises(CapabilityError) as ctx:
            self._run(RunFlags(), FakeRenderer(fail_on={("render", "A")}))
        self.assertEqual(ctx.exception.code, "RENDER_FAILED")
        self.assertFalse(self.ws.paths.first_frame("A").exists())

        renderer, encoder = FakeRenderer(), FakeEncoder()
        summary = self._run(RunFlags(), renderer, encoder)
        self.assertIn(("render", "A"), renderer.calls)
        self.assertEqual(summary.for_format("A").executed_stages(), ["render", "encode", "mux", "still"])

    def test_interrupted_encode_is_not_trusted_on_next_run(self) -> None:
        with self.assertRaises(CapabilityError):
            self._run(RunFlags(), encoder=FakeEncoder(fail_on={("encode", "A")}))
        self.assertFalse(self.ws.paths.silent_video("A").exists())

        encoder = FakeEncoder()
        self._run(RunFlags(), encoder=encoder)
        self.assertEqual(encoder.calls, [("encode", "A"), ("mux", "A"), ("encode", "B"), ("mux", "B")])
        self.assertEqual(self.ws.paths.final_video("A").read_bytes(), b"silent:A+audio")

    def test_interrupted_mux_leaves_no_final_video(self) -> None:
        with self.assertRaises(CapabilityError) as ctx:
            self._run(RunFlags(), encoder=FakeEncoder(fail_on={("mux", "A")}))
        self.assertEqual(ctx.exception.code, "MUX_FAILED")
        self.assertTrue(self.ws.paths.silent_video("A").exists())
        self.assertFalse(self.ws.paths.final_video("A").exists())

        encoder = FakeEncoder()
        self._run(RunFlags(), encoder=encoder)
        self.assertEqual(encoder.calls_for("A"), ["mux"])

    def test_clean_keeps_outputs_when_audio_missing(self) -> None:
        self._run(RunFlags())
        final = self.ws.paths.final_video("A")
        with self.assertRaises(PreconditionError) as ctx:
            self._run(RunFlags(clean=True), audio_path=str(self.ws.root / "nope.wav"))
        self.assertEqual(ctx.exception.code, "AUDIO_MISSING")
        self.assertTrue(final.exists())
        self.assertTrue(self.ws.paths.still_image("B").exists())

    def test_clean_keeps_outputs_when_encoder_unavailable(self) -> None:
        self._run(RunFlags())
        with self.assertRaises(PreconditionError) as ctx:
            self._run(RunFlags(clean=True), encoder=FakeEncoder(available=False))
        self.assertEqual(ctx.exception.code, "ENCODER_UNAVAILABLE")
        self.assertTrue(self.ws.paths.silent_video("A").exists())

    def test_failed_run_keeps_previous_manifest(self) -> None:
        self._run(RunFlags())
        before = self.ws.paths.manifest_path.read_bytes()
        with self.assertRaises(CapabilityError) as ctx:
            self._run(RunFlags(force=True), encoder=FakeEncoder(fail_on={("encode", "A")}))
        self.assertEqual(ctx.exception.code, "ENCODE_FAILED")
        self.assertEqual(self.ws.paths.manifest_path.read_bytes(), before)

    def test_missing_silent_video_aborts_before_other_formats(self) -> None:
        self._run(RunFlags())
        paths = self.ws.paths
        manifest_before = paths.manifest_path.read_bytes()
        paths.silent_video("A").unlink()
        paths.final_video("A").unlink()
        untouched = [paths.silent_video("B"), paths.final_video("B"), paths.still_image("B")]
        mtimes = [p.stat().st_mtime_ns for p in untouched]

        renderer, encoder = FakeRenderer(), FakeEncoder()
        with self.assertRaises(DependencyError) as ctx:
            self._run(RunFlags(skip_render=True, skip_encode=True), renderer, encoder)
        err = ctx.exception
        self.assertEqual(err.code, "SILENT_VIDEO_MISSING")
        self.assertEqual(err.stage, "mux")
        self.assertEqual(err.format_key, "A")
        self.assertIn("--skip-encode", err.message)

        self.assertEqual(encoder.calls, [])
        self.assertEqual(renderer.calls, [])
        self.assertEqual([p.stat().st_mtime_ns for p in untouched], mtimes)
        self.assertEqual(paths.manifest_path.read_bytes(), manifest_before)

    def test_encoder_unavailable_fails_before_any_work(self) -> None:
        renderer = FakeRenderer()
        with self.assertRaises(PreconditionError) as ctx:
            self._run(RunFlags(), renderer, FakeEncoder(available=False))
        self.assertEqual(ctx.exception.code, "ENCODER_UNAVAILABLE")
        self.assertEqual(renderer.acquired, 0)
        self.assertFalse(self.ws.paths.dist_dir.exists())

    def test_audio_missing_when_mux_needed(self) -> None:
        with self.assertRaises(PreconditionError) as ctx:
            self._run(RunFlags(), audio_path=str(self.ws.root / "nope.wav"))
        self.assertEqual(ctx.exception.code, "AUDIO_MISSING")

    def test_renderer_unavailable(self) -> None:
        with self.assertRaises(PreconditionError) as ctx:
            self._run(RunFlags(), FakeRenderer(fail_acquire=True))
        self.assertEqual(ctx.exception.code, "RENDERER_UNAVAILABLE")

    def test_unexpected_errors_are_wrapped(self) -> None:
        class BrokenEncoder(FakeEncoder):
            def encode_video(self, fmt, frames_dir, out_path, crf):
                raise ZeroDivisionError("bad math")

        with self.assertRaises(PipelineError) as ctx:
            self._run(RunFlags(), encoder=BrokenEncoder())
        self.assertEqual(ctx.exception.code, "PIPELINE_UNEXPECTED")
        self.assertIsInstance(ctx.exception.__cause__, ZeroDivisionError)


if __name__ == "__main__":
    unittest.main()
