from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from reel_build.assembler.ffmpeg_runner import FfmpegEncoder
from reel_build.capture.browser import PlaywrightRenderer
from reel_build.common.errors import PipelineError
from reel_build.common.logging import configure_logging
from reel_build.common.types import BuildConfig, RunFlags
from reel_build.config.defaults import DEFAULT_ENCODE, DEFAULT_RUNTIME
from reel_build.pipeline_runner import run_build

ENV_PREFIX = "REEL_BUILD_"


class ConfigFileError(RuntimeError):
    pass


def _coerce_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "y", "on"}:
            return True
        if raw in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


def _load_json_config(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ConfigFileError(f"CONFIG_FILE_NOT_FOUND: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigFileError(f"CONFIG_FILE_INVALID: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigFileError("CONFIG_FILE_INVALID: root must be a JSON object")
    return payload


def _resolve_value(cli_value: Any, env_name: str, config: dict[str, Any], config_key: str, default: Any) -> Any:
    if cli_value is not None:
        return cli_value
    env_value = os.getenv(env_name)
    if env_value is not None:
        return env_value
    if config_key in config:
        return config[config_key]
    return default


def _split_keys(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        items = [str(x) for x in value]
    else:
        items = str(value).split(",")
    return tuple(item.strip() for item in items if item.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reel-build",
        description="Render the animation into per-format frames, silent/final MP4s and stills",
    )
    parser.add_argument("--config", default=None, help="Optional JSON config file")
    parser.add_argument("--formats", default=None, help="Comma-separated format keys (default: all)")
    parser.add_argument("--clean", action="store_true", default=None, help="Delete prior outputs before running")
    parser.add_argument("--force", action="store_true", default=None, help="Rebuild every stage even if outputs exist")
    parser.add_argument("--skip-render", action="store_true", help="Do not capture frames")
    parser.add_argument("--skip-encode", action="store_true", help="Do not encode silent videos")
    parser.add_argument("--skip-mux", action="store_true", help="Do not mux audio")
    parser.add_argument("--skip-still", action="store_true", help="Do not capture still images")
    parser.add_argument(
        "--retain-frames",
        "--keep-frames",
        dest="retain_frames",
        action="store_true",
        default=None,
        help=(
            "Keep frame directories after a successful run. Without it frames are deleted, "
            "so the next run re-renders every format unless --skip-render is given"
        ),
    )
    parser.add_argument("--crf", type=int, default=None, help="x264 CRF passed to the encoder")
    parser.add_argument("--audio-bitrate", default=None, help="AAC bitrate for the mux step (ex: 192k)")
    parser.add_argument("--output-root", default=None, help="Root holding dist/ and tmp/")
    parser.add_argument("--page", default=None, help="Animation HTML page")
    parser.add_argument("--audio", default=None, help="Audio track muxed into the final videos")
    parser.add_argument("--basename", default=None, help="Output file name prefix")
    parser.add_argument("--dry-run", action="store_true", help="Print the build plan and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, ...)")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_flags_from_args(args: argparse.Namespace, file_config: dict[str, Any]) -> RunFlags:
    keys = _split_keys(_resolve_value(args.formats, f"{ENV_PREFIX}FORMATS", file_config, "formats", None))
    return RunFlags(
        selected_format_keys=keys,
        clean=_coerce_bool(_resolve_value(args.clean, f"{ENV_PREFIX}CLEAN", file_config, "clean", False)),
        force=_coerce_bool(_resolve_value(args.force, f"{ENV_PREFIX}FORCE", file_config, "force", False)),
        skip_render=bool(args.skip_render) or _coerce_bool(file_config.get("skip_render")),
        skip_encode=bool(args.skip_encode) or _coerce_bool(file_config.get("skip_encode")),
        skip_mux=bool(args.skip_mux) or _coerce_bool(file_config.get("skip_mux")),
        skip_still=bool(args.skip_still) or _coerce_bool(file_config.get("skip_still")),
        retain_frames=_coerce_bool(
            _resolve_value(args.retain_frames, f"{ENV_PREFIX}RETAIN_FRAMES", file_config, "retain_frames", False)
        ),
        crf=int(_resolve_value(args.crf, f"{ENV_PREFIX}CRF", file_config, "crf", DEFAULT_ENCODE["crf"])),
        audio_bitrate=str(
            _resolve_value(
                args.audio_bitrate,
                f"{ENV_PREFIX}AUDIO_BITRATE",
                file_config,
                "audio_bitrate",
                DEFAULT_ENCODE["audio_bitrate"],
            )
        ),
    )


def build_config_from_args(
    args: argparse.Namespace,
    file_config: dict[str, Any],
    invocation: Sequence[str] = (),
) -> BuildConfig:
    return BuildConfig(
        output_root=str(
            _resolve_value(args.output_root, f"{ENV_PREFIX}OUTPUT_ROOT", file_config, "output_root", DEFAULT_RUNTIME["output_root"])
        ),
        page_path=str(_resolve_value(args.page, f"{ENV_PREFIX}PAGE", file_config, "page_path", DEFAULT_RUNTIME["page_path"])),
        audio_path=str(_resolve_value(args.audio, f"{ENV_PREFIX}AUDIO", file_config, "audio_path", DEFAULT_RUNTIME["audio_path"])),
        basename=str(_resolve_value(args.basename, f"{ENV_PREFIX}BASENAME", file_config, "basename", DEFAULT_RUNTIME["basename"])),
        invocation=tuple(invocation),
        dry_run=bool(args.dry_run),
    )


def main(argv: Sequence[str] | None = None) -> int:
    raw_argv = list(sys.argv[1:] if argv is None else argv)
    args = parse_args(raw_argv)
    try:
        file_config = _load_json_config(args.config)
        flags = build_flags_from_args(args, file_config)
        config = build_config_from_args(args, file_config, invocation=["reel-build", *raw_argv])
    except (ConfigFileError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 2

    configure_logging(_resolve_value(args.log_level, f"{ENV_PREFIX}LOG_LEVEL", file_config, "log_level", DEFAULT_RUNTIME["log_level"]))

    renderer = PlaywrightRenderer(page_path=config.page_path)
    encoder = FfmpegEncoder()
    try:
        summary = run_build(flags, config, renderer, encoder)
    except PipelineError as exc:
        print(f"Build failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
