"""Command line host for the processing engine.

    resizesuite batch photo1.jpg photo2.png --percentage 50 -o out.zip
    resizesuite presets

Steps run in a fixed order: rotate, crop, resize, filter, then encode.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from resizesuite.batch.archive import validate_for_archive, write_archive
from resizesuite.batch.models import BatchJob
from resizesuite.batch.orchestrator import BatchOrchestrator
from resizesuite.config import Settings, get_settings
from resizesuite.crop.shapes import CropShape
from resizesuite.errors import ProcessingError
from resizesuite.filters.config import FILTER_PRESETS
from resizesuite.imaging.raster import ImageFormat
from resizesuite.ml.detector import build_detector
from resizesuite.pipeline.operations import (
    CropStep,
    FilterStep,
    OutputStep,
    PipelineConfig,
    ResizeStep,
    RotateStep,
)
from resizesuite.pipeline.processor import ImagePipeline
from resizesuite.validation import FileValidator, SourceFile

if TYPE_CHECKING:
    from collections.abc import Sequence

    from resizesuite.batch.models import BatchSummary
    from resizesuite.pipeline.operations import Step

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="resizesuite", description="Batch image processing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    batch = commands.add_parser("batch", help="Process files and write a zip archive")
    batch.add_argument("inputs", nargs="+", type=Path, help="Image files to process")
    batch.add_argument("-o", "--output", type=Path, default=Path("processed-images.zip"), help="Archive path")

    geometry = batch.add_argument_group("geometry")
    geometry.add_argument("--percentage", type=float, help="Scale both sides by this percentage")
    geometry.add_argument("--width", type=float, help="Target width in pixels")
    geometry.add_argument("--height", type=float, help="Target height in pixels")
    geometry.add_argument("--no-aspect", action="store_true", help="Do not preserve the aspect ratio")
    geometry.add_argument("--rotate", type=float, default=0.0, help="Rotation angle in degrees")
    geometry.add_argument("--flip-horizontal", action="store_true")
    geometry.add_argument("--flip-vertical", action="store_true")

    crop = batch.add_argument_group("crop")
    crop.add_argument("--smart-crop", action="store_true", help="Crop around detected subjects")
    crop.add_argument("--crop-ratio", help="Target aspect ratio, e.g. 1:1, 16:9, golden")
    crop.add_argument("--crop-shape", choices=[s.value for s in CropShape], default=CropShape.RECTANGLE.value)

    filters = batch.add_argument_group("filters")
    filters.add_argument("--filter", dest="preset", help="Filter preset id (see 'resizesuite presets')")
    filters.add_argument("--intensity", type=float, default=100.0, help="Filter intensity 0-100")
    filters.add_argument("--seed", type=int, help="Seed for filters with random texture")

    output = batch.add_argument_group("output")
    output.add_argument("--format", choices=[f.value for f in ImageFormat], help="Output format")
    output.add_argument("--quality", type=float, help="Lossy quality 0.1-1.0")
    output.add_argument("--flatten", action="store_true", help="Drop transparency onto white")
    output.add_argument("--include-originals", action="store_true", help="Store source files under originals/")
    output.add_argument("--concurrency", type=int, help="Files processed at once (1-4)")

    commands.add_parser("presets", help="List filter presets")
    return parser


def build_config(args: argparse.Namespace) -> PipelineConfig:
    steps: list[Step] = []
    if args.rotate or args.flip_horizontal or args.flip_vertical:
        steps.append(
            RotateStep(angle=args.rotate, flip_horizontal=args.flip_horizontal, flip_vertical=args.flip_vertical)
        )
    if args.smart_crop or args.crop_ratio:
        steps.append(CropStep(aspect_ratio=args.crop_ratio, shape=args.crop_shape))
    if args.percentage is not None or args.width is not None or args.height is not None:
        steps.append(
            ResizeStep(
                width=args.width,
                height=args.height,
                percentage=args.percentage,
                maintain_aspect_ratio=not args.no_aspect,
            )
        )
    if args.preset:
        steps.append(FilterStep(preset=args.preset, intensity=args.intensity))
    output = OutputStep(format=args.format, quality=args.quality, preserve_transparency=not args.flatten)
    return PipelineConfig(steps=steps, output=output)


def _read_sources(paths: Sequence[Path]) -> list[SourceFile]:
    sources: list[SourceFile] = []
    for path in paths:
        try:
            sources.append(SourceFile(name=path.name, data=path.read_bytes()))
        except OSError as exc:
            logger.error("Cannot read %s: %s", path, exc)
    return sources


def _log_progress(percent: float, message: str) -> None:
    logger.info("[%5.1f%%] %s", percent, message)


def _log_summary(summary: BatchSummary) -> None:
    logger.info(
        "Completed %d/%d files (%d failed, %d cancelled) in %.2fs",
        summary.done,
        summary.total,
        summary.failed,
        summary.cancelled,
        summary.elapsed_seconds,
    )


def run_batch(args: argparse.Namespace, settings: Settings) -> int:
    try:
        config = build_config(args)
    except ValidationError as exc:
        logger.error("Invalid options: %s", exc)
        return EXIT_USAGE

    report = FileValidator(settings).validate_files(_read_sources(args.inputs))
    for error in report.errors:
        logger.warning(error)
    if not report.valid_files:
        logger.error("No valid input files")
        return EXIT_USAGE

    pipeline = ImagePipeline(settings, build_detector(settings), seed=args.seed)
    orchestrator = BatchOrchestrator(pipeline, settings, progress=_log_progress, on_complete=_log_summary)
    job = BatchJob.from_sources(report.valid_files)
    try:
        asyncio.run(orchestrator.run(job, config))
    finally:
        orchestrator.shutdown()

    for item in job.failed():
        logger.warning("%s failed: %s", item.name, item.error)

    problems = validate_for_archive(job, settings, args.include_originals)
    if problems:
        for problem in problems:
            logger.error(problem)
        return EXIT_PARTIAL
    try:
        write_archive(
            args.output,
            job,
            settings,
            include_originals=args.include_originals,
            tool_settings=config.model_dump(mode="json"),
        )
    except (ProcessingError, OSError) as exc:
        logger.error("Could not build archive: %s", exc)
        return EXIT_PARTIAL
    logger.info("Wrote %s", args.output)
    return EXIT_OK if not job.failed() and not report.errors else EXIT_PARTIAL


def list_presets() -> int:
    for preset in FILTER_PRESETS:
        print(f"{preset.id:<14} {preset.category.value:<10} {preset.name}")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if args.command == "presets":
        return list_presets()

    overrides = {} if args.concurrency is None else {"max_concurrent": args.concurrency}
    try:
        settings = Settings(**overrides) if overrides else get_settings()
    except ValidationError as exc:
        logger.error("Invalid settings: %s", exc)
        return EXIT_USAGE
    return run_batch(args, settings)


if __name__ == "__main__":
    sys.exit(main())
