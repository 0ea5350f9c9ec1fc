"""Entry point: ``python -m anthro_kiosk``."""

from __future__ import annotations

import asyncio
import contextlib
import sys

from .app import KioskConsole, build_parser, install_signal_handlers
from .capture import CameraConstraints, Calibrator, CapturePipeline, DeviceSession, OpenCVStream
from .core import KioskConfig, configure_logging, get_module_logger
from .remote import AnalysisClient, RestRecordStore
from .workflow import WorkflowStateMachine

logger = get_module_logger("main")


async def run(config: KioskConfig) -> None:
    analysis = AnalysisClient(
        config.analysis_url,
        capture_path=config.capture_path,
        calibrate_path=config.calibrate_path,
    )
    records = None
    if config.records_enabled:
        records = RestRecordStore(
            config.records_url,
            config.records_api_key,
            subjects_table=config.subjects_table,
            results_table=config.results_table,
            image_bucket=config.image_bucket,
        )
    else:
        logger.warning("records_url not set - subject lookup and saving disabled")

    pipeline = CapturePipeline(analysis, jpeg_quality=config.jpeg_quality)
    machine = WorkflowStateMachine(
        DeviceSession(OpenCVStream.open),
        pipeline,
        Calibrator(pipeline, timeout_s=config.calibration_timeout_s),
        store=records,
        constraints=CameraConstraints(
            device=config.camera_index,
            width=config.camera_width,
            height=config.camera_height,
            fps=config.camera_fps,
        ),
        analysis_timeout_s=config.analysis_timeout_s,
        calibration_display_s=config.calibration_display_s,
        first_frame_timeout_s=config.first_frame_timeout_s,
    )
    console = KioskConsole(machine, records)
    install_signal_handlers(console, asyncio.get_running_loop())

    try:
        await console.run()
    finally:
        await console.shutdown()
        await analysis.close()
        if records is not None:
            await records.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, log_file=args.log_file)

    config = KioskConfig.load(args.config, args)
    logger.info(
        "Starting kiosk (camera %s, analysis %s%s)",
        config.camera_index, config.analysis_url, config.capture_path,
    )

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())
