"""Headless operator console: stdin commands drive the workflow."""

from __future__ import annotations

import asyncio
import sys
from typing import Optional, TextIO

from ..core.asyncio_utils import create_logged_task
from ..core.errors import KioskError
from ..core.logging_utils import get_module_logger
from ..remote.records import SubjectDirectory, SubjectInfo
from ..workflow.machine import WorkflowStateMachine
from ..workflow.state import CalibrationStatus, WorkflowSnapshot

logger = get_module_logger(__name__)

# Commands that may wait on the camera or the record store; they run in the
# background so cancel and quit stay responsive.
BACKGROUND_COMMANDS = frozenset({"start", "r", "t"})

HELP_TEXT = """\
Commands:
  start <id> [age gender] : Begin a session (looks the subject up when age/gender omitted)
  c + Enter               : Capture frame
  a + Enter               : Analyze captured frame
  r + Enter               : Retake
  s + Enter               : Save result
  k + Enter               : Calibrate
  t + Enter               : Retry camera
  x + Enter               : Cancel session
  q + Enter               : Quit (Ctrl+C also quits)"""


def format_snapshot(snapshot: WorkflowSnapshot) -> str:
    parts = [f"[{snapshot.state.name}]"]
    if snapshot.subject is not None:
        parts.append(f"subject={snapshot.subject.subject_id}")
    parts.append(f"camera={'ready' if snapshot.camera_ready else snapshot.device_phase.value}")
    if snapshot.calibration is not CalibrationStatus.IDLE:
        parts.append(f"calibration={snapshot.calibration.name.lower()}")
    if snapshot.result is not None:
        result = snapshot.result
        parts.append(
            f"height={result.height_cm:.1f}cm weight={result.weight_kg:.1f}kg "
            f"haz={result.haz_score:.2f} status={result.nutrition_status.value}"
        )
    if snapshot.status.text:
        marker = "✗" if snapshot.status.is_error else "·"
        parts.append(f"{marker} {snapshot.status.text}")
    return " ".join(parts)


class KioskConsole:
    def __init__(
        self,
        machine: WorkflowStateMachine,
        directory: Optional[SubjectDirectory] = None,
        *,
        console: Optional[TextIO] = None,
    ) -> None:
        self.machine = machine
        self.directory = directory
        self.console = console or sys.stdout
        self.shutdown_event = asyncio.Event()
        self._last_line = ""
        self._pending: set[asyncio.Task[bool]] = set()
        self._unsubscribe = machine.subscribe(self._on_snapshot)

    def _print(self, text: str) -> None:
        print(text, file=self.console)
        self.console.flush()

    def _on_snapshot(self, snapshot: WorkflowSnapshot) -> None:
        line = format_snapshot(snapshot)
        if line != self._last_line:
            self._last_line = line
            self._print(line)

    async def run(self) -> None:
        self._print(HELP_TEXT)

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)

        while not self.shutdown_event.is_set():
            try:
                line = await asyncio.wait_for(reader.readline(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            if not line:
                logger.info("stdin closed")
                break
            await self.dispatch(line.decode(errors="replace"))

        await self.shutdown()

    async def dispatch(self, line: str) -> Optional[bool]:
        """Run a command, spawning slow ones so the input loop keeps reading.

        Returns the command result, or None when it was moved to the background.
        """
        words = line.split()
        if words and words[0].lower() in BACKGROUND_COMMANDS:
            create_logged_task(
                self.handle_command(line),
                logger=logger,
                context=f"console-{words[0].lower()}",
                pending=self._pending,
            )
            return None
        return await self.handle_command(line)

    async def wait_for_commands(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def handle_command(self, line: str) -> bool:
        words = line.strip().split()
        if not words:
            return False
        command = words[0].lower()

        if command == "start":
            return await self._start(words[1:])

        machine = self.machine
        if command == "c":
            return await machine.capture()
        if command == "a":
            return await machine.analyze()
        if command == "r":
            return await machine.retake()
        if command == "s":
            return await machine.save()
        if command == "k":
            return await machine.calibrate()
        if command == "t":
            return await machine.retry_camera()
        if command == "x":
            return machine.cancel()
        if command == "q":
            logger.info("Quit command received")
            await self.shutdown()
            return True

        logger.warning("Unknown command: %s", command)
        self._print(f"✗ Unknown command '{command}'")
        return False

    async def _start(self, args: list[str]) -> bool:
        if not args:
            self._print("✗ Usage: start <id> [age gender]")
            return False

        subject_id = args[0]
        if len(args) >= 3:
            try:
                age = float(args[1])
            except ValueError:
                self._print(f"✗ Age must be a number, got '{args[1]}'")
                return False
            subject = SubjectInfo(subject_id=subject_id, age_years=age, gender=args[2].upper())
        elif self.directory is not None:
            try:
                subject = await self.directory.fetch_subject(subject_id)
            except KioskError as e:
                logger.error("Subject lookup failed for %s: %s", subject_id, e.message)
                self._print(f"✗ {e.message}")
                return False
        else:
            self._print("✗ No record store configured; use: start <id> <age> <gender>")
            return False

        return await self.machine.begin(subject)

    async def shutdown(self) -> None:
        if self.shutdown_event.is_set():
            return
        self.shutdown_event.set()
        self.machine.close()
        for task in list(self._pending):
            task.cancel()
        await self.wait_for_commands()
        await self.machine.wait_for_pending()
        self._unsubscribe()
        self._print("✓ Kiosk closed")


__all__ = ["KioskConsole", "format_snapshot", "HELP_TEXT"]
