"""Unit tests for the operator console command dispatch."""

import asyncio
import io
import threading

import pytest

from anthro_kiosk.app import KioskConsole, build_parser, format_snapshot
from anthro_kiosk.remote.records import SubjectInfo
from anthro_kiosk.capture import DevicePhase
from anthro_kiosk.workflow import WorkflowState


@pytest.fixture
def console(machine, directory):
    return KioskConsole(machine, directory, console=io.StringIO())


class TestCommands:

    @pytest.mark.asyncio
    async def test_start_looks_up_subject(self, console, machine, subject):
        assert await console.handle_command(f"start {subject.subject_id}\n")

        assert machine.snapshot().subject == subject
        assert machine.snapshot().camera_ready

    @pytest.mark.asyncio
    async def test_start_with_manual_details(self, machine):
        console = KioskConsole(machine, None, console=io.StringIO())

        assert await console.handle_command("start 77 3.5 p")

        assert machine.snapshot().subject == SubjectInfo("77", 3.5, "P")

    @pytest.mark.asyncio
    async def test_unknown_subject_is_reported(self, console, machine):
        assert not await console.handle_command("start 000")

        assert machine.snapshot().subject is None
        assert "No subject with id 000" in console.console.getvalue()

    @pytest.mark.asyncio
    async def test_capture_analyze_flow(self, console, machine, subject):
        await console.handle_command(f"start {subject.subject_id}")

        assert await console.handle_command("c")
        assert await console.handle_command("a")
        await machine.wait_for_pending()

        assert machine.state is WorkflowState.RESULTS
        assert "height=98.4cm" in console.console.getvalue()

    @pytest.mark.asyncio
    async def test_cancel_and_unknown(self, console, machine, subject):
        await console.handle_command(f"start {subject.subject_id}")

        assert await console.handle_command("x")
        assert not await console.handle_command("z")

        assert machine.snapshot().subject is None
        assert "Unknown command 'z'" in console.console.getvalue()

    @pytest.mark.asyncio
    async def test_quit_closes_machine(self, console, machine, subject):
        await console.handle_command(f"start {subject.subject_id}")

        assert await console.handle_command("q")

        assert console.shutdown_event.is_set()
        assert machine.state is WorkflowState.CLOSED


async def _wait_for_open(opener) -> None:
    for _ in range(200):
        if opener.calls:
            return
        await asyncio.sleep(0.005)


class TestDispatch:

    @pytest.mark.asyncio
    async def test_cancel_while_camera_is_opening(self, console, machine, subject, opener, device):
        opener.gate = threading.Event()

        assert await console.dispatch(f"start {subject.subject_id}") is None
        await _wait_for_open(opener)
        assert machine.snapshot().subject == subject

        assert await console.dispatch("x")
        assert machine.snapshot().subject is None

        opener.gate.set()
        await console.wait_for_commands()
        await machine.wait_for_pending()

        assert machine.state is WorkflowState.PREVIEW
        assert not machine.snapshot().camera_ready
        assert device.phase is DevicePhase.RELEASED
        assert opener.all_stopped

    @pytest.mark.asyncio
    async def test_quit_while_camera_is_opening(self, console, machine, subject, opener):
        opener.gate = threading.Event()

        await console.dispatch(f"start {subject.subject_id}")
        await _wait_for_open(opener)

        quit_task = asyncio.create_task(console.dispatch("q"))
        await asyncio.sleep(0.01)
        opener.gate.set()
        assert await quit_task

        assert console.shutdown_event.is_set()
        assert machine.state is WorkflowState.CLOSED
        for _ in range(200):
            if opener.streams and opener.all_stopped:
                break
            await asyncio.sleep(0.005)
        assert opener.streams[0].stopped

    @pytest.mark.asyncio
    async def test_fast_commands_run_inline(self, console, machine, subject):
        await console.handle_command(f"start {subject.subject_id}")

        assert await console.dispatch("c")
        assert machine.state is WorkflowState.CAPTURED

class TestFormatting:

    def test_format_snapshot(self, machine):
        line = format_snapshot(machine.snapshot())

        assert line.startswith("[PREVIEW]")
        assert "camera=uninitialized" in line


class TestParser:

    def test_overrides(self):
        args = build_parser().parse_args(["--camera", "2", "--analysis-url", "http://x:8000"])

        assert args.camera == 2
        assert args.analysis_url == "http://x:8000"
        assert args.records_url is None
        assert args.log_level == "info"
