import asyncio
import shutil
import sys

import pytest

from core.errors import TransportError
from transport import process as process_module
from transport.process import ProcessTransport, wrap_in_terminal

ECHO = "import sys\nfor l in sys.stdin:\n    sys.stdout.write(l)\n    sys.stdout.flush()\n"
SLEEP = "import time\ntime.sleep(30)\n"
READY_ECHO = "import sys\nprint(\"ready\", flush=True)\n" + ECHO

needs_script = pytest.mark.skipif(shutil.which("script") is None, reason="script(1) not installed")


@pytest.mark.asyncio
async def test_launch_write_and_exit_code():
    chunks = []
    exits = []
    transport = ProcessTransport(pty_wrapper=False)
    handle = await transport.launch(
        sys.executable, ["-c", ECHO],
        on_stdout=chunks.append,
        on_exit=exits.append
    )

    await handle.write(b"hello\n")
    handle.process.stdin.close()

    assert await asyncio.wait_for(handle.wait(), timeout=10) == 0
    assert b"".join(chunks) == b"hello\n"
    assert exits == [0]
    assert not transport.is_alive()


@pytest.mark.asyncio
async def test_environment_overrides_and_non_interactive_terminal(tmp_path):
    chunks = []
    transport = ProcessTransport(pty_wrapper=False)
    script = "import os\nprint(os.environ['TERM'], os.environ['NO_COLOR'], os.environ['AGENT_X'], os.getcwd())"
    handle = await transport.launch(
        sys.executable, ["-c", script],
        working_directory=str(tmp_path),
        env_overrides={"AGENT_X": "42"},
        on_stdout=chunks.append
    )
    await asyncio.wait_for(handle.wait(), timeout=10)

    term, no_color, agent_x, cwd = b"".join(chunks).decode().split()
    assert (term, no_color, agent_x) == ("dumb", "1", "42")
    assert cwd == str(tmp_path.resolve())


@pytest.mark.asyncio
async def test_stderr_is_captured():
    transport = ProcessTransport(pty_wrapper=False)
    handle = await transport.launch(sys.executable, ["-c", "import sys; sys.stderr.write('boom'); sys.exit(4)"])

    assert await asyncio.wait_for(handle.wait(), timeout=10) == 4
    assert handle.stderr_text == "boom"


@pytest.mark.asyncio
async def test_terminate_is_idempotent_and_reports_none():
    exits = []
    transport = ProcessTransport(pty_wrapper=False, terminate_timeout=2)
    handle = await transport.launch(sys.executable, ["-c", SLEEP], on_exit=exits.append)

    await transport.terminate()
    await transport.terminate()
    await handle.terminate()

    assert exits == [None]
    assert handle.exit_code is None
    assert not handle.is_alive()


@pytest.mark.asyncio
async def test_terminate_before_launch_is_noop():
    await ProcessTransport().terminate()


@pytest.mark.asyncio
async def test_spawn_failure_raises_transport_error():
    transport = ProcessTransport(pty_wrapper=False)
    with pytest.raises(TransportError):
        await transport.launch("/nonexistent/agent-cli", [])


@pytest.mark.asyncio
async def test_write_after_exit_raises():
    transport = ProcessTransport(pty_wrapper=False)
    handle = await transport.launch(sys.executable, ["-c", "pass"])
    await asyncio.wait_for(handle.wait(), timeout=10)

    with pytest.raises(TransportError):
        await handle.write(b"{}\n")


def test_wrap_in_terminal_linux(monkeypatch):
    monkeypatch.setattr(process_module.shutil, "which", lambda name: "/usr/bin/script")
    monkeypatch.setattr(process_module.sys, "platform", "linux")

    assert wrap_in_terminal(["opencode", "run", "two words"]) == [
        "/usr/bin/script", "-q", "-f", "-e", "-c",
        "/bin/sh -c 'stty raw -echo 2>/dev/null; exec opencode run '\"'\"'two words'\"'\"''",
        "/dev/null"
    ]


def test_wrap_in_terminal_macos(monkeypatch):
    monkeypatch.setattr(process_module.shutil, "which", lambda name: "/usr/bin/script")
    monkeypatch.setattr(process_module.sys, "platform", "darwin")

    assert wrap_in_terminal(["opencode", "acp"]) == [
        "/usr/bin/script", "-q", "/dev/null", "/bin/sh", "-c", "stty raw -echo 2>/dev/null; exec opencode acp"
    ]


def test_wrap_in_terminal_without_script(monkeypatch):
    monkeypatch.setattr(process_module.shutil, "which", lambda name: None)

    assert wrap_in_terminal(["opencode", "acp"]) == ["opencode", "acp"]


async def wait_for_output(chunks, predicate, timeout=10.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate(b"".join(chunks)):
        if loop.time() > deadline:
            raise AssertionError(f"unexpected output: {b''.join(chunks)[:200]!r}")
        await asyncio.sleep(0.02)


@needs_script
@pytest.mark.asyncio
async def test_terminal_wrapper_does_not_echo_or_truncate_long_lines():
    chunks = []
    transport = ProcessTransport(pty_wrapper=True, terminate_timeout=2.0)
    handle = await transport.launch(sys.executable, ["-c", READY_ECHO], on_stdout=chunks.append)
    try:
        await wait_for_output(chunks, lambda out: b"ready" in out)
        payload = b'{"id": 1, "text": "' + b"x" * 6000 + b'"}'
        await handle.write(payload + b"\n")
        await wait_for_output(chunks, lambda out: payload + b"\n" in out)
        await asyncio.sleep(0.2)
    finally:
        await transport.terminate()

    assert b"".join(chunks).count(payload) == 1
