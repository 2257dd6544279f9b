"""Interactive prompts: the user-decision collaborator of the upload pipeline.

Both operations return ``None`` when the user cancels; the pipeline turns
that into an aborted run rather than a failure.
"""

import asyncio
import sys
import threading
from typing import Any, Callable, Protocol, Sequence, TextIO


class Prompter(Protocol):
    def select_one(self, prompt: str, options: Sequence[str]) -> int | None:
        """Index of the chosen option, or None if cancelled."""

    def get_string(self, prompt: str, default: str = "") -> str | None:
        """Entered text (``default`` on empty input), or None if cancelled."""


async def ask(fn: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking prompt call on a daemon thread and await its answer.

    The worker is never joined: when the run is interrupted the loop shuts
    down without waiting for a ``readline`` that may never return.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(value, error):
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    def worker():
        value, error = None, None
        try:
            value = fn(*args)
        except Exception as exc:
            error = exc
        if loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(settle, value, error)
        except RuntimeError:
            # Loop closed after the check above; nobody is waiting any more.
            return

    threading.Thread(target=worker, name="prompt", daemon=True).start()
    return await future


class ConsolePrompter:
    """Prompts on stderr and reads answers from stdin.

    EOF, or ``q`` at a selection, cancels the prompt.  Ctrl-C interrupts the
    whole run and is handled by the caller.
    """

    def __init__(self, stdin: TextIO | None = None, stderr: TextIO | None = None):
        self.stdin = stdin or sys.stdin
        self.stderr = stderr or sys.stderr

    def _read(self, label: str) -> str | None:
        print(label, end="", file=self.stderr, flush=True)
        line = self.stdin.readline()
        if not line:
            return None
        return line.strip()

    def select_one(self, prompt: str, options: Sequence[str]) -> int | None:
        if not options:
            return None
        print(prompt, file=self.stderr)
        for i, option in enumerate(options, start=1):
            print(f"  {i}) {option}", file=self.stderr)
        while True:
            answer = self._read(f"Choose 1-{len(options)} (q to cancel): ")
            if answer is None or answer.lower() == "q":
                return None
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return int(answer) - 1
            print(f"  Invalid choice: {answer!r}", file=self.stderr)

    def get_string(self, prompt: str, default: str = "") -> str | None:
        suffix = f" [{default}]" if default else ""
        answer = self._read(f"{prompt}{suffix} ")
        if answer is None:
            return None
        return answer or default
