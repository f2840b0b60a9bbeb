"""
Interactive Console

Terminal REPL for operating the gateway from the machine it runs on.

Commands:
    /init    Start onboarding (risk consent + QR)
    /status  Show connection status
    /update  git pull --ff-only (if this folder is a git repo)
    /help    Show commands
    /exit    Quit

Commands may also be typed without the leading slash.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple, Union

from ..core.status import format_status_text

logger = logging.getLogger(__name__)

InputFunc = Callable[[str], Awaitable[str]]

RISK_WARNING = (
    "⚠️  This gateway uses WhatsApp Web (non-official). "
    "It can be unstable and may lead to account restrictions."
)

HELP = """
Commands:
  /init    Start onboarding (risk consent + QR)
  /status  Show connection status
  /update  git pull (if this folder is a git repo)
  /exit    Quit

Pairing:
  After /init, send: PAIR <code> from your phone to the gateway number.
"""


def _is_yes(answer: str) -> bool:
    return answer.strip().lower() in ("y", "yes")


class GatewayConsole:
    """Async REPL driving a GatewayController."""

    def __init__(
        self,
        controller,
        root_dir: Union[str, Path, None] = None,
        input_func: Optional[InputFunc] = None,
    ):
        self.controller = controller
        self.root_dir = Path(root_dir) if root_dir else Path.cwd()
        self._input = input_func or self._async_input
        self._busy = False

    async def run(self) -> None:
        """Read commands until /exit or end of input."""
        print("\n🟢 WhatsApp Gateway CLI")
        print("Type /help for commands.\n")

        while True:
            try:
                line = await self._input("> ")
            except EOFError:
                break
            except KeyboardInterrupt:
                print("\n\nUse '/exit' to quit")
                continue

            if not await self.handle_line(line):
                break

        print("Bye.")

    async def handle_line(self, raw: str) -> bool:
        """Handle one input line. Returns False when the console should exit."""
        if self._busy:
            print("⏳ Busy. Please wait...")
            return True

        line = raw.strip()
        if not line:
            return True

        command = line.lower().lstrip("/")

        if command == "help":
            print(HELP)
        elif command in ("exit", "quit"):
            return False
        elif command == "status":
            print()
            print(format_status_text(self.controller.status.get_snapshot()))
            print()
        elif command == "init":
            await self._guarded(self.run_init)
        elif command == "update":
            await self._guarded(self.run_update)
        else:
            print("❓ Unknown command. Type /help.")

        return True

    async def _guarded(self, action: Callable[[], Awaitable[None]]) -> None:
        self._busy = True
        try:
            await action()
        finally:
            self._busy = False

    # =========================================================================
    # /init
    # =========================================================================

    async def run_init(self) -> None:
        if not self.controller.begin_consent():
            print("⏳ WhatsApp is already running or reconnecting. Try /status.\n")
            return

        print(RISK_WARNING)
        print("📱 Use a dedicated number.")

        answer = await self._input("Do you accept this risk? (yes/no) ")
        if not _is_yes(answer):
            self.controller.cancel_consent()
            print("❌ Setup cancelled.\n")
            return

        print("✅ Starting WhatsApp...\n")
        try:
            await self.controller.start()
        except Exception as e:
            print(f"❌ Failed to start WhatsApp: {e}\n")
            return

        print("If a QR is required, it will be displayed above.\n")

        if not self.controller.status.get_snapshot().paired:
            print("🔐 Pair your phone (one-time):")
            print(f"Send this message to the gateway number: PAIR {self.controller.get_pairing_code()}")
            print("Once paired, you can chat normally. Try /status.\n")

    # =========================================================================
    # /update
    # =========================================================================

    async def run_update(self) -> None:
        """Fast-forward the checkout this gateway runs from."""
        try:
            code, out, _ = await self._git("rev-parse", "--is-inside-work-tree")
        except OSError:
            print("❌ git not available or not a repository. /update skipped.")
            return

        if code != 0 or not out.strip().lower().startswith("true"):
            print("❌ Not a git repository. /update skipped.")
            return

        code, dirty, _ = await self._git("status", "--porcelain")
        dirty = dirty.strip() if code == 0 else ""
        if dirty:
            print("⚠️  Local changes detected:")
            print(dirty)
            answer = await self._input("Proceed with git pull --ff-only? (yes/no) ")
            if not _is_yes(answer):
                print("❌ Update cancelled.")
                return

        _, before, _ = await self._git("rev-parse", "--short", "HEAD")

        code, out, err = await self._git("pull", "--ff-only")
        if code != 0:
            print(f"❌ Update failed: {err.strip() or out.strip() or f'exit code {code}'}")
            return
        print(out.strip() or err.strip())

        _, after, _ = await self._git("rev-parse", "--short", "HEAD")
        before, after = before.strip(), after.strip()

        if before == after:
            print(f"✅ Already up to date ({after}).")
        else:
            print(f"✅ Updated: {before} → {after}")
            print("ℹ️  Restart the process to load the new code.")

    async def _git(self, *args: str) -> Tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(self.root_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        logger.debug(f"git {' '.join(args)} exited with {process.returncode}")
        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _async_input(self, prompt: str) -> str:
        """Async-compatible input"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: input(prompt))
