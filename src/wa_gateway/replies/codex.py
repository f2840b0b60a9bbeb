"""
Codex reply backend.

Runs the codex CLI once per message:

    codex exec --sandbox <sandbox> -C <workdir>
               --output-last-message <file> [-m <model>]
               [--skip-git-repo-check] -

The prompt is written to stdin. The reply is the content of the output
file, or stdout when the file is empty. Failures become a "❌ Codex
failed." reply instead of an exception.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..core.messages import InboundMessage

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n…(truncated)"

PROMPT_PREAMBLE = "\n".join([
    "You are Codex responding over WhatsApp.",
    "Be concise, direct, and practical.",
    "Avoid long preambles. Prefer short paragraphs and short lists.",
    "If you output code, keep it minimal.",
])


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max(0, max_chars - 20)].rstrip() + TRUNCATION_MARKER


def build_prompt(user_text: str) -> str:
    return f"{PROMPT_PREAMBLE}\n\nUser message:\n{user_text}"


def _read_last_message(path: Path) -> Optional[str]:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


class CodexReplier:
    """Replier backed by `codex exec`."""

    def __init__(self, codex_config, auth_state_dir: Union[str, Path], max_reply_chars: int = 3500):
        self.config = codex_config
        self.output_dir = Path(auth_state_dir) / "tmp"
        self.max_reply_chars = max_reply_chars

    def build_args(self, output_file: Union[str, Path]) -> List[str]:
        args = [
            "exec",
            "--sandbox", self.config.sandbox,
            "-C", str(self.config.workdir),
            "--output-last-message", str(output_file),
        ]
        if self.config.model:
            args.extend(["-m", self.config.model])
        if self.config.skip_git_repo_check:
            args.append("--skip-git-repo-check")
        # Prompt comes from stdin
        args.append("-")
        return args

    async def __call__(self, message: InboundMessage) -> str:
        ok, text = await self.run_once(build_prompt(message.text))
        if not ok:
            return truncate_text(f"❌ {text}", self.max_reply_chars)
        return truncate_text(text, self.max_reply_chars)

    async def run_once(self, prompt: str) -> Tuple[bool, str]:
        """
        Run codex with a prompt.

        Returns:
            (True, reply) on success, (False, error text) otherwise
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="codex_last_", suffix=".txt", dir=self.output_dir)
        os.close(fd)
        output_file = Path(name)

        try:
            return await self._run(prompt, output_file)
        finally:
            output_file.unlink(missing_ok=True)

    async def _run(self, prompt: str, output_file: Path) -> Tuple[bool, str]:
        timeout = self.config.timeout_ms / 1000

        try:
            process = await asyncio.create_subprocess_exec(
                self.config.bin,
                *self.build_args(output_file),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.config.bin}: {e}")
            return False, self._failure("Failed to start codex")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")), timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"codex timed out after {timeout}s")
            return False, self._failure("Timed out")

        text = _read_last_message(output_file) or stdout.decode("utf-8", errors="replace").strip()

        if process.returncode == 0 and text:
            return True, text

        logger.warning(f"codex exited with code {process.returncode}")
        return False, self._failure(
            f"Exit code {process.returncode}",
            stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _failure(reason: str, stderr: str = "") -> str:
        parts = ["Codex failed.", reason, stderr.strip()]
        return "\n".join(part for part in parts if part)
