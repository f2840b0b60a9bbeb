"""
Test Interactive Console
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from wa_gateway.channels.console import GatewayConsole
from wa_gateway.core.status import StatusStore


class ScriptedInput:
    """Async input function answering from a list."""

    def __init__(self, *answers: str):
        self.answers = list(answers)
        self.prompts = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)


def make_controller(paired: bool = False):
    controller = MagicMock()
    controller.status = StatusStore()
    if paired:
        controller.status.set_owners(["15551234567@s.whatsapp.net"])
    controller.start = AsyncMock()
    controller.get_pairing_code = MagicMock(return_value="12345678")
    return controller


class TestCommands:
    """Tests for command dispatch"""

    def setup_method(self):
        self.controller = make_controller()
        self.console = GatewayConsole(self.controller, input_func=ScriptedInput())

    @pytest.mark.asyncio
    async def test_help(self, capsys):
        assert await self.console.handle_line("/help") is True
        assert "/init" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_status(self, capsys):
        """Test /status prints the status block"""
        await self.console.handle_line("status")
        assert "📟 Status" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_exit(self):
        assert await self.console.handle_line("/exit") is False
        assert await self.console.handle_line("QUIT") is False

    @pytest.mark.asyncio
    async def test_blank_line(self, capsys):
        assert await self.console.handle_line("   ") is True
        assert capsys.readouterr().out == ""

    @pytest.mark.asyncio
    async def test_unknown(self, capsys):
        await self.console.handle_line("/dance")
        assert "❓ Unknown command. Type /help." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_busy(self, capsys):
        """Test input is refused while a command runs"""
        self.console._busy = True
        assert await self.console.handle_line("/status") is True
        assert "⏳ Busy. Please wait..." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_stops_at_end_of_input(self, capsys):
        console = GatewayConsole(self.controller, input_func=ScriptedInput("/status"))
        await console.run()
        out = capsys.readouterr().out
        assert "📟 Status" in out
        assert "Bye." in out


class TestInit:
    """Tests for /init"""

    @pytest.mark.asyncio
    async def test_declined(self, capsys):
        """Test declining consent cancels without starting"""
        controller = make_controller()
        console = GatewayConsole(controller, input_func=ScriptedInput("no"))

        await console.handle_line("/init")

        controller.begin_consent.assert_called_once()
        controller.cancel_consent.assert_called_once()
        controller.start.assert_not_awaited()
        assert "❌ Setup cancelled." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_refused_while_running(self, capsys):
        """Test /init does not prompt while the gateway is running or reconnecting"""
        controller = make_controller()
        controller.begin_consent.return_value = False
        prompts = ScriptedInput("yes")
        console = GatewayConsole(controller, input_func=prompts)

        await console.handle_line("/init")

        assert prompts.prompts == []
        controller.start.assert_not_awaited()
        controller.cancel_consent.assert_not_called()
        assert "already running or reconnecting" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_accepted_unpaired(self, capsys):
        """Test accepting starts the gateway and shows the pairing command"""
        controller = make_controller()
        console = GatewayConsole(controller, input_func=ScriptedInput("yes"))

        await console.handle_line("/init")

        controller.start.assert_awaited_once()
        controller.cancel_consent.assert_not_called()
        assert "PAIR 12345678" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_accepted_paired(self, capsys):
        controller = make_controller(paired=True)
        console = GatewayConsole(controller, input_func=ScriptedInput("Y"))

        await console.handle_line("init")

        controller.start.assert_awaited_once()
        assert "PAIR" not in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_start_failure(self, capsys):
        controller = make_controller()
        controller.start.side_effect = ConnectionError("bridge down")
        console = GatewayConsole(controller, input_func=ScriptedInput("yes"))

        await console.handle_line("/init")

        assert "❌ Failed to start WhatsApp: bridge down" in capsys.readouterr().out
        assert console._busy is False


class TestUpdate:
    """Tests for /update with git mocked"""

    def make_console(self, git_results, *answers):
        console = GatewayConsole(make_controller(), input_func=ScriptedInput(*answers))
        console._git = AsyncMock(side_effect=git_results)
        return console

    @pytest.mark.asyncio
    async def test_not_a_repository(self, capsys):
        console = self.make_console([(128, "", "fatal: not a git repository")])
        await console.handle_line("/update")
        assert "❌ Not a git repository. /update skipped." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_git_missing(self, capsys):
        console = self.make_console(FileNotFoundError("git"))
        await console.handle_line("/update")
        assert "git not available" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_already_up_to_date(self, capsys):
        console = self.make_console([
            (0, "true\n", ""),
            (0, "", ""),
            (0, "abc1234\n", ""),
            (0, "Already up to date.\n", ""),
            (0, "abc1234\n", ""),
        ])
        await console.handle_line("/update")
        assert "✅ Already up to date (abc1234)." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_updated(self, capsys):
        """Test a fast-forward reports both revisions"""
        console = self.make_console([
            (0, "true\n", ""),
            (0, "", ""),
            (0, "abc1234\n", ""),
            (0, "Fast-forward\n", ""),
            (0, "def5678\n", ""),
        ])
        await console.handle_line("/update")
        out = capsys.readouterr().out
        assert "✅ Updated: abc1234 → def5678" in out
        assert "Restart" in out

    @pytest.mark.asyncio
    async def test_dirty_tree_declined(self, capsys):
        """Test local changes require confirmation"""
        console = self.make_console([
            (0, "true\n", ""),
            (0, " M README.md\n", ""),
        ], "no")
        await console.handle_line("/update")

        out = capsys.readouterr().out
        assert "Local changes detected" in out
        assert "❌ Update cancelled." in out
        assert console._git.await_count == 2

    @pytest.mark.asyncio
    async def test_pull_failure(self, capsys):
        console = self.make_console([
            (0, "true\n", ""),
            (0, "", ""),
            (0, "abc1234\n", ""),
            (1, "", "fatal: Not possible to fast-forward"),
        ])
        await console.handle_line("/update")
        assert "❌ Update failed: fatal: Not possible to fast-forward" in capsys.readouterr().out
