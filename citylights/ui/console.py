"""City Lights terminal login front-end"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from ..app import CityLightsApp
from ..core.two_factor import Resolution, TwoFactorPhase
from ..services.login_coordinator import LoginCoordinator, LoginStep
from ..utils.exceptions import (
    CityLightsError,
    LoginFailedError,
    SessionExpiredError,
    ValidationError,
)

console = Console()


class LoginConsole:
    """Thin rendering layer over the login coordinator"""

    def __init__(self, app: Optional[CityLightsApp] = None):
        self.app = app or CityLightsApp()
        self.running = True

    @property
    def coordinator(self) -> LoginCoordinator:
        return self.app.coordinator

    def run(self) -> None:
        try:
            console.print("[bold blue]Starting City Lights...[/bold blue]")
            self.app.initialize()
        except CityLightsError as e:
            console.print(f"[bold red]✗ Initialization failed: {e}[/bold red]")
            return

        try:
            while self.running:
                if self.coordinator.is_authenticated:
                    self.account_menu()
                else:
                    self.login_screen()
        except KeyboardInterrupt:
            console.print("\n[yellow]Goodbye![/yellow]")
        finally:
            self.app.shutdown()

    def login_screen(self) -> None:
        console.print(Panel("Sign in to your City Lights account", title="Sign in", border_style="blue"))

        notice = self.coordinator.pop_notice()
        if notice:
            console.print(f"[bold red]✗ {notice}[/bold red]")

        email = Prompt.ask("Email")
        password = Prompt.ask("Password", password=True)

        try:
            step = self.coordinator.submit_credentials(email, password)
        except ValidationError as e:
            console.print(f"[red]{e.message}[/red]")
            return
        except LoginFailedError as e:
            console.print(f"[bold red]✗ {e}[/bold red]")
            return

        if step == LoginStep.CODE_REQUIRED:
            self.code_screen()
        elif step == LoginStep.APPROVAL_REQUIRED:
            self.approval_screen()

        if self.coordinator.is_authenticated:
            console.print("[bold green]✓ Signed in[/bold green]\n")

    def code_screen(self) -> None:
        challenge = self.coordinator.state.challenge
        console.print(Panel(
            f"We sent a 6-digit code to:\n[bold]{challenge.email}[/bold]\n\n"
            "Type [cyan]r[/cyan] to resend the code or [cyan]b[/cyan] to go back.",
            title="Two-step verification",
            border_style="cyan",
        ))

        while self.coordinator.state.phase == TwoFactorPhase.AWAITING_CODE:
            code = Prompt.ask("Code").strip()
            if code.lower() == "b":
                self.coordinator.back_to_login()
                return
            if code.lower() == "r":
                self.resend_code()
                continue
            try:
                self.coordinator.submit_two_factor_code(code)
            except ValidationError as e:
                console.print(f"[red]{e.message}[/red]")
            except CityLightsError as e:
                console.print(f"[bold red]✗ {e}[/bold red]")

    def resend_code(self) -> None:
        try:
            message = self.coordinator.resend_code()
        except ValidationError as e:
            console.print(f"[yellow]{e.message}[/yellow]")
            return
        except CityLightsError as e:
            console.print(f"[bold red]✗ {e}[/bold red]")
            return
        console.print(f"[green]{message or 'A new code is on its way'}[/green]")

    def _approval_panel(self) -> Panel:
        challenge = self.coordinator.state.challenge
        remaining = self.coordinator.approval_seconds_remaining()
        body = Text.assemble(
            (challenge.message if challenge and challenge.message else "Check the notification on your mobile device", "bold"),
            "\n\nUser: ",
            (challenge.email if challenge else "", "bold"),
            f"\nTime remaining: {remaining // 60}:{remaining % 60:02d}",
            "\n\nPress Ctrl+C to cancel",
        )
        return Panel(body, title="Waiting for approval", border_style="blue")

    def approval_screen(self) -> None:
        try:
            with Live(self._approval_panel(), console=console, refresh_per_second=2) as live:
                while self.coordinator.state.phase == TwoFactorPhase.AWAITING_APPROVAL:
                    self.coordinator.wait_for_approval(timeout=1)
                    live.update(self._approval_panel())
        except KeyboardInterrupt:
            self.coordinator.cancel_approval()
            console.print("[yellow]Approval cancelled[/yellow]")
            return

        state = self.coordinator.state
        if state.resolution == Resolution.APPROVED:
            console.print("[bold green]✓ Access approved from your mobile device[/bold green]")
        elif state.resolution == Resolution.TIMED_OUT:
            console.print("[yellow]The approval request expired. Sign in again.[/yellow]")
        elif state.resolution == Resolution.FAILED:
            console.print(f"[bold red]✗ {state.error}[/bold red]")

    def account_menu(self) -> None:
        self.show_profile()
        choice = Prompt.ask(
            "[P] Refresh profile  [L] Log out  [Q] Quit",
            choices=["p", "l", "q", "P", "L", "Q"],
            default="p",
        ).lower()
        if choice == "l":
            self.coordinator.logout()
            console.print("[yellow]Logged out[/yellow]\n")
        elif choice == "q":
            self.running = False

    def show_profile(self) -> None:
        try:
            user = self.app.client.get_profile()
        except SessionExpiredError:
            console.print("[bold red]Your session expired. Sign in again.[/bold red]")
            return
        except CityLightsError as e:
            console.print(f"[red]Could not load profile: {e}[/red]")
            session = self.coordinator.session
            if not session:
                return
            user = session.user

        table = Table(title="Profile", box=box.ROUNDED, show_header=False)
        table.add_column("Field", style="cyan", width=20)
        table.add_column("Value", style="green", width=40)
        table.add_row("Name", user.name)
        table.add_row("Email", user.email)
        table.add_row("Role", user.role_name)
        table.add_row("Email verified", "[green]Yes[/green]" if user.email_verified else "[red]No[/red]")
        table.add_row("Two-factor", "[green]On[/green]" if user.two_factor_enabled else "[red]Off[/red]")
        console.print(table)


def main() -> None:
    LoginConsole().run()
