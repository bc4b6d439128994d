"""
Offline console demo: runs a full booking conversation without any API keys.

Uses the real intake service (conversation engine, scheduling validator,
booking store and dependency orchestrator) with keyword extraction and
in-memory calendar and CRM clients. No LLM, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario availability
    python console_demo.py --scenario outage
"""

import argparse
import asyncio
import uuid
from datetime import timedelta

from src.config import settings
from src.intake_service import IntakeService
from src.prompts.prompt_templates import format_when
from src.schemas.conversation_schema import ConfirmationResult, IntentResult, TurnResult
from src.tools.calendar import InMemoryCalendarClient
from src.tools.crm import InMemoryCrmClient
from src.utils import utcnow

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"


async def _compressed_sleep(seconds: float) -> None:
    await asyncio.sleep(min(seconds, 0.05))


class ConsoleSession:
    """Plays one chat session against the intake service in the terminal."""

    # Pre-scripted scenarios for --scenario flag
    SCENARIOS: dict[str, list[str]] = {
        "booking": [
            "Hi, I'd like to book a consultation",
            "Jane Cooper",
            "jane.cooper@example.com",
            "Northwind Traders",
            "We need a customer portal rebuilt",
            "next Monday at 10am",
            "45 minutes",
            "yes",
        ],
        "availability": [],
        "outage": [
            "Can I schedule a call?",
            "Sam Patel",
            "sam@patel.dev",
            "Patel Logistics",
            "Route planning dashboard",
            "next Tuesday at 2pm",
            "30 minutes",
            "yes, book it",
        ],
    }

    MAX_INPUT_LENGTH = 500

    def __init__(self, calendar_outage: bool = False) -> None:
        self.calendar = InMemoryCalendarClient()
        self.crm = InMemoryCrmClient()
        if calendar_outage:
            self.calendar.outage = ConnectionRefusedError("calendar host refused the connection")
        self.service = IntakeService(
            calendar_client=self.calendar,
            crm_client=self.crm,
            sleep=_compressed_sleep,
        )
        self.session_id = f"console-{uuid.uuid4().hex[:8]}"
        self.finished = False

    def agent_say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[Assistant]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def _banner(self, title: str, *extra: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  BOOKING INTAKE - {title}{RESET}")
        print(f"{BOLD}  Business: {settings.business.name}{RESET}")
        for line in extra:
            print(f"{BOLD}  {line}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    def _footer(self, label: str) -> None:
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  {label}{RESET}")
        self.print_health()
        print(f"{BOLD}{'=' * 60}{RESET}")

    def print_health(self) -> None:
        snapshot = self.service.get_dependency_health()
        print(f"{DIM}  Overall health: {snapshot.overall_health}%{RESET}")
        for name, dep in snapshot.dependencies.items():
            colour = GREEN if dep.state.value == "closed" else YELLOW if dep.state.value == "half_open" else RED
            print(
                f"{DIM}  - {name}: {RESET}{colour}{dep.state.value}{RESET}"
                f"{DIM} (failures={dep.total_failures}, rejected={dep.total_rejections}){RESET}"
            )

    # ------------------------------------------------------------------ #
    # Modes
    # ------------------------------------------------------------------ #

    async def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        if scenario not in self.SCENARIOS:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        await self.service.start()
        try:
            self._banner(f"Scenario: {scenario}")
            if scenario == "availability":
                self._show_availability()
            else:
                if scenario == "outage":
                    self.system_log("Calendar client is down for this run; backoff is compressed")
                for step in self.SCENARIOS[scenario]:
                    if self.finished:
                        break
                    print(f"\n{BLUE}[Caller] {RESET}{step}")
                    await self._process_input(step)
            self._footer(f"Scenario '{scenario}' complete.")
        finally:
            await self.service.shutdown()

    async def run(self) -> None:
        await self.service.start()
        try:
            self._banner("Console Demo", "Type 'quit' to exit, 'health' for dependency status")
            self.agent_say(
                f"Hi, thanks for contacting {settings.business.name}. How can I help you today?"
            )

            while not self.finished:
                user_input = (await asyncio.to_thread(input, f"\n{BLUE}[Caller] {RESET}")).strip()
                if not user_input:
                    continue
                if user_input.lower() in ("quit", "exit", "q"):
                    print(f"\n{DIM}Session ended.{RESET}")
                    return
                if user_input.lower() == "health":
                    self.print_health()
                    continue
                if len(user_input) > self.MAX_INPUT_LENGTH:
                    self.agent_say("That was quite long. Could you keep it brief for me?")
                    continue
                await self._process_input(user_input)

            self._footer("Conversation complete.")
        finally:
            await self.service.shutdown()

    # ------------------------------------------------------------------ #
    # Turn handling
    # ------------------------------------------------------------------ #

    async def _process_input(self, text: str) -> None:
        result = await self.service.handle_message(self.session_id, text)

        if isinstance(result, IntentResult):
            self.agent_say(result.response)
            if result.degraded:
                self.system_log("Intent check ran on the fallback path")
            return

        if isinstance(result, ConfirmationResult):
            self._show_confirmation(result)
            return

        self._show_turn(result)

    def _show_turn(self, result: TurnResult) -> None:
        self.agent_say(result.prompt)
        status = f"Step: {result.step.value}"
        if result.error_field:
            status += f" (rejected {result.error_field})"
        if result.degraded:
            status += " [degraded extraction]"
        self.system_log(status)

    def _show_confirmation(self, result: ConfirmationResult) -> None:
        if not result.success:
            self.agent_say(result.message)
            self.system_log(f"Commit rejected: {result.error_field or 'incomplete'}")
            return

        self.finished = True
        self.agent_say(result.message)
        booking = result.booking
        self.system_log(f"Booking {booking.id} status: {booking.status.value}")
        if result.integrations is not None:
            calendar, crm = result.integrations.calendar, result.integrations.crm
            self.system_log(f"Calendar: {'ok' if calendar.success else calendar.error}")
            self.system_log(f"CRM: {'ok' if crm.success else crm.error}")

    def _show_availability(self) -> None:
        day = utcnow().astimezone(self.service.validator.tz).date() + timedelta(days=1)
        while day.weekday() not in settings.business.business_days:
            day += timedelta(days=1)

        for minutes in (30, 60):
            slots = self.service.get_availability(day, minutes)
            self.agent_say(
                f"{len(slots)} open {minutes}-minute slots on {day.strftime('%A %d %B')}."
            )
            for slot in slots[:4]:
                self.system_log(" ".join(format_when(slot.start_time, settings.business.timezone)))


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    session = ConsoleSession(calendar_outage=args.scenario == "outage")
    if args.scenario:
        asyncio.run(session.run_scenario(args.scenario))
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
