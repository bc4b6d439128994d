"""
Booking intake entry point.

Starts the intake service, reports dependency health, and either runs the
console demo or a line-oriented chat loop over stdin.

Usage:
    Health check: python main.py health
    Chat loop:    python main.py chat
    Console mode: python main.py console
"""

import asyncio
import json
import logging
import sys
import uuid

from src.config import settings
from src.intake_service import IntakeService
from src.schemas.conversation_schema import ConfirmationResult, IntentResult

logger = logging.getLogger(__name__)


async def _run_health() -> None:
    """Initialize every dependency once and print the health snapshot."""
    service = IntakeService()
    await service.start()
    try:
        print(json.dumps(service.get_dependency_health().model_dump(mode="json"), indent=2))
    finally:
        await service.shutdown()


async def _run_chat() -> None:
    """Plain stdin/stdout conversation using the configured integrations."""
    service = IntakeService()
    await service.start()
    session_id = f"cli-{uuid.uuid4().hex[:8]}"
    logger.info("Chat session %s started for '%s'", session_id, settings.business.name)
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line or line.strip().lower() in ("quit", "exit"):
                break
            if not line.strip():
                continue
            result = await service.handle_message(session_id, line.strip())
            if isinstance(result, IntentResult):
                print(result.response)
            elif isinstance(result, ConfirmationResult):
                print(result.message)
                if result.success:
                    break
            else:
                print(result.prompt)
    finally:
        await service.shutdown()


def _run_console_mode() -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import ConsoleSession

    session = ConsoleSession()
    asyncio.run(session.run())


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "chat"
    if mode == "console":
        _run_console_mode()
    elif mode == "health":
        asyncio.run(_run_health())
    else:
        asyncio.run(_run_chat())
