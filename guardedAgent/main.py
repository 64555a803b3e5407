"""GuardedAgent - Self-contained CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path to support direct execution
if __name__ == "__main__":
    project_root = Path(__file__).parent.parent
    sys.path.insert(0, str(project_root))

from guardedAgent.cli import GuardedAgentCLI
from guardedAgent.config import get_settings, resolve_project_path
from guardedAgent.runtime import build_application
from guardedAgent.utils import setup_logging


async def async_main():
    """Async entrypoint for GuardedAgent CLI."""
    settings = get_settings()
    observability = settings.observability
    logger = setup_logging(
        level=getattr(logging, observability.log_level.upper(), logging.INFO),
        log_dir=str(resolve_project_path(observability.log_dir)),
    )
    logger.info("=" * 60)
    logger.info("GuardedAgent starting...")

    try:
        loop = build_application(settings)
        info = loop.coordinator.on_conversation_start()
        logger.info(f"Initial session created: {info['session_id'][:16]}...")

        cli = GuardedAgentCLI(loop)
        try:
            await cli.run()
        except KeyboardInterrupt:
            logger.info("\nKeyboardInterrupt received, shutting down...")

    except Exception as e:
        logger.error(f"Fatal error during startup: {e}", exc_info=True)
        print(f"\n❌ Startup failed: {e}")
        print("See the log file for details")


def main():
    """Synchronous wrapper for async_main."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
