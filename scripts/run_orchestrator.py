"""
Run the scrape orchestrator from CLI.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading

from orchestrator.logging_utils import configure_logging
from orchestrator.scheduler.jobs import OrchestratorRuntime
from orchestrator.schemas.api import DispatchCycleSummaryResponse
from orchestrator.startup import verify_database

logger = logging.getLogger("run_orchestrator")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the scrape dispatch and result feedback loops.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single dispatch cycle, print its summary and exit.",
    )
    parser.add_argument(
        "--no-consumer",
        dest="consume",
        action="store_false",
        help="Do not consume scrape results (dispatch only).",
    )
    args = parser.parse_args()

    configure_logging()
    try:
        verify_database()
    except RuntimeError as exc:
        logger.critical("Startup aborted: %s", exc)
        return 1
    runtime = OrchestratorRuntime()

    if args.once:
        try:
            summary = runtime.dispatch_loop.run_cycle()
        finally:
            runtime.publisher.close()
        payload = DispatchCycleSummaryResponse.from_summary(summary).model_dump(mode="json")
        print(json.dumps(payload, indent=2))
        return 0

    shutdown = threading.Event()

    def _request_shutdown(signum: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _request_shutdown)
    signal.signal(signal.SIGTERM, _request_shutdown)

    runtime.start(consume=args.consume)
    try:
        shutdown.wait()
    finally:
        runtime.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
