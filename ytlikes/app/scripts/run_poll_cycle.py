from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from ytlikes.app.dependencies import get_notification_dispatcher, get_poll_orchestrator, get_settings
from ytlikes.app.logging_config import configure_application_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one likes poll cycle (detection and notifications) and print the summary.",
    )
    parser.add_argument(
        "--detect-only",
        action="store_true",
        help=(
            "Record new likes but do not send push notifications. Recorded likes are "
            "added to the baseline and the ledger, so later cycles will not notify them."
        ),
    )
    parser.add_argument(
        "--cleanup-tokens",
        action="store_true",
        help="Validate every active push token first and deactivate users with dead tokens.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = get_settings()
    configure_application_logging(settings, console_stream=sys.stderr)

    output: dict[str, object] = {}
    if args.cleanup_tokens:
        output["deactivated_tokens"] = get_notification_dispatcher().cleanup_invalid_tokens()

    orchestrator = get_poll_orchestrator()
    if args.detect_only:
        result = orchestrator.run_cycle()
        output["cycle"] = {
            "users_checked": result.users_checked,
            "total_new_likes": result.total_new_likes,
            "failed_user_ids": list(result.failed_user_ids),
            "skipped_user_ids": list(result.skipped_user_ids),
        }
    else:
        output["summary"] = asdict(orchestrator.run())

    print(json.dumps(output, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
