import argparse
import os

from dotenv import load_dotenv


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one fan control cycle against AWS.")
    parser.add_argument("--dry-run", action="store_true", help="decide and record, but send no device commands")
    args = parser.parse_args()

    # Load .env if present (does nothing if file missing); table names are read at import time
    load_dotenv()
    if args.dry_run:
        os.environ["WINIX_DRY_RUN"] = "true"

    from common.timeutil import epoch_seconds

    from .handler import build_backend, build_client
    from .orchestrator import run_control_loop

    result = run_control_loop(epoch_seconds(), build_backend(), build_client())
    print(result.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
