"""CoC Keeper: launcher. Serves the turn API with uvicorn."""

import argparse
import logging
from pathlib import Path

import uvicorn

from coc_keeper.app import create_app
from coc_keeper.config import load_config

ROOT = Path(__file__).parent


def main():
    parser = argparse.ArgumentParser(description="CoC Keeper turn server")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Session storage directory (default: ./data)")
    parser.add_argument("--scenarios", type=Path, default=None,
                        help="JSON file with the scenario snapshot catalog")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=13013)
    parser.add_argument("--log-level", default="info",
                        choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(ROOT / ".env")
    if args.data_dir:
        config.data_dir = args.data_dir
    if args.scenarios:
        config.scenario_file = args.scenarios

    print(f"Starting keeper on http://{args.host}:{args.port} ...")
    uvicorn.run(create_app(config), host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
