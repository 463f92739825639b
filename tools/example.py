"""Example script demonstrating how to use the Falcony library.

This script shows how to authenticate with the Falcon API and stream
prevention policies, their member devices and vulnerabilities page by page.

To run this example:
    uv run python tools/example.py --config config.json

Copyright (c) 2024 Felix Geilert
"""

import argparse
import asyncio
import json
import logging
import os
from typing import Any

from falcony import APIError, AuthenticationError, AuthorizationError, FalconClient, FalconClientSync
from falcony.exceptions import ConfigurationError


def configure_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    logging.getLogger("falcony").setLevel(level)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)  # Always quiet for aiohttp


BASE_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "..", "config.json")


def print_config_help(config_path: str) -> None:
    print(f"Config file not found: {config_path}")
    print("\nPlease create a config.json file with the following structure:")
    print(
        json.dumps(
            {
                "client_id": "your_client_id",
                "client_secret": "your_client_secret",
                "base_url": "https://api.crowdstrike.com",
                "attempt_policy": {"max_attempts": 5, "initial_delay": 30},
            },
            indent=2,
        )
    )


def example_sync(config_path: str, verbose: bool = False) -> None:
    """Example using the blocking wrapper."""
    print("=== Synchronous Example ===\n")

    logger = logging.getLogger("falcony") if verbose else None
    client = FalconClientSync.from_config(config_path, logger=logger)

    policies: list[dict[str, Any]] = []

    def on_policies(page: list[dict[str, Any]]) -> None:
        print(f"Received {len(page)} prevention policies")
        policies.extend(page)

    client.iterate_prevention_policies(on_policies)
    for policy in policies[:3]:
        print(f"  {policy.get('id')}: {policy.get('name')}")

    if policies:
        policy_id = policies[0]["id"]
        print(f"\n--- Members of policy {policy_id} ---")
        member_count = client.iterate_prevention_policy_member_ids(
            lambda ids: print(f"  page of {len(ids)} device ids"), policy_id
        )
        print(f"Total members: {member_count}")


async def example_async(config_path: str, verbose: bool = False) -> None:
    """Example using the asynchronous client."""
    print("\n\n=== Asynchronous Example ===\n")

    logger = logging.getLogger("falcony") if verbose else None
    async with FalconClient.from_config(config_path, logger=logger) as falcon:
        token = await falcon.authenticate()
        print(f"Token valid until {token.expires_at:.0f}")

        print("\n--- Devices (list then hydrate) ---")

        async def on_devices(devices: list[dict[str, Any]]) -> None:
            for device in devices[:2]:
                print(f"  {device.get('hostname')} ({device.get('platform_name')})")

        device_count = await falcon.iterate_devices(on_devices, query={"filter": "platform_name:'Windows'"})
        print(f"Seen {device_count} device ids")

        print("\n--- Open vulnerabilities ---")
        vulnerability_count = await falcon.iterate_vulnerabilities(
            lambda vulns: print(f"  page of {len(vulns)} vulnerabilities"),
            query={"filter": "status:'open'"},
        )
        print(f"Seen {vulnerability_count} vulnerabilities")
        print(f"\nRate limit state: {falcon.rate_limit_state}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Falcony example")
    parser.add_argument("--config", default=BASE_CONFIG_PATH, help="Path to config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--mode", choices=["sync", "async", "both"], default="both")
    args = parser.parse_args()

    configure_logging(args.verbose)

    try:
        if args.mode in ("sync", "both"):
            example_sync(args.config, args.verbose)
        if args.mode in ("async", "both"):
            asyncio.run(example_async(args.config, args.verbose))
    except ConfigurationError as e:
        if not os.path.exists(args.config):
            print_config_help(args.config)
        else:
            print(f"Invalid configuration: {e}")
    except AuthenticationError as e:
        print(f"Authentication failed, check client_id and client_secret: {e}")
    except AuthorizationError as e:
        print(f"API client lacks the required scope: {e}")
    except APIError as e:
        print(f"API request failed after retries: {e}")


if __name__ == "__main__":
    main()
