"""Exercise the gateway `/health` self-test against every auth strategy.

Operational tooling only; prints a pass/fail report and exits non-zero on
failure.
"""

import argparse
import asyncio
import json

from paygate.common.config import settings
from paygate.common.logging import configure_logging, mask_secret
from paygate.common.startup import check_gateway_config
from paygate.services.gateway.client import GatewayClient
from paygate.services.gateway.schemas import ConnectionReport


async def run_check(base_url: str | None, secret_key: str | None) -> ConnectionReport:
    """Build a one-off client from settings (plus overrides) and probe the gateway."""

    overrides = {}
    if base_url:
        overrides["base_url"] = base_url.rstrip("/")
    if secret_key:
        overrides["secret_key"] = secret_key
    config = settings.gateway_config().model_copy(update=overrides)
    issues = check_gateway_config(config)
    for issue in issues:
        print(f"WARNING: {issue}")

    client = GatewayClient(config)
    try:
        return await client.check_connection()
    finally:
        await client.close()


def print_report(report: ConnectionReport, base_url: str, secret_key: str) -> None:
    print(f"base_url={base_url}")
    print(f"key_prefix={mask_secret(secret_key)}")
    if report.mock_mode:
        print("mock_mode=true (no request sent)")
    for name in report.tried:
        marker = "PASS" if name == report.strategy else "FAIL"
        print(f"  [{marker}] {name}")
    print(f"result={'PASS' if report.success else 'FAIL'}")
    print(f"message={report.message}")


def main() -> None:
    """CLI entrypoint for gateway connectivity checks."""

    parser = argparse.ArgumentParser(description="Test gateway connectivity with every auth strategy.")
    parser.add_argument("--base-url", default=None, help="Override LIPILA_BASE_URL")
    parser.add_argument("--secret-key", default=None, help="Override LIPILA_SECRET_KEY")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")
    parser.add_argument("--verbose", action="store_true", help="Emit JSON attempt logs to stdout")
    args = parser.parse_args()

    if args.verbose:
        configure_logging()

    report = asyncio.run(run_check(args.base_url, args.secret_key))
    if args.json:
        print(json.dumps(report.model_dump(), indent=2))
    else:
        print_report(
            report,
            args.base_url or settings.lipila_base_url,
            args.secret_key or settings.lipila_secret_key,
        )
    raise SystemExit(0 if report.success else 1)


if __name__ == "__main__":
    main()
