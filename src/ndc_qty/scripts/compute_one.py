# src/ndc_qty/scripts/compute_one.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from ndc_qty.compute.service import build_compute_service

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ndc-qty",
        description="Compute the dispensable quantity and best NDC package(s) for one prescription.",
    )
    parser.add_argument("--drug", required=True, help="Drug name or NDC")
    parser.add_argument("--sig", required=True, help='Dosing instructions, e.g. "1 tablet twice daily"')
    parser.add_argument("--days", required=True, type=int, help="Days of therapy (1-365)")
    parser.add_argument("--preferred", nargs="*", default=None, metavar="NDC", help="Preferred NDCs")
    parser.add_argument(
        "--unit",
        default=None,
        choices=["tab", "cap", "mL", "actuation", "unit"],
        help="Dispensing unit override",
    )
    return parser


def build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "drug_input": args.drug,
        "sig": args.sig,
        "days_supply": args.days,
    }
    if args.preferred:
        payload["preferred_ndcs"] = args.preferred
    if args.unit:
        payload["quantity_unit_override"] = args.unit
    return payload


async def run(payload: Dict[str, Any]) -> Dict[str, Any]:
    service = build_compute_service()
    return await service.compute_payload(payload)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO)

    args = build_parser().parse_args(argv)
    result = asyncio.run(run(build_payload(args)))

    print(json.dumps(result, indent=2))
    if "error_code" in result:
        logger.info("Finished with error %s", result["error_code"])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
