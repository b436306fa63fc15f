#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys

import twa_build


def parse_field_assignment(value: str) -> tuple[str, object]:
    key, sep, raw = value.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"Expected KEY=VALUE, got {value!r}")

    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def collect_overrides(config_path: str, assignments: list[str]) -> dict[str, object]:
    file_config = twa_build.load_config(config_path)
    config = twa_build.validate_config(twa_build.TwaConfig(**file_config))
    overrides = twa_build.build_twa_overrides(config)
    for assignment in assignments:
        key, value = parse_field_assignment(assignment)
        overrides[key] = value
    return overrides


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Re-apply configured fields to an existing Bubblewrap twa-manifest.json"
    )
    parser.add_argument("--manifest", required=True, help="Path to twa-manifest.json")
    parser.add_argument("--config", default=twa_build.DEFAULT_CONFIG_PATH, help="Path to config file")
    parser.add_argument(
        "--set",
        dest="assignments",
        action="append",
        default=[],
        help="Extra field to set (repeatable), e.g. appVersionCode=3 or display=\"fullscreen\"",
    )
    return parser


def main() -> int:
    parser = build_arg_parser()
    args = parser.parse_args()

    try:
        overrides = collect_overrides(args.config, args.assignments)
    except ValueError as error:
        parser.error(str(error))
    except (twa_build.TwaBuildError, OSError) as error:
        print(f"[FAIL] {error}", file=sys.stderr)
        return 1

    try:
        outcome = twa_build.patch_twa_manifest(args.manifest, overrides)
    except (twa_build.TwaBuildError, OSError) as error:
        print(f"[FAIL] {error}", file=sys.stderr)
        return 1

    if outcome == twa_build.NOT_INITIALIZED:
        print(f"[FAIL] {args.manifest} does not exist, run bubblewrap init first", file=sys.stderr)
        return 1

    print(f"[OK] Patched {len(overrides)} fields in {args.manifest}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
