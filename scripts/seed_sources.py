#!/usr/bin/env python3
"""Seed the source registry with the Almaty sources.

Environment variables:
  DATABASE_URL (required)
  ALMATY_LAT / ALMATY_LNG (default: 43.2220 / 76.8512)
"""

from __future__ import annotations

import sys

from sqlalchemy.exc import SQLAlchemyError

from ingestion.seeds import seed_sources


def main() -> int:
    try:
        ids = seed_sources()
    except RuntimeError as exc:
        print(f"[seed_sources] invalid configuration: {exc}", file=sys.stderr)
        return 1
    except SQLAlchemyError as exc:
        print(f"[seed_sources] database error: {exc}", file=sys.stderr)
        return 1

    for source_id in ids:
        print(f"[seed_sources] upserted {source_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
