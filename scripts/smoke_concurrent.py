#!/usr/bin/env python3
"""
Smoke-test a live MySQL setup: run N queries in parallel, spread over every tag.

Each query asks the server for its current database and checks the answer
matches the tag's configured dbname.

Usage:
  python scripts/smoke_concurrent.py --config sqldb.json [--concurrent N] [--queries Q]
  Or set env: SQLDB_CONFIG_FILE, CONCURRENT, QUERIES
"""

import argparse
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed

import pymysql
from pydantic import BaseModel

from tagsql import Registry, load_db_configs, one
from tagsql.core.errors import SqlDbError
from tagsql.core.mysql_errors import error_info


class CurrentDb(BaseModel):
    db: str | None = None


def do_query(reg: Registry, tag: str, expected: str, index: int) -> tuple[int, str, str]:
    """Run one query; return (index, tag, outcome)."""
    rec = CurrentDb()
    try:
        reg.query(tag, one(rec), "SELECT DATABASE() AS db")
    except pymysql.err.MySQLError as e:
        try:
            code, msg = error_info(e)
        except SqlDbError:
            return (index, tag, f"ERR {e!r}")
        return (index, tag, f"ERR {code} {msg}")
    if rec.db != expected:
        return (index, tag, f"MISMATCH got {rec.db!r}")
    return (index, tag, "OK")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run N parallel queries across all configured tags."
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("SQLDB_CONFIG_FILE", ""),
        help="sqldb JSON config file (or set SQLDB_CONFIG_FILE env)",
    )
    parser.add_argument(
        "--concurrent",
        type=int,
        default=int(os.environ.get("CONCURRENT", "20")),
        help="Number of worker threads (default 20)",
    )
    parser.add_argument(
        "--queries",
        type=int,
        default=int(os.environ.get("QUERIES", "100")),
        help="Total number of queries (default 100)",
    )
    args = parser.parse_args()

    if not args.config:
        print("Error: --config or SQLDB_CONFIG_FILE env required", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    configs = load_db_configs(args.config)
    if not configs:
        print("Error: no sqldb configs found", file=sys.stderr)
        sys.exit(1)

    print(f"Running {args.queries} queries on {len(configs)} tags with {args.concurrent} threads")
    print("---")

    results: list[tuple[int, str, str]] = []
    with Registry() as reg:
        reg.init(configs)
        with ThreadPoolExecutor(max_workers=args.concurrent) as executor:
            futures = []
            for i in range(args.queries):
                cfg = configs[i % len(configs)]
                futures.append(executor.submit(do_query, reg, cfg.tag, cfg.db_name, i))
            for fut in as_completed(futures):
                idx, tag, outcome = fut.result()
                results.append((idx, tag, outcome))
                print(f"{idx} [{tag}] {outcome}")
        stats = reg.stats()

    print("---")
    ok = sum(1 for _, _, o in results if o == "OK")
    mismatch = sum(1 for _, _, o in results if o.startswith("MISMATCH"))
    err = sum(1 for _, _, o in results if o.startswith("ERR"))
    print(f"Done. ok={ok} mismatch={mismatch} errors={err}")
    for tag, s in stats.items():
        print(f"{tag}: open={s['open']} idle={s['idle']} max_open={s['max_open']}")
    sys.exit(0 if ok == len(results) else 1)


if __name__ == "__main__":
    main()
