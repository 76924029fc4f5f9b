# pharmapos/jobs.py
"""
Entry point for an external scheduler:

    python -m pharmapos.jobs expired
    python -m pharmapos.jobs near-expiry --pharmacy-id 3
    python -m pharmapos.jobs low-stock            # every pharmacy
    python -m pharmapos.jobs all
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import List, Optional

from pharmapos.core.config import settings
from pharmapos.db.session import SessionLocal
from pharmapos.services.sweeps import (
    evaluate_low_stock,
    pharmacy_ids_with_products,
    sweep_expired,
    sweep_near_expiry,
)

logger = logging.getLogger("pharmapos.jobs")

JOBS = ("expired", "near-expiry", "low-stock", "all")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m pharmapos.jobs", description="Run inventory sweeps once.")
    p.add_argument("job", choices=JOBS)
    p.add_argument("--pharmacy-id", type=int, default=None, help="limit to one pharmacy")
    p.add_argument("--today", type=date.fromisoformat, default=None, help="override the local date (YYYY-MM-DD)")
    return p


def run(db, job: str, pharmacy_id: Optional[int] = None, today: Optional[date] = None) -> dict:
    out = {}
    if job in ("expired", "all"):
        out["expired"] = sweep_expired(db, today=today, pharmacy_id=pharmacy_id).as_dict()
    if job in ("near-expiry", "all"):
        out["near_expiry"] = sweep_near_expiry(db, pharmacy_id=pharmacy_id, today=today).as_dict()
    if job in ("low-stock", "all"):
        ids = [pharmacy_id] if pharmacy_id else pharmacy_ids_with_products(db)
        out["low_stock"] = {str(pid): evaluate_low_stock(db, pid, today=today).as_dict() for pid in ids}
    return out


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Running %s (pharmacy_id=%s today=%s)", args.job, args.pharmacy_id, args.today)

    db = SessionLocal()
    try:
        out = run(db, args.job, pharmacy_id=args.pharmacy_id, today=args.today)
    finally:
        db.close()

    print(json.dumps(out, indent=2))
    failed = any(s.get("failed") for s in _flatten(out))
    return 1 if failed else 0


def _flatten(out: dict):
    for key, val in out.items():
        if key == "low_stock":
            yield from val.values()
        else:
            yield val


if __name__ == "__main__":
    sys.exit(main())
