#!/usr/bin/env python3
"""Queue a failed transfer job again, or print its status."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from media_transfer.db.models import TransferJob, TransferState
from media_transfer.db.session import SessionLocal
from media_transfer.services.transfer_service import build_job_status


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("job_id", type=UUID)
    parser.add_argument("--status", action="store_true", help="print job status without requeueing")
    args = parser.parse_args()

    with SessionLocal() as db:
        job = db.get(TransferJob, args.job_id)
        if not job:
            raise SystemExit(f"job not found: {args.job_id}")
        if args.status:
            print(build_job_status(job).model_dump_json(indent=2))
            return
        job.state = TransferState.RECEIVED
        job.attempt_count = 0
        job.retry_after = None
        db.add(job)
        db.commit()

    from media_transfer.worker.tasks_transfer import process_transfer_job_task

    process_transfer_job_task.delay(str(args.job_id))
    print(f"requeued: {args.job_id}")


if __name__ == "__main__":
    main()
