#!/usr/bin/env python3
"""Register an exported album/photo listing as a transfer job and queue it.

Usage:
  python scripts/enqueue_transfer.py export.json --locale it
  python scripts/enqueue_transfer.py export.json --create-tables --no-enqueue
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from media_transfer.core.config import get_settings
from media_transfer.db.base import Base
from media_transfer.db.models import TransferJob, TransferState
from media_transfer.db.session import SessionLocal, engine
from media_transfer.schemas.media import MediaContainerResource


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a transfer job from an exported resource file")
    parser.add_argument("path", type=Path)
    parser.add_argument("--locale", default=None)
    parser.add_argument("--export-service", default=None)
    parser.add_argument("--import-service", default="GooglePhotos")
    parser.add_argument("--create-tables", action="store_true")
    parser.add_argument("--no-enqueue", action="store_true")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    raw = json.loads(args.path.read_text(encoding="utf-8"))
    resource = MediaContainerResource.model_validate(raw)

    if args.create_tables:
        Base.metadata.create_all(engine)

    with SessionLocal() as db:
        job = TransferJob(
            state=TransferState.RECEIVED,
            user_locale=args.locale,
            export_service=args.export_service,
            import_service=args.import_service,
            payload_json=resource.model_dump(mode="json"),
            max_attempts=settings.transfer_max_attempts,
        )
        db.add(job)
        db.commit()
        job_id = str(job.id)

    if not args.no_enqueue:
        from media_transfer.worker.tasks_transfer import process_transfer_job_task

        process_transfer_job_task.delay(job_id)

    print(
        json.dumps(
            {
                "job_id": job_id,
                "containers": len(resource.containers),
                "items": len(resource.items),
                "enqueued": not args.no_enqueue,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
