from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main() -> int:
    try:
        from celery_app import celery

        celery.loader.import_default_modules()
        schedule = dict(celery.conf.beat_schedule or {})
        missing = [
            entry["task"]
            for entry in schedule.values()
            if entry.get("task") not in celery.tasks
        ]
    except Exception as exc:
        print(f"error: failed to import celery_app:celery -> {exc}", file=sys.stderr)
        return 1

    if missing:
        print(f"error: beat schedule references unregistered tasks: {', '.join(missing)}", file=sys.stderr)
        return 1
    print(f"ok: celery_app:celery import succeeded ({len(schedule)} beat entries)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
