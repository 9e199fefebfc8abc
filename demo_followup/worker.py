"""
One-shot background job runner.

Reads the job name from CLI args or the WORKER_JOB environment variable,
runs it once and exits. Meant for an external cron when the in-process
scheduler is disabled (SWEEP_ENABLED=false).

    python -m demo_followup.worker sweep
"""
import json
import logging
import os
import sys
from typing import Callable

from demo_followup.config import settings
from demo_followup.database import init_db
from demo_followup.dependencies import build_executor, run_no_show_check

logger = logging.getLogger(__name__)


def run_sweep_job() -> dict:
    return build_executor().run_sweep().to_dict()


def run_no_show_job() -> dict:
    report = run_no_show_check()
    return {"candidates": report.candidates, "marked": report.marked}


JOB_REGISTRY: dict[str, Callable[[], dict]] = {
    "sweep": run_sweep_job,
    "no_show": run_no_show_job,
}


def _resolve_job_name(argv: list[str]) -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(argv) > 1:
        return argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "sweep").strip().lower()


def run_worker(job_name: str) -> dict:
    """Run the requested background job."""
    name = job_name.strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background job %s", name)
    return JOB_REGISTRY[name]()


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    result = run_worker(_resolve_job_name(argv if argv is not None else sys.argv))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
