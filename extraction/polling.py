"""
Polling protocol for long-running extraction jobs.

The backoff schedule is plain data; sleeping and reading the clock are
injected so the loop can be driven by a fake clock in tests.
"""
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Set

from core.config import Settings
from core.exceptions import ExternalJobError, ExternalJobTimeout
from core.logger import setup_logger
from core.schema import ExpenseDocument, JobPage

logger = setup_logger(__name__)

IN_PROGRESS = "IN_PROGRESS"
SUCCEEDED = "SUCCEEDED"
FAILED_STATUSES = ("FAILED", "PARTIAL_SUCCESS")


@dataclass(frozen=True)
class BackoffSchedule:
    """Exponential poll delays bounded per iteration and overall."""
    initial_delay: float = 1.5
    multiplier: float = 1.5
    max_delay: float = 8.0
    deadline: float = 240.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffSchedule":
        return cls(
            initial_delay=settings.poll_initial_delay,
            multiplier=settings.poll_backoff_multiplier,
            max_delay=settings.poll_max_delay,
            deadline=settings.poll_deadline,
        )

    def delays(self) -> Iterator[float]:
        """Yield successive delays: initial, then x multiplier, capped at max_delay."""
        delay = min(self.initial_delay, self.max_delay)
        while True:
            yield delay
            delay = min(delay * self.multiplier, self.max_delay)


def poll_until_complete(
    fetch_status: Callable[[], JobPage],
    schedule: BackoffSchedule,
    job_id: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> JobPage:
    """
    Poll a job until it leaves IN_PROGRESS.

    Args:
        fetch_status: Returns the job's current status page
        schedule: Delay schedule and deadline
        job_id: Job identifier (for messages)
        sleep: Suspends for the given number of seconds
        clock: Monotonic time source in seconds

    Returns:
        The first page reporting SUCCEEDED

    Raises:
        ExternalJobTimeout: If the deadline passes while the job is in progress
        ExternalJobError: If the job reports FAILED, PARTIAL_SUCCESS or an unknown status
    """
    start = clock()
    delays = schedule.delays()

    while True:
        elapsed = clock() - start
        if elapsed > schedule.deadline:
            raise ExternalJobTimeout(
                f"Extraction job {job_id} timed out while waiting for completion",
                details={"job_id": job_id, "elapsed": round(elapsed, 3), "deadline": schedule.deadline}
            )

        sleep(next(delays))

        page = fetch_status()
        status = page.job_status or IN_PROGRESS
        message = page.status_message
        logger.info(f"Job {job_id} status: {status}" + (f" | {message}" if message else ""))

        if status == SUCCEEDED:
            return page
        if status in FAILED_STATUSES:
            raise ExternalJobError(
                f"Extraction job {job_id} failed or partial: {message or status}",
                details={"job_id": job_id, "status": status, "status_message": message}
            )
        if status != IN_PROGRESS:
            raise ExternalJobError(
                f"Extraction job {job_id} reported unexpected status: {status}",
                details={"job_id": job_id, "status": status}
            )


def collect_pages(
    fetch_page: Callable[[Optional[str]], JobPage],
    job_id: str,
) -> List[ExpenseDocument]:
    """
    Walk every result page of a finished job.

    Args:
        fetch_page: Returns the page for a continuation token (None for the first)
        job_id: Job identifier (for messages)

    Returns:
        Every document group, in page order

    Raises:
        ExternalJobError: If the service hands back a token it already issued
    """
    documents: List[ExpenseDocument] = []
    seen_tokens: Set[str] = set()
    next_token: Optional[str] = None
    pages = 0

    while True:
        page = fetch_page(next_token)
        pages += 1
        documents.extend(page.expense_documents)

        next_token = page.next_token
        if not next_token:
            break
        if next_token in seen_tokens:
            raise ExternalJobError(
                f"Extraction job {job_id} repeated continuation token",
                details={"job_id": job_id, "next_token": next_token}
            )
        seen_tokens.add(next_token)

    logger.info(f"Collected {len(documents)} documents across {pages} pages for job {job_id}")
    return documents
