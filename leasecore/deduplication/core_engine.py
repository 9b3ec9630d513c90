"""
Core Scan Engine

Runs the match evaluator over every unordered pair of a record batch and
returns the candidate duplicates above a confidence threshold. The scan is
read-only; persisting groups is the job of group formation.
"""

import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..errors import HashLookupError
from ..logging_config import Timer, log_performance
from .match_evaluator import MatchEvaluator
from .models import MatchResult, MediaHashRow, PerceptualHash, PropertyRecord
from .sources import HashStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.70
PROGRESS_INTERVAL = 1000


@dataclass
class ScanResult:
    """Matches found in one batch plus the work it took."""
    records_scanned: int
    comparisons_made: int = 0
    matches: List[MatchResult] = field(default_factory=list)
    processing_time: float = 0.0


def load_hashes(hash_store: HashStore, record_ids: Sequence[str], timeout: float) -> List[MediaHashRow]:
    """Fetch hashes for the whole batch in one call, bounded by ``timeout`` seconds.

    The call runs on a daemon thread, so a store that never returns is
    abandoned on timeout and does not keep the process alive.

    Raises:
        HashLookupError: the lookup failed or did not finish in time
    """
    future: Future = Future()
    ids = list(record_ids)

    def _fetch():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(hash_store.fetch_hashes(ids))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=_fetch, name="hash-lookup", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        raise HashLookupError(
            f"Hash lookup for {len(record_ids)} records timed out after {timeout}s", cause=e
        ) from e
    except Exception as e:
        raise HashLookupError(f"Hash lookup failed: {e}", cause=e) from e


def attach_hashes(records: Sequence[PropertyRecord], rows: Sequence[MediaHashRow]) -> List[PropertyRecord]:
    """Return copies of the records with hash rows merged into matching media.

    Rows for media URLs a record does not carry are ignored.
    """
    by_record: Dict[str, Dict[str, List[PerceptualHash]]] = defaultdict(lambda: defaultdict(list))
    for row in rows:
        by_record[row.record_id][row.media_url].append(
            PerceptualHash(algorithm=row.hash_algorithm, value=row.hash_value)
        )

    enriched = []
    for record in records:
        hashes_by_url = by_record.get(record.id)
        if not hashes_by_url or not record.media:
            enriched.append(record)
            continue

        media = []
        for asset in record.media:
            extra = [h for h in hashes_by_url.get(asset.url, []) if h not in asset.hashes]
            media.append(asset.model_copy(update={"hashes": list(asset.hashes) + extra}) if extra else asset)
        enriched.append(record.model_copy(update={"media": media}))
    return enriched


class DuplicateScanner:
    """
    Pairwise scan over a batch of property records.

    Every unordered pair is evaluated exactly once. With ``max_workers`` above
    one the rows of the comparison triangle are fanned out to a thread pool
    and joined before results are returned.
    """

    def __init__(
        self,
        evaluator: Optional[MatchEvaluator] = None,
        max_workers: int = 1,
        progress_interval: int = PROGRESS_INTERVAL,
    ):
        self.evaluator = evaluator or MatchEvaluator()
        self.max_workers = max_workers
        self.progress_interval = progress_interval

        self.stats = {
            "scans_run": 0,
            "total_comparisons": 0,
            "total_matches": 0,
        }

    def _evaluate_row(self, records: Sequence[PropertyRecord], i: int, threshold: float) -> List[MatchResult]:
        matches = []
        record_a = records[i]
        for record_b in records[i + 1:]:
            match = self.evaluator.evaluate(record_a, record_b)
            if match is not None and match.confidence >= threshold:
                matches.append(match)
        return matches

    def _log_progress(self, before: int, after: int, total: int) -> None:
        if after // self.progress_interval > before // self.progress_interval:
            logger.info(f"Processed {after}/{total} comparisons")

    def scan(self, records: Sequence[PropertyRecord], threshold: float = DEFAULT_THRESHOLD) -> ScanResult:
        """Find candidate duplicates in a batch.

        Args:
            records: Records with media (and any hashes) attached
            threshold: Minimum confidence for a match to be kept

        Returns:
            ScanResult with matches sorted by descending confidence
        """
        n = len(records)
        total = n * (n - 1) // 2
        result = ScanResult(records_scanned=n)
        logger.info(f"Scanning {n} records ({total} comparisons, threshold {threshold})")

        matches: List[MatchResult] = []
        comparisons = 0

        with Timer() as timer:
            if self.max_workers <= 1 or n < 3:
                for i in range(n):
                    matches.extend(self._evaluate_row(records, i, threshold))
                    row_size = n - i - 1
                    self._log_progress(comparisons, comparisons + row_size, total)
                    comparisons += row_size
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    futures = [
                        (n - i - 1, executor.submit(self._evaluate_row, records, i, threshold))
                        for i in range(n - 1)
                    ]
                    for row_size, future in futures:
                        matches.extend(future.result())
                        self._log_progress(comparisons, comparisons + row_size, total)
                        comparisons += row_size

        matches.sort(key=lambda m: (-m.confidence, m.left_id, m.right_id))

        result.comparisons_made = comparisons
        result.matches = matches
        result.processing_time = timer.duration_ms / 1000

        self.stats["scans_run"] += 1
        self.stats["total_comparisons"] += comparisons
        self.stats["total_matches"] += len(matches)

        logger.info(f"Scan complete: {len(matches)} potential duplicates from {comparisons} comparisons")
        log_performance(__name__, "scan", timer.duration_ms, records=n, comparisons=comparisons)
        return result

    def get_statistics(self) -> Dict[str, int]:
        return self.stats.copy()
