#!/usr/bin/env python3
"""
Verification Orchestrator

Runs one source-vs-target verification:
1. connectivity test on both sides (the only fatal step besides table discovery)
2. table discovery and intersection in source discovery order
3. per-table verification, sequential or across a bounded worker pool
4. aggregation into a RunSummary, reported in discovery order

Usage:
    with VerificationContext(settings) as context:
        summary = VerificationOrchestrator(context).verify(source, target, run_id="run-1")
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from core.context import VerificationContext
from core.errors import error_detail, sanitize_error_message
from core.models import ConnectionDescriptor, RunStatus, RunSummary, TableVerdict
from core.table_verifier import TableVerifier
from core.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


class VerificationOrchestrator:
    """Entry point used by an outer request layer or the CLI"""

    def __init__(self, context: VerificationContext):
        self.context = context
        self.settings = context.settings
        self.database = context.database
        self.progress = context.progress
        self.table_verifier = TableVerifier(context.database, self.settings.sample_size)

    def test_connectivity(self, descriptor: ConnectionDescriptor) -> None:
        """Raises ConnectionError when the database cannot be reached"""
        logger.info(f"Testing database connection {descriptor.safe_dict()}")
        self.database.test_connectivity(descriptor)

    def clear_embedded_connections(self, role: Optional[str] = None) -> int:
        """
        Close cached SQLite handles, all of them or only those tagged with role.

        Used when a new database file replaces the one previously verified
        under the same role.
        """
        embedded = self.context.resources.embedded
        if embedded is None:
            return 0
        if role:
            return embedded.close_by_tag(role)
        return embedded.close_all()

    def _verify_table(self, source: ConnectionDescriptor, target: ConnectionDescriptor,
                      table_name: str, run_id: Optional[str], mode: str) -> TableVerdict:
        if run_id:
            self.progress.update_progress(run_id, 'processing', table_name,
                                          f"Verifying table: {table_name}{mode}")
        try:
            verdict = call_with_timeout(
                self.table_verifier.verify,
                self.settings.processing_timeout,
                f"Table {table_name} processing",
                source, target, table_name,
            )
        except Exception as e:
            logger.error(f"Table {table_name} processing failed: {error_detail(e)}")
            verdict = TableVerdict.failed(table_name, error_detail(e))

        if run_id:
            self.progress.complete_table(run_id, table_name)
        return verdict

    def _verify_sequential(self, source: ConnectionDescriptor, target: ConnectionDescriptor,
                           tables: List[str], run_id: Optional[str]) -> List[TableVerdict]:
        logger.info(f"Processing {len(tables)} tables sequentially")
        return [self._verify_table(source, target, table, run_id, '') for table in tables]

    def _verify_parallel(self, source: ConnectionDescriptor, target: ConnectionDescriptor,
                         tables: List[str], run_id: Optional[str]) -> List[TableVerdict]:
        workers = min(self.settings.max_concurrent_tables, len(tables))
        logger.info(f"Processing {len(tables)} tables with concurrency {workers}")

        results: Dict[int, TableVerdict] = {}
        next_index = [0]
        lock = threading.Lock()

        def worker():
            while True:
                with lock:
                    index = next_index[0]
                    if index >= len(tables):
                        return
                    next_index[0] += 1
                verdict = self._verify_table(source, target, tables[index], run_id, ' (parallel)')
                with lock:
                    results[index] = verdict

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='table-verifier') as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        # Completion order is arbitrary; report in discovery order
        return [results[index] for index in sorted(results)]

    def verify(self, source: ConnectionDescriptor, target: ConnectionDescriptor,
               run_id: Optional[str] = None) -> RunSummary:
        """
        Verify that target holds the same tables, schemas and data as source.

        Raises:
            ConnectionError: either database is unreachable
            QueryError / TimeoutError: table discovery failed on either side
        """
        logger.info(f"Starting migration verification (run {run_id}): "
                    f"source={source.safe_dict()} target={target.safe_dict()}")

        self.test_connectivity(source)
        self.test_connectivity(target)

        source_tables = self.database.list_tables(source)
        target_tables = self.database.list_tables(target)

        target_set = set(target_tables)
        source_set = set(source_tables)
        common = [t for t in source_tables if t in target_set]
        missing = [t for t in source_tables if t not in target_set]
        extra = [t for t in target_tables if t not in source_set]

        logger.info(f"Found {len(common)} common tables "
                    f"({len(missing)} missing in target, {len(extra)} extra in target)")
        if missing:
            logger.warning(f"Tables missing in target: {missing}")

        if run_id:
            self.progress.start_session(run_id, len(common))

        try:
            if self.settings.enable_parallel and len(common) > 1:
                verdicts = self._verify_parallel(source, target, common, run_id)
            else:
                verdicts = self._verify_sequential(source, target, common, run_id)
        except Exception as e:
            if run_id:
                self.progress.complete_session(run_id, False,
                                               f"Verification failed: {sanitize_error_message(e)}")
            raise

        summary = RunSummary.build(verdicts, run_id, tuple(missing), tuple(extra))

        if run_id:
            self.progress.complete_session(
                run_id,
                summary.status is RunStatus.SUCCESS,
                f"Verification completed: {summary.matched_tables}/{summary.total_tables} tables matched",
            )

        logger.info(f"Migration verification completed: {summary.status.value} "
                    f"({summary.matched_tables}/{summary.total_tables} tables matched)")
        return summary
