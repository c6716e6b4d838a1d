"""Concurrent row transformation over a bounded thread pool."""

import asyncio
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from core.errors import RowBatchError
from zipstream.resources.row_transformer import transform_row
from zipstream.resources.schemas import CsvFormat, FieldSchema, RowRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class RowPipeline:
    """
    Fans rows out to a worker pool and reassembles the records in input order.

    A batch either succeeds completely or fails with RowBatchError naming the
    first failing row; no partial result is returned.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="row-transform",
        )

    async def transform_all(
        self,
        rows: Sequence[str],
        schema: FieldSchema,
        csv_format: CsvFormat,
        leading_columns_to_skip: int = 0,
    ) -> list[RowRecord]:
        """
        Transform every row; result[i] corresponds to rows[i].

        Raises:
            RowBatchError: If any row fails; outstanding rows are cancelled
        """
        if not rows:
            return []

        loop = asyncio.get_running_loop()
        futures = [
            loop.run_in_executor(
                self._executor,
                transform_row,
                row,
                schema,
                csv_format,
                leading_columns_to_skip,
            )
            for row in rows
        ]

        try:
            done, pending = await asyncio.wait(futures, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for future in futures:
                future.cancel()
            raise

        failed = [
            index
            for index, future in enumerate(futures)
            if future in done and future.exception() is not None
        ]
        if failed:
            for future in pending:
                future.cancel()
            index = failed[0]
            raise RowBatchError(index, futures[index].exception(), len(rows))

        return [future.result() for future in futures]

    def close(self) -> None:
        """Shut the pool down, cancelling rows not yet started."""
        self._executor.shutdown(wait=True, cancel_futures=True)
        logger.debug("Row pipeline pool shut down")

    def __enter__(self) -> "RowPipeline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
