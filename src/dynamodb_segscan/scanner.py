"""
Parallel segmented scan.

A full-table scan is split into TotalSegments independent segments. Each
segment is paginated by its own loop, the loops run as asyncio tasks with
one request in flight per segment, and pages are handed to the consumer in
whatever order they complete. Records are decoded lazily from those pages.

    scanner = ParallelScanner(transport, parallelism=8)
    async for item in scanner.scan_all("orders"):
        ...

Consumers that may stop early should close the iterator (e.g. with
contextlib.aclosing) so outstanding requests are cancelled immediately.
"""

import asyncio
import logging
from dataclasses import replace
from typing import (AsyncGenerator, AsyncIterator, Dict, Iterable, List, Mapping,
                    Optional, Tuple, TypeVar)

from .codec import Decoder, plain_decoder
from .errors import DecodeError, InvalidExpressionError, TransportError
from .models import (Expression, PageCursor, ScanCheckpoint, ScanOptions, ScanRequest,
                     ScanResponse, SegmentPassThrough)

T = TypeVar("T")
Page = SegmentPassThrough[ScanResponse]

log = logging.getLogger("segscan.scanner")


async def fetch_page(transport, request: ScanRequest) -> ScanResponse:
    """One round trip. Failures propagate untouched; retries belong to the transport."""
    resp = await transport.execute(request)
    return replace(resp, start_key=request.exclusive_start_key)


async def segment_pages(transport, request: ScanRequest, skip: int = 0) -> AsyncGenerator[Page, None]:
    """
    Drive one segment to exhaustion, yielding each page as it arrives.

    skip drops that many leading items from the first page only, for a
    segment resuming in the middle of a page.
    """
    segment = request.segment
    while True:
        try:
            page = await fetch_page(transport, request)
        except TransportError as e:
            if e.segment is None:
                e.segment = segment
            raise
        if skip:
            page = replace(page, items=page.items[skip:], skipped=min(skip, len(page.items)))
            skip = 0
        log.debug("segment=%d items=%d more=%s", segment, len(page.items), not page.is_terminal)
        yield SegmentPassThrough(page, segment)
        if page.is_terminal:
            return
        request = request.next_page(page.last_evaluated_key)


async def _advance(pages: AsyncGenerator[Page, None]) -> Optional[Page]:
    try:
        return await pages.__anext__()
    except StopAsyncIteration:
        return None


async def merge_segments(transport,
                         requests: Iterable[SegmentPassThrough[ScanRequest]],
                         skips: Optional[Mapping[int, int]] = None) -> AsyncGenerator[Page, None]:
    """
    Run one pagination loop per request and yield pages first-ready-first-out.

    A segment's next page is only requested once its previous page has been
    taken by the consumer, so read-ahead never exceeds one page per segment.
    The first failing segment fails the whole stream; on any exit every
    outstanding request is cancelled and every loop closed.
    """
    skips = skips or {}
    loops: Dict[int, AsyncGenerator[Page, None]] = {}
    for req in requests:
        if req.segment in loops:
            raise ValueError(f"segment {req.segment} requested twice")
        loops[req.segment] = segment_pages(transport, req.payload, skips.get(req.segment, 0))

    in_flight: Dict[asyncio.Future, int] = {}
    try:
        for seg, pages in loops.items():
            in_flight[asyncio.ensure_future(_advance(pages))] = seg

        while in_flight:
            done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            for fut in done:
                seg = in_flight.pop(fut)
                try:
                    page = fut.result()
                except Exception as e:
                    log.warning("segment %d failed: %s", seg, e)
                    raise
                if page is None:
                    log.debug("segment=%d exhausted", seg)
                    continue

                yield page

                in_flight[asyncio.ensure_future(_advance(loops[seg]))] = seg
    finally:
        for fut in in_flight:
            fut.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        for pages in loops.values():
            await pages.aclose()


async def decode_records(pages: AsyncGenerator[Page, None], decoder: Decoder,
                         total_segments: int,
                         checkpoint: Optional[ScanCheckpoint] = None) -> AsyncGenerator[Tuple[PageCursor, T], None]:
    """
    Flatten pages into (cursor, record) pairs, failing at the first item that will not decode.

    With a checkpoint, a record's cursor is folded in once the consumer asks
    for the next record, and pages without items advance their segment directly.
    """
    emitted = 0
    try:
        async for tagged in pages:
            page, seg = tagged.payload, tagged.segment
            if not page.items:
                if checkpoint is not None:
                    checkpoint.advance(seg, page.last_evaluated_key)
                continue
            size = page.skipped + len(page.items)
            for i, item in enumerate(page.items):
                position = page.skipped + i
                try:
                    record = decoder(item)
                except DecodeError as e:
                    if e.segment is None:
                        e.segment, e.position, e.item = seg, position, item
                    raise
                except Exception as e:
                    raise DecodeError(f"segment {seg} item {position}: {e}",
                                      segment=seg, position=position, item=item) from e
                emitted += 1
                cursor = PageCursor(seg, total_segments, page.start_key,
                                    page.last_evaluated_key, position, size)
                yield cursor, record
                if checkpoint is not None:
                    checkpoint.observe(cursor)
    finally:
        await pages.aclose()
    log.info("scan finished records=%d", emitted)


class ParallelScanner:
    """
    Segmented parallel scan over an async transport.

    transport is anything with `async execute(ScanRequest) -> ScanResponse`;
    see BotoScanTransport. parallelism is both TotalSegments and the number
    of concurrent pagination loops.
    """

    def __init__(self, transport, parallelism: int = 1,
                 decoder: Decoder = plain_decoder,
                 consistent_read: bool = False,
                 options: Optional[ScanOptions] = None):
        parallelism = int(parallelism)
        if parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {parallelism}")
        self._transport = transport
        self.parallelism = parallelism
        self._decoder = decoder
        self._consistent_read = consistent_read
        self._options = options or ScanOptions()

    def _requests(self, table: str, predicate: Optional[Expression],
                  checkpoint: Optional[ScanCheckpoint]) -> Tuple[List[SegmentPassThrough[ScanRequest]], Dict[int, int]]:
        if checkpoint is not None and checkpoint.total_segments != self.parallelism:
            raise ValueError(
                f"checkpoint has {checkpoint.total_segments} segments, scan uses {self.parallelism}"
            )
        requests, skips = [], {}
        for seg in range(self.parallelism):
            start_key = None
            if checkpoint is not None:
                point = checkpoint.resume_point(seg)
                if point.exhausted:
                    continue
                start_key = point.exclusive_start_key
                if point.skip:
                    skips[seg] = point.skip
            req = ScanRequest(
                table_name=table,
                total_segments=self.parallelism,
                segment=seg,
                consistent_read=self._consistent_read,
                predicate=predicate,
                exclusive_start_key=start_key,
                options=self._options,
            )
            requests.append(SegmentPassThrough(req, seg))
        return requests, skips

    def _stream(self, table: str, predicate: Optional[Expression],
                checkpoint: Optional[ScanCheckpoint]) -> AsyncGenerator[Tuple[PageCursor, T], None]:
        requests, skips = self._requests(table, predicate, checkpoint)
        log.info("scan table=%s segments=%d active=%d filtered=%s",
                 table, self.parallelism, len(requests), predicate is not None)
        pages = merge_segments(self._transport, requests, skips)
        return decode_records(pages, self._decoder, self.parallelism, checkpoint)

    async def pages(self, table: str, predicate: Optional[Expression] = None) -> AsyncIterator[Page]:
        """Raw merged pages, each tagged with its segment."""
        if predicate is not None and predicate.is_empty:
            raise InvalidExpressionError()
        requests, _ = self._requests(table, predicate, None)
        pages = merge_segments(self._transport, requests)
        try:
            async for page in pages:
                yield page
        finally:
            await pages.aclose()

    async def scan(self, table: str, predicate: Expression) -> AsyncIterator[T]:
        """Filtered scan. An empty predicate fails before any request is sent."""
        if predicate is None or predicate.is_empty:
            raise InvalidExpressionError()
        records = self._stream(table, predicate, None)
        try:
            async for _, record in records:
                yield record
        finally:
            await records.aclose()

    async def scan_all(self, table: str) -> AsyncIterator[T]:
        records = self._stream(table, None, None)
        try:
            async for _, record in records:
                yield record
        finally:
            await records.aclose()

    async def scan_resumable(self, table: str,
                             checkpoint: Optional[ScanCheckpoint] = None,
                             predicate: Optional[Expression] = None) -> AsyncIterator[Tuple[PageCursor, T]]:
        """
        Scan yielding (cursor, record).

        A checkpoint is both where the scan starts and what it keeps current:
        every record the consumer moves past and every empty page advance
        it, so after a full scan it reports complete. Pass it back later to
        continue; segments it marks exhausted are not requested again. The
        last record handed out before stopping is not folded in until the
        caller observes its cursor.
        """
        if predicate is not None and predicate.is_empty:
            raise InvalidExpressionError()
        records = self._stream(table, predicate, checkpoint)
        try:
            async for pair in records:
                yield pair
        finally:
            await records.aclose()


def scan(transport, table: str, predicate: Expression, consistent_read: bool = False,
         parallelism: int = 1, decoder: Decoder = plain_decoder,
         options: Optional[ScanOptions] = None) -> AsyncIterator[T]:
    scanner = ParallelScanner(transport, parallelism, decoder, consistent_read, options)
    return scanner.scan(table, predicate)


def scan_resumable(transport, table: str, consistent_read: bool = False,
                   parallelism: int = 1, initial_cursor: Optional[ScanCheckpoint] = None,
                   decoder: Decoder = plain_decoder,
                   options: Optional[ScanOptions] = None) -> AsyncIterator[Tuple[PageCursor, T]]:
    scanner = ParallelScanner(transport, parallelism, decoder, consistent_read, options)
    return scanner.scan_resumable(table, initial_cursor)
