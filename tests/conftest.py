import asyncio

import pytest

from dynamodb_segscan.errors import TransportError
from dynamodb_segscan.models import ScanResponse


def make_items(n):
    return [{"pk": {"S": f"item-{i}"}, "n": {"N": str(i)}} for i in range(n)]


class FakeTransport:
    """
    In-memory segmented table.

    Item i belongs to segment i % TotalSegments; each segment is served in
    pages of page_size with {"pos": {"N": offset}} as the continuation key.
    Every request is recorded in `calls`.
    """

    def __init__(self, items, page_size=2, delay=0.0, failures=None, delays=None):
        self.items = items
        self.page_size = page_size
        self.delay = delay
        self.delays = delays or {}
        self.failures = failures or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = 0
        self.completed = 0

    def segment_items(self, segment, total):
        return [it for i, it in enumerate(self.items) if i % total == segment]

    async def execute(self, request):
        self.calls.append(request)
        page_no = sum(1 for r in self.calls if r.segment == request.segment) - 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(request.segment, self.delay))
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

        exc = self.failures.get((request.segment, page_no))
        if exc is not None:
            raise exc

        seg_items = self.segment_items(request.segment, request.total_segments)
        esk = request.exclusive_start_key
        start = int(esk["pos"]["N"]) if esk else 0
        end = start + self.page_size
        lek = {"pos": {"N": str(end)}} if end < len(seg_items) else {}
        page = seg_items[start:end]
        self.completed += 1
        return ScanResponse.from_raw({
            "Items": page,
            "Count": len(page),
            "ScannedCount": len(page),
            "LastEvaluatedKey": lek,
        })


@pytest.fixture
def items():
    return make_items(10)


@pytest.fixture
def transport(items):
    return FakeTransport(items)


@pytest.fixture
def throttled():
    return TransportError("ProvisionedThroughputExceededException: slow down",
                          error_code="ProvisionedThroughputExceededException")
