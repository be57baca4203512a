import csv
import json
from typing import Any, AsyncIterable, Dict

from .codec import json_default
from .models import ScanResponse, SegmentPassThrough


async def write_jsonl_records(records: AsyncIterable[Dict[str, Any]], out) -> int:
    count = 0
    async for record in records:
        out.write(json.dumps(record, default=json_default) + "\n")
        count += 1
    return count


async def write_jsonl_pages(pages: AsyncIterable[SegmentPassThrough[ScanResponse]], out) -> int:
    count = 0
    async for tagged in pages:
        page = tagged.payload
        out.write(json.dumps({
            "Segment": tagged.segment,
            "Items": page.items,
            "Count": page.count,
            "ScannedCount": page.scanned_count,
            "LastEvaluatedKey": page.last_evaluated_key,
        }, default=json_default) + "\n")
        count += 1
    return count


async def write_csv_records(records: AsyncIterable[Dict[str, Any]], out_path: str) -> int:
    # The header is the union of all columns, so rows are buffered until the scan ends.
    rows = []
    async for record in records:
        rows.append({
            k: (v if isinstance(v, (str, int, float, bool)) or v is None
                else json.dumps(v, default=json_default))
            for k, v in record.items()
        })
    if not rows:
        return 0
    cols = sorted({c for r in rows for c in r.keys()})
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=cols)
        w.writeheader()
        for r in rows:
            w.writerow(r)
    return len(rows)
