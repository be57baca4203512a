import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from .client import BotoScanTransport, ClientSettings, build_ddb_client, build_session
from .errors import DecodeError, InvalidExpressionError, TransportError
from .expressions import equality_filter
from .io_utils import write_csv_records, write_jsonl_pages, write_jsonl_records
from .models import Expression, ScanCheckpoint, ScanOptions
from .scanner import ParallelScanner

log = logging.getLogger("segscan")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("segscan", description="Parallel segmented DynamoDB scan")
    # --- friendly filters ---
    p.add_argument("-f", "--filter-field", action="append",
                   help="Attribute to filter on (repeatable). Ex: -f buyerName -f status")
    p.add_argument("-v", "--filter-value", action="append",
                   help="Filter value (repeatable, same order as -f). Ex: -v Luis -v ACTIVE")
    p.add_argument("--filter-logic", choices=["AND", "OR"], default="AND",
                   help="How multiple -f/-v filters are combined (default AND)")

    # --- scan args, boto3 naming ---
    p.add_argument("--table-name", required=True)
    p.add_argument("--parallelism", "--total-segments", dest="parallelism", type=int, default=32)
    p.add_argument("--index-name")
    p.add_argument("--limit", type=int, help="Page size per request")
    p.add_argument("--consistent-read", action="store_true")
    p.add_argument("--projection-expression")
    p.add_argument("--filter-expression")
    p.add_argument("--expression-attribute-names", type=json.loads)
    p.add_argument("--expression-attribute-values", type=json.loads)
    p.add_argument("--return-consumed-capacity")

    # --- logging ---
    p.add_argument("--log-level", default="INFO",
                   choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"])
    p.add_argument("--log-format", default="text", choices=["text", "json"])

    # --- STS / region ---
    p.add_argument("--region")
    p.add_argument("--role-arn")
    p.add_argument("--external-id")
    p.add_argument("--role-session-name", default="segscan-session")
    p.add_argument("--role-duration-seconds", type=int)

    # --- pool / timeouts / retries ---
    p.add_argument("--max-pool-connections", type=int, default=128)
    p.add_argument("--read-timeout", type=int, default=60)
    p.add_argument("--connect-timeout", type=int, default=10)
    p.add_argument("--retries-max-attempts", type=int, default=10)

    # --- output ---
    p.add_argument("--output", help="Output path. .csv -> CSV; anything else -> JSONL; omitted -> stdout JSONL")
    p.add_argument("--output-pages", action="store_true", help="Emit raw pages instead of decoded items")
    p.add_argument("--checkpoint",
                   help="Resume file: read on start if present, rewritten as the scan progresses and on exit")
    return p


class _JsonHandler(logging.StreamHandler):
    def emit(self, record):
        import time
        msg = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        self.stream.write(json.dumps(msg) + "\n")
        self.flush()


def setup_logging(level_name: str, fmt: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    if fmt == "json":
        logging.basicConfig(level=level, handlers=[_JsonHandler()])
    else:
        logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def build_predicate(args) -> Optional[Expression]:
    """Raw --filter-expression wins; otherwise -f/-v pairs; otherwise None."""
    if args.filter_expression is not None:
        return Expression(
            args.filter_expression,
            args.expression_attribute_names or {},
            args.expression_attribute_values or {},
        )
    if args.filter_field or args.filter_value:
        if not (args.filter_field and args.filter_value) or len(args.filter_field) != len(args.filter_value):
            raise ValueError("pass the same number of --filter-field (-f) and --filter-value (-v)")
        expr = equality_filter(args.filter_field, args.filter_value, args.filter_logic)
        log.debug("friendly filter: %s", expr.expression)
        return expr
    return None


def build_options(args) -> ScanOptions:
    names = {}
    if args.filter_expression is None and args.expression_attribute_names:
        # names without a raw filter belong to the projection
        names = args.expression_attribute_names
    return ScanOptions(
        index_name=args.index_name,
        limit=args.limit,
        projection_expression=args.projection_expression,
        projection_names=names,
        return_consumed_capacity=args.return_consumed_capacity,
    )


def load_checkpoint(path, parallelism):
    if not path or not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as f:
        checkpoint = ScanCheckpoint.from_json(f.read())
    if checkpoint.total_segments != parallelism:
        raise ValueError(f"checkpoint {path} was taken with --parallelism {checkpoint.total_segments}")
    return checkpoint


def save_checkpoint(path, checkpoint: ScanCheckpoint) -> None:
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(checkpoint.to_json())
    os.replace(tmp, path)


async def _tracked(pairs, checkpoint: ScanCheckpoint, path: str, every: int = 1000):
    # The scanner advances the checkpoint once the consumer asks for the next
    # record, i.e. after the previous one has been written.
    seen = 0
    try:
        async for _, record in pairs:
            yield record
            seen += 1
            if seen % every == 0:
                save_checkpoint(path, checkpoint)
    finally:
        await pairs.aclose()
        save_checkpoint(path, checkpoint)
        log.info("checkpoint saved path=%s complete=%s", path, checkpoint.is_complete)


async def run(args, transport) -> int:
    predicate = build_predicate(args)
    scanner = ParallelScanner(
        transport,
        parallelism=args.parallelism,
        consistent_read=args.consistent_read,
        options=build_options(args),
    )

    if args.output_pages:
        pages = scanner.pages(args.table_name, predicate)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                count = await write_jsonl_pages(pages, f)
        else:
            count = await write_jsonl_pages(pages, sys.stdout)
        log.info("pages written=%d", count)
        return count

    resuming = False
    if args.checkpoint:
        if args.output and args.output.lower().endswith(".csv"):
            raise ValueError("--checkpoint needs JSONL output")
        checkpoint = load_checkpoint(args.checkpoint, args.parallelism)
        resuming = checkpoint is not None
        if checkpoint is None:
            checkpoint = ScanCheckpoint(args.parallelism)
        else:
            log.info("resuming from %r", checkpoint)
        pairs = scanner.scan_resumable(args.table_name, checkpoint, predicate)
        records = _tracked(pairs, checkpoint, args.checkpoint)
    elif predicate is not None:
        records = scanner.scan(args.table_name, predicate)
    else:
        records = scanner.scan_all(args.table_name)

    if args.output and args.output.lower().endswith(".csv"):
        count = await write_csv_records(records, args.output)
        log.info("csv written path=%s items=%d", args.output, count)
    elif args.output:
        with open(args.output, "a" if resuming else "w", encoding="utf-8") as f:
            count = await write_jsonl_records(records, f)
        log.info("jsonl written path=%s items=%d", args.output, count)
    else:
        count = await write_jsonl_records(records, sys.stdout)
    return count


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    try:
        log.info("starting segscan table=%s region=%s parallelism=%s",
                 args.table_name, args.region, args.parallelism)
        sess = build_session(
            role_arn=args.role_arn,
            region=args.region,
            session_name=args.role_session_name,
            external_id=args.external_id,
            duration_seconds=args.role_duration_seconds,
        )
        ddb = build_ddb_client(sess, region=args.region, settings=ClientSettings(
            max_pool=args.max_pool_connections,
            read_timeout=args.read_timeout,
            connect_timeout=args.connect_timeout,
            retries_max=args.retries_max_attempts,
        ))
        with BotoScanTransport(ddb, max_workers=min(args.parallelism, args.max_pool_connections)) as transport:
            asyncio.run(run(args, transport))
        log.info("done")

    except KeyboardInterrupt:
        sys.exit("interrupted")
    except InvalidExpressionError as e:
        sys.exit(f"ERROR: invalid filter: {e}")
    except ValueError as e:
        sys.exit(f"ERROR: {e}")
    except DecodeError as e:
        sys.exit(f"ERROR: could not decode item {e.position} of segment {e.segment}: {e}")
    except TransportError as e:
        cause = e.__cause__
        if isinstance(cause, NoCredentialsError):
            sys.exit("ERROR: no AWS credentials found. Configure env vars/profiles or use --role-arn.")
        if isinstance(cause, EndpointConnectionError):
            sys.exit(f"ERROR: could not reach DynamoDB ({cause}). Check --region or connectivity.")
        sys.exit(f"ERROR segment {e.segment}: {e}")
    except NoCredentialsError:
        sys.exit("ERROR: no AWS credentials found. Configure env vars/profiles or use --role-arn.")
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "ClientError")
        msg = e.response.get("Error", {}).get("Message", str(e))
        sys.exit(f"ERROR {code}: {msg}")


if __name__ == "__main__":
    main()
