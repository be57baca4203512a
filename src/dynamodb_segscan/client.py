import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import TransportError
from .models import ScanRequest, ScanResponse

log = logging.getLogger("segscan.client")


@dataclass
class ClientSettings:
    max_pool: int = 128
    read_timeout: int = 60
    connect_timeout: int = 10
    retries_max: int = 10


def build_session(role_arn: Optional[str],
                  region: Optional[str],
                  session_name: str = "segscan-session",
                  external_id: Optional[str] = None,
                  duration_seconds: Optional[int] = None) -> boto3.Session:
    if not role_arn:
        return boto3.Session(region_name=region)
    sts = boto3.client("sts", region_name=region)
    params: Dict[str, Any] = {"RoleArn": role_arn, "RoleSessionName": session_name}
    if external_id:
        params["ExternalId"] = external_id
    if duration_seconds:
        params["DurationSeconds"] = int(duration_seconds)
    creds = sts.assume_role(**params)["Credentials"]
    log.info("assumed role %s as %s", role_arn, session_name)
    return boto3.Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=region,
    )


def build_ddb_client(sess: boto3.Session,
                     region: Optional[str] = None,
                     settings: Optional[ClientSettings] = None):
    """Low-level DynamoDB client; retries and backoff are configured here, not in the scanner."""
    settings = settings or ClientSettings()
    cfg = Config(
        max_pool_connections=settings.max_pool,
        read_timeout=settings.read_timeout,
        connect_timeout=settings.connect_timeout,
        retries={"mode": "adaptive", "max_attempts": settings.retries_max},
    )
    log.debug("botocore: max_pool=%d read_timeout=%d connect_timeout=%d retries=%d",
              settings.max_pool, settings.read_timeout, settings.connect_timeout,
              settings.retries_max)
    return sess.client("dynamodb", region_name=region or sess.region_name, config=cfg)


class BotoScanTransport:
    """
    Async execute-call over a blocking boto3 client.

    Each scan call runs on a private thread pool so the event loop only
    suspends on the round trip. Cancelling the awaiting task abandons the
    call; its result is discarded when the thread finishes.
    """

    def __init__(self, ddb_client, max_workers: Optional[int] = None):
        self._client = ddb_client
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="segscan")

    async def execute(self, request: ScanRequest) -> ScanResponse:
        call = functools.partial(self._client.scan, **request.to_kwargs())
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(self._executor, call)
        except ClientError as e:
            err = e.response.get("Error", {})
            code = err.get("Code", "ClientError")
            raise TransportError(
                f"{code}: {err.get('Message', str(e))}",
                segment=request.segment,
                error_code=code,
            ) from e
        except BotoCoreError as e:
            raise TransportError(str(e), segment=request.segment) from e
        return ScanResponse.from_raw(raw)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
