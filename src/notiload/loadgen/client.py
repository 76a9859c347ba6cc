from __future__ import annotations

import time
from typing import Mapping

import httpx

from notiload.metrics import ErrorType, OperationKind, RequestOutcome


async def send_request(
    client: httpx.AsyncClient,
    run_id: str,
    url: str,
    body: bytes,
    headers: Mapping[str, str],
    timeout_sec: float,
) -> RequestOutcome:
    start_wall = time.time()
    start_mono = time.perf_counter()
    try:
        resp = await client.post(url, content=body, headers=headers, timeout=timeout_sec)
        latency_ms = (time.perf_counter() - start_mono) * 1000.0
        return RequestOutcome(
            run_id=run_id,
            kind=OperationKind.HTTP_REQUEST,
            success=resp.is_success,
            latency_ms=latency_ms,
            wall_time=start_wall,
            mono_time=time.perf_counter(),
            error_type=None if resp.is_success else ErrorType.HTTP_STATUS,
            status_code=resp.status_code,
            bytes_sent=len(body),
            bytes_received=len(resp.content or b""),
        )
    except httpx.TimeoutException:
        err = ErrorType.TIMEOUT
    except (httpx.RemoteProtocolError, httpx.LocalProtocolError, httpx.DecodingError):
        err = ErrorType.PROTOCOL
    except (httpx.ConnectError, httpx.NetworkError):
        err = ErrorType.CONNECTION
    except httpx.HTTPError:
        err = ErrorType.OTHER
    latency_ms = (time.perf_counter() - start_mono) * 1000.0
    return RequestOutcome(
        run_id=run_id,
        kind=OperationKind.HTTP_REQUEST,
        success=False,
        latency_ms=latency_ms,
        wall_time=start_wall,
        mono_time=time.perf_counter(),
        error_type=err,
    )
