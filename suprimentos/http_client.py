from __future__ import annotations

import json
import os
import time
import urllib.error
import urllib.request
from typing import Dict

from flask import current_app

from suprimentos.observability import observe_remote_call


class HttpClientError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def request_json(
    method: str,
    url: str,
    *,
    payload: dict | None = None,
    headers: Dict[str, str] | None = None,
    target: str = "remote",
    timeout: int | None = None,
    retry_attempts: int | None = None,
) -> object:
    """JSON sobre urllib com timeout e retentativa apenas para falhas transitorias."""
    timeout = timeout or int_config("HTTP_TIMEOUT_SECONDS", 20)
    attempts = max(1, 1 + (retry_attempts if retry_attempts is not None else int_config("HTTP_RETRY_ATTEMPTS", 2)))
    backoff_ms = int_config("HTTP_RETRY_BACKOFF_MS", 300)

    request_headers = {"Accept": "application/json"}
    request_headers.update(headers or {})
    data = None
    if payload is not None:
        request_headers["Content-Type"] = "application/json"
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")

    last_error: HttpClientError | None = None
    for attempt in range(attempts):
        started = time.perf_counter()
        request = urllib.request.Request(url, data=data, headers=request_headers, method=method.upper())
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                body = response.read().decode("utf-8")
            observe_remote_call(target, (time.perf_counter() - started) * 1000.0)
            if not body:
                return {}
            return json.loads(body)
        except urllib.error.HTTPError as exc:  # noqa: PERF203
            observe_remote_call(target, (time.perf_counter() - started) * 1000.0, failed=True)
            error_body = exc.read().decode("utf-8") if exc.fp else ""
            last_error = HttpClientError(f"{target} HTTP {exc.code}: {error_body[:200]}", status_code=exc.code)
            if exc.code not in {408, 429} and exc.code < 500:
                raise last_error from exc
        except urllib.error.URLError as exc:
            observe_remote_call(target, (time.perf_counter() - started) * 1000.0, failed=True)
            last_error = HttpClientError(f"Erro de conexao com {target}: {exc.reason}")
        except json.JSONDecodeError as exc:
            raise HttpClientError(f"{target} retornou JSON invalido.") from exc
        if attempt + 1 < attempts:
            time.sleep((backoff_ms / 1000.0) * (2**attempt))
    assert last_error is not None
    raise last_error


def get_config(key: str, default: object | None = None) -> object | None:
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        return os.environ.get(key, default)


def int_config(key: str, default: int) -> int:
    value = get_config(key, default)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
