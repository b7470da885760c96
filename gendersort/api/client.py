from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable

import requests

from ..pipeline.types import ImageItem

_SETTLED_STATES = {"ready", "idle", "build_failed", "error"}


@dataclass
class SorterHttpClient:
    base_url: str
    timeout: float = 60.0
    session: requests.Session = field(default_factory=requests.Session)

    def submit(self, items: Iterable[ImageItem]) -> Dict[str, Any]:
        payload = {
            "items": [
                {
                    "filename": item.filename,
                    "media_type": item.media_type,
                    "image_base64": base64.b64encode(item.data).decode("ascii"),
                }
                for item in items
            ]
        }
        return self._call("POST", "/v1/batches", json=payload).json()

    def status(self) -> Dict[str, Any]:
        return self._call("GET", "/v1/session").json()

    def wait_until_settled(
        self, poll_interval: float = 0.5, max_wait: float = 600.0
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + max_wait
        while True:
            status = self.status()
            if status.get("state") in _SETTLED_STATES:
                return status
            if time.monotonic() >= deadline:
                raise RuntimeError(
                    f"Timed out waiting for batch to finish (state={status.get('state')})"
                )
            time.sleep(poll_interval)

    def download(self) -> bytes:
        return self._call("GET", "/v1/archive").content

    def reset(self) -> Dict[str, Any]:
        return self._call("POST", "/v1/reset").json()

    def _call(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(
                method,
                f"{self.base_url.rstrip('/')}{path}",
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:  # pragma: no cover - network conditions
            raise RuntimeError("Timed out waiting for sorting service") from exc
        except requests.RequestException as exc:  # pragma: no cover - network conditions
            raise RuntimeError(f"Failed to call sorting service: {exc}") from exc
        if response.status_code >= 400:
            raise RuntimeError(
                f"Sorting service returned {response.status_code}: {_error_detail(response)}"
            )
        return response


def _error_detail(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return str(data)


__all__ = ["SorterHttpClient"]
