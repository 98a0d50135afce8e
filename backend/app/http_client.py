import json
import urllib.error
import urllib.request
from typing import Any, Optional

from .config import settings
from .errors import BitAgoraError, BitAgoraErrorType


def http_get_json(url: str, timeout: Optional[float] = None) -> Any:
    req = urllib.request.Request(url, method="GET", headers={"Accept": "application/json", "User-Agent": "bitagora-pos"})
    try:
        with urllib.request.urlopen(req, timeout=timeout or settings.http_timeout_seconds) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else str(e)
        raise BitAgoraError(
            BitAgoraErrorType.NETWORK_ERROR,
            f"HTTP {getattr(e, 'code', '?')} from {url}",
            {"status": getattr(e, "code", None), "body": body[:500]},
        ) from e
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, f"request to {url} failed: {e}") from e
    except ValueError as e:
        raise BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, f"invalid JSON from {url}") from e
