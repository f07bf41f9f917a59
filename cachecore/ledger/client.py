"""
Ledger (AO compute unit) dry-run client.

A dry-run evaluates a message against a process without committing it and
returns the messages the process would emit. Values are pulled out of the
result either by tag name or by parsing a message's ``Data`` as JSON.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import structlog

from ..utils.errors import InvalidResponseShapeError, TransientUpstreamError


logger = structlog.get_logger(__name__)

# Placeholder identity fields accepted by compute units for unsigned dry-runs.
DRY_RUN_PLACEHOLDER = "1234"


class TagMatch(Enum):
    """How tag names are compared when looking a value up."""
    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"

    def matches(self, tag_name: str, wanted: str) -> bool:
        if self is TagMatch.CASE_INSENSITIVE:
            return tag_name.lower() == wanted.lower()
        return tag_name == wanted


@dataclass
class LedgerMessage:
    """One message of a dry-run result."""
    data: Optional[str] = None
    tags: List[Dict[str, str]] = field(default_factory=list)
    target: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LedgerMessage":
        tags = [
            {"name": str(tag.get("name", "")), "value": tag.get("value")}
            for tag in raw.get("Tags") or []
            if isinstance(tag, dict)
        ]
        data = raw.get("Data")
        if data is not None and not isinstance(data, str):
            data = json.dumps(data)
        return cls(data=data, tags=tags, target=raw.get("Target"))

    def find_tag(self, name: str, match: TagMatch = TagMatch.EXACT) -> Optional[str]:
        """Value of the first tag whose name matches ``name``."""
        for tag in self.tags:
            if match.matches(tag["name"], name):
                return tag["value"]
        return None

    def parse_data_json(self) -> Optional[Any]:
        """``Data`` decoded as JSON, or None when absent or not JSON."""
        if not self.data:
            return None
        try:
            return json.loads(self.data)
        except ValueError:
            return None


@dataclass
class DryRunResult:
    """Messages emitted by a dry-run."""
    messages: List[LedgerMessage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "DryRunResult":
        if not isinstance(raw, dict):
            raise InvalidResponseShapeError("Dry-run response is not an object", upstream="ledger")
        messages = raw.get("Messages") or []
        if not isinstance(messages, list):
            raise InvalidResponseShapeError("Dry-run Messages is not a list", upstream="ledger")
        return cls(messages=[LedgerMessage.from_dict(m) for m in messages if isinstance(m, dict)])

    def first_data_json(self, default: Any = None) -> Any:
        """JSON of the first message's ``Data``; ``default`` when there is none."""
        if not self.messages or not self.messages[0].data:
            return default
        try:
            return json.loads(self.messages[0].data)
        except ValueError as e:
            raise InvalidResponseShapeError(f"Dry-run Data is not JSON: {e}", upstream="ledger") from e


def build_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"name": name, "value": value} for name, value in tags.items()]


class LedgerClient:
    """
    Sends dry-run requests to a compute unit over HTTP.

    ``cu_urls`` lists the compute units this client may use; ``endpoint_for``
    picks one by attempt index so retries can alternate between them.
    """

    def __init__(self, session: aiohttp.ClientSession, cu_urls: Sequence[str]):
        if not cu_urls:
            raise ValueError("at least one compute unit URL is required")
        self.session = session
        self.cu_urls = [url.rstrip("/") for url in cu_urls]
        self.logger = structlog.get_logger("ledger-client")

    def endpoint_for(self, attempt: int = 0) -> str:
        return self.cu_urls[attempt % len(self.cu_urls)]

    async def dry_run(
        self,
        process_id: str,
        tags: Dict[str, str],
        data: str = DRY_RUN_PLACEHOLDER,
        cu_url: Optional[str] = None,
    ) -> DryRunResult:
        """Dry-run a message carrying ``tags`` against ``process_id``."""
        base = (cu_url or self.cu_urls[0]).rstrip("/")
        body = {
            "Id": DRY_RUN_PLACEHOLDER,
            "Target": process_id,
            "Owner": DRY_RUN_PLACEHOLDER,
            "Anchor": "0",
            "Data": data,
            "Tags": build_tags(tags),
        }

        try:
            async with self.session.post(
                f"{base}/dry-run",
                params={"process-id": process_id},
                json=body,
            ) as response:
                if response.status >= 400:
                    raise TransientUpstreamError(
                        f"Dry-run failed with status {response.status}",
                        upstream=base,
                        status=response.status,
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransientUpstreamError(f"Dry-run request failed: {e}", upstream=base) from e

        self.logger.debug("Dry-run completed", process_id=process_id, cu=base, action=tags.get("Action"))
        return DryRunResult.from_dict(payload)
