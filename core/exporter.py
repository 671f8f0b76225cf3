"""
Configuration Exporter
----------------------
Fetches each configured resource in turn and writes it to a timestamped
export directory.

Resources are fetched strictly one after another so the run shares a
single rate-limit budget. A failing resource is reported and skipped;
only a failed preflight aborts the run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional
import json
import logging

import httpx

from api.client import RequestDescriptor, RequestExecutor, Scalar
from api.credentials import CredentialProvider
from api.paginator import Paginator
from api.retry import RetryPolicy
from core.errors import ErrorHandler, ExportError

if TYPE_CHECKING:
    from infra.config import ExportSettings


TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"


@dataclass(frozen=True)
class ResourceSpec:
    """One exportable resource."""
    name: str
    path: str
    params: Dict[str, Scalar] = field(default_factory=dict)
    list_key: Optional[str] = None
    paginated: bool = True
    page_size: Optional[int] = None

    def descriptor(self) -> RequestDescriptor:
        return RequestDescriptor(
            path=self.path,
            params=dict(self.params),
            list_key=self.list_key,
            name=self.name,
            page_size=self.page_size,
        )


def default_resources(location_id: str) -> List[ResourceSpec]:
    """The configuration resources exported for a location."""
    scoped = {"locationId": location_id}
    return [
        ResourceSpec("funnels", "/funnels/funnel/list", scoped, list_key="funnels"),
        ResourceSpec("workflows", "/workflows/", scoped, list_key="workflows"),
        ResourceSpec("forms", "/forms/", scoped, list_key="forms"),
        ResourceSpec("surveys", "/surveys/", scoped, list_key="surveys"),
        ResourceSpec("tags", f"/locations/{location_id}/tags", list_key="tags"),
    ]


@dataclass
class ExportReport:
    """Outcome of one export run."""
    output_dir: Path
    saved: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    incomplete: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class Exporter:
    """
    Sequential export orchestrator.

    The paginator is shared across resources, and with it the credential
    provider, so a token refreshed for one resource serves the next.
    """

    def __init__(
        self,
        paginator: Paginator,
        location_id: str,
        output_root: str = "exports",
        resources: Optional[Iterable[ResourceSpec]] = None,
        error_handler: Optional[ErrorHandler] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.paginator = paginator
        self.location_id = location_id
        self.output_root = Path(output_root)
        self.resources = list(resources) if resources is not None else default_resources(location_id)
        self.error_handler = error_handler or ErrorHandler()
        self._now = now
        self._logger = logging.getLogger("ghl_export.core.exporter")

    async def preflight(self) -> None:
        """
        Check that the credentials can read this location.

        Raises the underlying ExportError; callers treat it as fatal.
        """
        self._logger.info(f"Checking access to location {self.location_id}")
        await self.paginator.fetch_one(RequestDescriptor(
            path="/funnels/funnel/list",
            params={"locationId": self.location_id, "limit": 1},
            name="preflight",
        ))

    async def fetch_resource(self, spec: ResourceSpec) -> Any:
        """Return the exportable payload for one resource."""
        descriptor = spec.descriptor()
        if not spec.paginated:
            return await self.paginator.fetch_one(descriptor)

        result = await self.paginator.fetch_all(descriptor)
        if not result.complete:
            self._logger.warning(f"{spec.name}: pagination stopped early, export is partial")
        return result

    def prepare_output_dir(self) -> Path:
        out = self.output_root / self._now().strftime(TIMESTAMP_FORMAT)
        out.mkdir(parents=True, exist_ok=True)
        return out

    async def run(self, preflight: bool = True) -> ExportReport:
        """Export every resource; per-resource failures are recorded, not raised."""
        if preflight:
            await self.preflight()

        report = ExportReport(output_dir=self.prepare_output_dir())
        self._logger.info(f"Exporting configuration for {self.location_id} to {report.output_dir}")

        for spec in self.resources:
            self._logger.info(f"-> {spec.name}")
            try:
                payload = await self.fetch_resource(spec)
                if spec.paginated:
                    data, count = payload.items, payload.total
                else:
                    data = payload
                    count = len(data) if isinstance(data, list) else 1
                write_json(report.output_dir / f"{spec.name}.json", data)
            except ExportError as e:
                report.failed[spec.name] = self.error_handler.handle(e)
                continue
            except OSError as e:
                self._logger.error(
                    f"Could not write {spec.name}: {e}", extra={"resource": spec.name}
                )
                report.failed[spec.name] = f"Could not write output file: {e}"
                continue

            if spec.paginated and not payload.complete:
                report.incomplete.append(spec.name)
            report.saved[spec.name] = count
            self._logger.info(f"Saved {spec.name}", extra={"resource": spec.name})

        return report


def write_json(path: Path, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")


def create_paginator(settings: "ExportSettings", http: Optional[httpx.AsyncClient] = None) -> Paginator:
    """Wire credentials, executor and retry policy from settings."""
    credentials = CredentialProvider(
        settings.build_credential(),
        token_url=settings.token_url,
        http=http,
        auth_scheme=settings.auth_scheme,
        token_request_format=settings.token_request_format,
        safety_buffer=settings.safety_buffer_seconds,
        min_ttl=settings.min_ttl_seconds,
        timeout=settings.request_timeout_seconds,
    )
    executor = RequestExecutor(
        settings.api_base_url,
        credentials,
        http=http,
        api_version=settings.api_version,
        timeout_seconds=settings.request_timeout_seconds,
    )
    retry_policy = RetryPolicy(
        max_attempts=settings.max_retry_attempts,
        backoff_base=settings.backoff_base_seconds,
        backoff_cap=settings.backoff_cap_seconds,
    )
    return Paginator(executor, retry_policy, max_pages=settings.max_pages)


def create_exporter(
    settings: "ExportSettings",
    http: Optional[httpx.AsyncClient] = None,
    only: Optional[Iterable[str]] = None,
) -> Exporter:
    """Build an exporter for the configured location."""
    resources = default_resources(settings.location_id)
    if only:
        wanted = set(only)
        unknown = wanted - {r.name for r in resources}
        if unknown:
            raise ValueError(f"Unknown resources: {', '.join(sorted(unknown))}")
        resources = [r for r in resources if r.name in wanted]

    return Exporter(
        create_paginator(settings, http),
        settings.location_id,
        output_root=settings.output_dir,
        resources=resources,
    )
