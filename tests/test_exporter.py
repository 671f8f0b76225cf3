"""
Exporter Tests
--------------
Sequential export, per-resource failure isolation and file output.
"""

import json
from datetime import datetime

import httpx
import pytest

from core.errors import AuthError
from core.exporter import (
    Exporter, ResourceSpec, create_exporter, default_resources,
)
from infra.config import ExportSettings
from conftest import ScriptedAPI


FIXED_NOW = datetime(2024, 5, 6, 7, 8, 9)
LOCATION = "loc-1"


def make_exporter(make_paginator, tmp_path, resources=None, **kwargs) -> Exporter:
    return Exporter(
        make_paginator(**kwargs),
        LOCATION,
        output_root=str(tmp_path),
        resources=resources,
        now=lambda: FIXED_NOW,
    )


def script_all(api: ScriptedAPI) -> None:
    api.add("/funnels/funnel/list", httpx.Response(200, json={"funnels": [{"id": "f1"}]}))
    api.add("/workflows/", httpx.Response(200, json={"workflows": [{"id": "w1"}, {"id": "w2"}]}))
    api.add("/forms/", httpx.Response(200, json={"forms": []}))
    api.add("/surveys/", httpx.Response(200, json={"surveys": [{"id": "s1"}]}))
    api.add(f"/locations/{LOCATION}/tags", httpx.Response(200, json={"tags": [{"name": "vip"}]}))


class TestDefaultResources:
    """The exported resource catalog."""

    def test_catalog(self):
        resources = default_resources("abc")

        assert [r.name for r in resources] == ["funnels", "workflows", "forms", "surveys", "tags"]
        assert resources[-1].path == "/locations/abc/tags"
        assert resources[0].params == {"locationId": "abc"}
        assert resources[-1].params == {}

    def test_descriptor(self):
        descriptor = ResourceSpec("forms", "/forms/", {"locationId": "x"}, list_key="forms").descriptor()

        assert descriptor.name == "forms"
        assert descriptor.list_key == "forms"
        assert descriptor.params == {"locationId": "x"}


class TestRun:
    """Full export runs."""

    @pytest.mark.asyncio
    async def test_writes_every_resource(self, api, make_paginator, tmp_path):
        script_all(api)
        exporter = make_exporter(make_paginator, tmp_path)

        report = await exporter.run()

        out = tmp_path / "2024-05-06_070809"
        assert report.output_dir == out
        assert report.success
        assert report.saved == {"funnels": 1, "workflows": 2, "forms": 0, "surveys": 1, "tags": 1}
        assert json.loads((out / "workflows.json").read_text()) == [{"id": "w1"}, {"id": "w2"}]
        assert json.loads((out / "forms.json").read_text()) == []
        assert (out / "tags.json").read_text().startswith("[\n  {")

    @pytest.mark.asyncio
    async def test_preflight_request(self, api, make_paginator, tmp_path):
        script_all(api)
        exporter = make_exporter(make_paginator, tmp_path)

        await exporter.run()

        first = api.requests[0]
        assert first.url.path == "/funnels/funnel/list"
        assert first.url.params["limit"] == "1"
        assert first.url.params["locationId"] == LOCATION

    @pytest.mark.asyncio
    async def test_failed_resource_does_not_block_others(self, api, make_paginator, tmp_path):
        script_all(api)
        api.routes["/forms/"] = [httpx.Response(404, json={"message": "Not found"})]
        exporter = make_exporter(make_paginator, tmp_path)

        report = await exporter.run()

        assert not report.success
        assert "forms" in report.failed
        assert "no longer exists" in report.failed["forms"]
        assert set(report.saved) == {"funnels", "workflows", "surveys", "tags"}
        assert not (report.output_dir / "forms.json").exists()
        assert exporter.error_handler.get_error_stats() == {"HTTP_ERROR": 1}

    @pytest.mark.asyncio
    async def test_unwritable_file_does_not_block_others(self, api, make_paginator, tmp_path):
        script_all(api)
        resources = [r for r in default_resources(LOCATION) if r.name in ("forms", "tags")]
        exporter = make_exporter(make_paginator, tmp_path, resources=resources)
        (tmp_path / "2024-05-06_070809" / "forms.json").mkdir(parents=True)

        report = await exporter.run(preflight=False)

        assert "forms" in report.failed
        assert "forms" not in report.saved
        assert report.saved == {"tags": 1}
        assert json.loads((report.output_dir / "tags.json").read_text()) == [{"name": "vip"}]

    @pytest.mark.asyncio
    async def test_rate_limited_resource_is_reported(self, api, make_paginator, tmp_path, sleeps):
        script_all(api)
        api.routes["/surveys/"] = [httpx.Response(429)]
        exporter = make_exporter(make_paginator, tmp_path, max_attempts=2)

        report = await exporter.run()

        assert "throttl" in report.failed["surveys"]
        assert len(sleeps.delays) == 2
        assert "tags" in report.saved

    @pytest.mark.asyncio
    async def test_preflight_failure_is_fatal(self, api, make_paginator, tmp_path):
        api.add("/funnels/funnel/list", httpx.Response(401))
        exporter = make_exporter(make_paginator, tmp_path)

        with pytest.raises(AuthError):
            await exporter.run()

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_skip_preflight(self, api, make_paginator, tmp_path):
        script_all(api)
        exporter = make_exporter(make_paginator, tmp_path)

        await exporter.run(preflight=False)

        assert len(api.calls("/funnels/funnel/list")) == 1

    @pytest.mark.asyncio
    async def test_non_paginated_resource(self, api, make_paginator, tmp_path):
        api.add("/locations/loc-1", httpx.Response(200, json={"location": {"id": LOCATION}}))
        spec = ResourceSpec("location", "/locations/loc-1", paginated=False)
        exporter = make_exporter(make_paginator, tmp_path, resources=[spec])

        report = await exporter.run(preflight=False)

        saved = json.loads((report.output_dir / "location.json").read_text())
        assert saved == {"location": {"id": LOCATION}}
        assert report.saved == {"location": 1}

    @pytest.mark.asyncio
    async def test_partial_pagination_is_flagged(self, api, make_paginator, tmp_path):
        api.add("/forms/", httpx.Response(200, json={"forms": [1], "nextPageToken": "loop"}))
        spec = ResourceSpec("forms", "/forms/", list_key="forms")
        exporter = make_exporter(make_paginator, tmp_path, resources=[spec])

        report = await exporter.run(preflight=False)

        assert report.incomplete == ["forms"]
        assert report.saved == {"forms": 2}


class TestCreateExporter:
    """Wiring from settings."""

    @staticmethod
    def settings(tmp_path) -> ExportSettings:
        return ExportSettings(location_id=LOCATION, access_token="tok", output_dir=str(tmp_path))

    def test_selects_resources(self, tmp_path):
        exporter = create_exporter(self.settings(tmp_path), only=["tags", "forms"])

        assert [r.name for r in exporter.resources] == ["forms", "tags"]
        assert exporter.output_root == tmp_path

    def test_unknown_resource(self, tmp_path):
        with pytest.raises(ValueError):
            create_exporter(self.settings(tmp_path), only=["contacts"])

    def test_wires_settings(self, tmp_path):
        settings = self.settings(tmp_path)
        settings.max_retry_attempts = 2
        settings.max_pages = 7

        exporter = create_exporter(settings)

        assert exporter.paginator.retry_policy.max_attempts == 2
        assert exporter.paginator.max_pages == 7
        assert exporter.paginator.executor.credentials.mode.value == "static"
