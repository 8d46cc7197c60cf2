"""
Tests for manifest parsing.
"""

import pytest

from stackpilot.errors import InvalidManifestError
from stackpilot.manifest import (
    BackendServiceManifest,
    LoadBalancedWebServiceManifest,
    RoutingRule,
    ScheduledJobManifest,
    WorkerServiceManifest,
    WorkloadKind,
    load_manifest,
)


class TestLoadManifest:
    def test_backend_service(self):
        mft = load_manifest("""
name: api
type: Backend Service
image:
  build: api
  port: 8080
http:
  path: /api
  alias: api.example.com
  additional_rules:
    - path: /v2
      alias: [v2.example.com, v2b.example.com]
""")
        assert isinstance(mft, BackendServiceManifest)
        assert mft.kind == WorkloadKind.BACKEND_SERVICE
        assert mft.http.alias == ("api.example.com",)
        assert mft.http.additional_rules[0].alias == ("v2.example.com", "v2b.example.com")
        assert [path for path, _ in mft.http.rules()] == ["http", "http.additional_rules[0]"]

    def test_http_defaults_to_empty(self):
        mft = load_manifest("name: api\ntype: Backend Service\nimage:\n  location: nginx\n")
        assert mft.http.is_empty()

    def test_web_service(self):
        mft = load_manifest("name: web\ntype: Load Balanced Web Service\nimage:\n  location: nginx\nhttp:\n  path: /\n")
        assert isinstance(mft, LoadBalancedWebServiceManifest)
        assert not mft.http.is_empty()

    def test_worker(self):
        mft = load_manifest("""
name: worker
type: Worker Service
image:
  location: worker:latest
subscribe:
  topics:
    - name: orders
      service: api
""")
        assert isinstance(mft, WorkerServiceManifest)
        assert mft.subscribe.topics[0].service == "api"

    def test_job_with_bare_on_key(self):
        mft = load_manifest("""
name: report
type: Scheduled Job
image:
  location: report:latest
on:
  schedule: "@daily"
retries: 2
""")
        assert isinstance(mft, ScheduledJobManifest)
        assert mft.on.schedule == "@daily"
        assert mft.retries == 2

    def test_manifests_are_frozen(self):
        mft = load_manifest("name: api\ntype: Backend Service\nimage:\n  location: nginx\n")
        with pytest.raises(Exception):
            mft.name = "other"

    @pytest.mark.parametrize("text", [
        "name: [",
        "- a\n- b",
        "name: api\ntype: Static Site\nimage:\n  location: nginx\n",
        "name: api\ntype: Backend Service\nimage:\n  build: .\n  location: nginx\n",
        "name: api\ntype: Backend Service\n",
    ])
    def test_invalid_manifests(self, text):
        with pytest.raises(InvalidManifestError):
            load_manifest(text, "manifest.yml")


class TestRoutingRule:
    def test_empty_rule(self):
        assert RoutingRule().is_empty()
        assert not RoutingRule(path="/").is_empty()
        assert not RoutingRule(alias="a.example.com").is_empty()
