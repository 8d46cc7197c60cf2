"""
Tests for the artifact upload pipeline and custom resource bundles.
"""

import io
import zipfile
from unittest.mock import Mock

import pytest

from conftest import FakeTemplateReader, make_uploader
from stackpilot.errors import CollaboratorError, ConfigurationError, CustomResourceBundleError, UploadPhaseError
from stackpilot.manifest import WorkloadKind
from stackpilot.upload import (
    CustomResource,
    PackageTemplateReader,
    read_custom_resources,
    upload_artifacts,
    upload_custom_resources,
)
from stackpilot.upload.customresource import BUNDLES, SCRIPTS


class TestPipeline:
    def test_phases_run_in_order_and_merge(self):
        calls = []

        def images(out):
            calls.append("images")
            out.image_digests["api"] = "sha256:1"

        def s3(out):
            calls.append("s3")
            out.addons_url = "https://b.s3.us-west-2.amazonaws.com/addons.yml"

        out = upload_artifacts([("images", images), ("s3", s3)])

        assert calls == ["images", "s3"]
        assert out.image_digests == {"api": "sha256:1"}
        assert out.addons_url.endswith("addons.yml")

    def test_failure_stops_later_phases_and_keeps_partial_results(self):
        later = Mock()
        cause = CollaboratorError("upload object", "s3://b/k", "denied")

        def images(out):
            out.image_digests["api"] = "sha256:1"

        def s3(out):
            out.addons_url = "half-written"
            raise cause

        with pytest.raises(UploadPhaseError) as exc:
            upload_artifacts([("images", images), ("s3", s3), ("custom resources", later)])

        assert exc.value.phase == "s3"
        assert exc.value.cause is cause
        assert exc.value.__cause__ is cause
        assert exc.value.partial.image_digests == {"api": "sha256:1"}
        assert exc.value.partial.addons_url is None
        later.assert_not_called()

    def test_os_errors_are_attributed_to_the_phase(self):
        def env_file(out):
            raise FileNotFoundError("app.env")

        with pytest.raises(UploadPhaseError) as exc:
            upload_artifacts([("env file", env_file)])
        assert exc.value.phase == "env file"

    def test_configuration_errors_propagate_unwrapped(self):
        def custom_resources(out):
            raise CustomResourceBundleError("Worker Service", "custom-resources/x.js", "missing")

        with pytest.raises(ConfigurationError):
            upload_artifacts([("custom resources", custom_resources)])

    def test_no_phases(self):
        out = upload_artifacts([])
        assert out.image_digests == {}
        assert out.custom_resource_urls == {}


class TestCustomResources:
    def test_zip_is_deterministic(self):
        a = CustomResource("EnvControllerFunction", (("index.js", b"x"), ("cfn-response.js", b"y")))
        b = CustomResource("EnvControllerFunction", (("cfn-response.js", b"y"), ("index.js", b"x")))

        assert a.zip() == b.zip()
        assert a.artifact_key() == b.artifact_key()
        assert a.artifact_key().startswith("manual/scripts/custom-resources/envcontrollerfunction/")

    def test_zip_contents(self):
        cr = CustomResource("RulePriorityFunction", (("index.js", b"code"),))
        with zipfile.ZipFile(io.BytesIO(cr.zip())) as zf:
            assert zf.read("index.js") == b"code"

    @pytest.mark.parametrize("kind", list(WorkloadKind))
    def test_every_kind_has_a_bundle(self, kind):
        bundle = read_custom_resources(FakeTemplateReader(), kind)
        assert [cr.name for cr in bundle] == list(BUNDLES[kind])
        assert all(dict(cr.files)["index.js"] for cr in bundle)

    def test_missing_script_is_fatal(self):
        path = f"custom-resources/{SCRIPTS['RulePriorityFunction']}"
        reader = FakeTemplateReader(missing={path})

        with pytest.raises(CustomResourceBundleError) as exc:
            read_custom_resources(reader, WorkloadKind.BACKEND_SERVICE)

        assert exc.value.path == path
        assert exc.value.kind == "Backend Service"
        assert isinstance(exc.value, ConfigurationError)

    def test_packaged_scripts_exist(self):
        reader = PackageTemplateReader()
        for kind in WorkloadKind:
            assert read_custom_resources(reader, kind)

    def test_upload_returns_urls_by_function(self):
        uploader = make_uploader()
        bundle = read_custom_resources(FakeTemplateReader(), WorkloadKind.SCHEDULED_JOB)

        urls = upload_custom_resources(bundle, uploader, "shop-artifacts")

        assert list(urls) == ["EnvControllerFunction"]
        bucket, key, body = uploader.upload.call_args[0]
        assert bucket == "shop-artifacts"
        assert key == bundle[0].artifact_key()
        assert urls["EnvControllerFunction"].endswith(key)
