"""
Tests for the variant deployers.
"""

from dataclasses import replace
from unittest.mock import Mock, call

import pytest

from conftest import BACKEND_MANIFEST, FakeTemplateReader, make_lb, make_target
from stackpilot.deploy import (
    BackendServiceDeployer,
    DeployOptions,
    DeployWorkloadInput,
    DNSAliasRecommender,
    GenerateCloudFormationTemplateInput,
    LoadBalancedWebServiceDeployer,
    NoopActionRecommender,
    QueueRecommender,
    ScheduledJobDeployer,
    WorkerServiceDeployer,
    WorkloadDeployerInput,
    deployer_for,
    list_workload_kinds,
    stack_runtime_configuration,
)
from stackpilot.errors import (
    CollaboratorError,
    CustomResourceBundleError,
    ImportedALBSchemeError,
    InvalidManifestError,
    ManifestKindMismatchError,
    RoutingRuleError,
    TemplateOverrideError,
    UploadPhaseError,
)
from stackpilot.manifest import load_manifest
from stackpilot.runtime import StackRuntimeConfiguration
from stackpilot.stack.base import StackConfiguration
from stackpilot.upload import UploadArtifactsOutput
from stackpilot.upload.customresource import BUNDLES
from stackpilot.upload.pipeline import CUSTOM_RESOURCES_PHASE, IMAGES_PHASE, S3_PHASE

IMPORTED_ALB_MANIFEST = BACKEND_MANIFEST + "http:\n  path: /api\n  alb: imported\n"
CR_URLS = {name: f"https://shop-artifacts.s3.us-west-2.amazonaws.com/cr/{name}.zip"
           for names in BUNDLES.values() for name in names}


def make_input(text, workspace, target=None, **kwargs):
    return WorkloadDeployerInput(
        target=target or make_target(),
        manifest=load_manifest(text),
        raw_manifest=text,
        workspace=workspace,
        **kwargs,
    )


def runtime():
    return StackRuntimeConfiguration(image_digests={"api": "sha256:abc"}, custom_resource_urls=dict(CR_URLS))


class StubStack(StackConfiguration):
    def stack_name(self):
        return "shop-test-api"

    def template(self):
        return "Resources: {}\n"

    def parameters(self):
        return []

    def tags(self):
        return {}


class TestConstruction:
    def test_kind_mismatch_is_fatal(self, clients, workload_dir):
        in_ = make_input(BACKEND_MANIFEST, workload_dir)

        with pytest.raises(ManifestKindMismatchError) as exc:
            WorkerServiceDeployer(in_, clients)

        assert exc.value.expected == "Worker Service"
        assert exc.value.actual == "Backend Service"

    def test_kind_is_checked_before_reading_the_workload_dir(self, clients, tmp_path):
        in_ = make_input(BACKEND_MANIFEST, tmp_path / "does-not-exist")
        with pytest.raises(ManifestKindMismatchError):
            ScheduledJobDeployer(in_, clients)

    @pytest.mark.parametrize("text, expected", [
        (BACKEND_MANIFEST, BackendServiceDeployer),
        ("name: web\ntype: Load Balanced Web Service\nimage:\n  location: nginx\n", LoadBalancedWebServiceDeployer),
        ("name: w\ntype: Worker Service\nimage:\n  location: w\n", WorkerServiceDeployer),
        ("name: j\ntype: Scheduled Job\nimage:\n  location: j\non:\n  schedule: '@daily'\n", ScheduledJobDeployer),
    ])
    def test_registry_picks_deployer(self, clients, workload_dir, text, expected):
        assert isinstance(deployer_for(make_input(text, workload_dir), clients), expected)

    def test_list_workload_kinds(self):
        assert "Backend Service" in list_workload_kinds()
        assert len(list_workload_kinds()) == 4

    def test_region_lookup_uses_ecs(self, clients, workload_dir):
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients)

        assert deployer.is_service_available_in_region("us-west-2") is True
        clients.regions.is_available_in_region.assert_called_once_with("ecs", "us-west-2")


class TestUploadArtifacts:
    def test_uploads_image_env_file_addons_and_custom_resources(self, clients, tmp_path, workload_dir):
        (tmp_path / "api").joinpath("Dockerfile").write_text("FROM scratch\n")
        (tmp_path / "app.env").write_text("A=1\n")
        (workload_dir / "addons").mkdir()
        (workload_dir / "addons" / "table.yml").write_text("Resources:\n  Table:\n    Type: AWS::DynamoDB::Table\n")
        text = BACKEND_MANIFEST + "env_file: app.env\n"
        deployer = BackendServiceDeployer(make_input(text, tmp_path, workload_dir=workload_dir), clients)

        out = deployer.upload_artifacts()

        assert out.image_digests == {"api": "sha256:" + "a" * 64}
        args = clients.image_pusher.build_and_push.call_args[0][0]
        assert args.context == str(tmp_path / "api")
        assert args.repo_uri.endswith("shop/api")
        assert out.env_file_arn.startswith("arn:aws:s3:::shop-artifacts/manual/env-files/app.env/")
        assert "manual/addons/api/" in out.addons_url
        assert set(out.custom_resource_urls) == set(BUNDLES[deployer.strategy().kind])

    def test_prebuilt_image_is_not_pushed(self, clients, workload_dir):
        text = "name: api\ntype: Backend Service\nimage:\n  location: nginx\n"
        out = BackendServiceDeployer(make_input(text, workload_dir), clients).upload_artifacts()

        clients.image_pusher.build_and_push.assert_not_called()
        assert out.image_digests == {}
        assert out.env_file_arn is None
        assert out.addons_url is None

    def test_failed_push_names_the_phase(self, clients, workload_dir):
        clients.image_pusher.build_and_push.side_effect = CollaboratorError("push container image", "repo")

        with pytest.raises(UploadPhaseError) as exc:
            BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients).upload_artifacts()

        assert exc.value.phase == IMAGES_PHASE
        clients.uploader.upload.assert_not_called()

    def test_failed_s3_upload_keeps_image_result(self, clients, workload_dir):
        clients.uploader.upload.side_effect = CollaboratorError("upload object", "s3://shop-artifacts/x")

        with pytest.raises(UploadPhaseError) as exc:
            BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients).upload_artifacts()

        assert exc.value.phase == CUSTOM_RESOURCES_PHASE
        assert exc.value.partial.image_digests == {"api": "sha256:" + "a" * 64}

    def test_missing_env_file(self, clients, workload_dir):
        text = BACKEND_MANIFEST + "env_file: missing.env\n"
        with pytest.raises(UploadPhaseError) as exc:
            BackendServiceDeployer(make_input(text, workload_dir), clients).upload_artifacts()
        assert exc.value.phase == S3_PHASE

    def test_missing_bundle_is_fatal(self, clients, workload_dir):
        clients = replace(clients, template_reader=FakeTemplateReader(missing={"custom-resources/env-controller.js"}))
        with pytest.raises(CustomResourceBundleError):
            BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients).upload_artifacts()

    def test_planned_artifacts_match_uploads_without_uploading(self, clients, workload_dir):
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients)

        planned = deployer.planned_artifacts()
        clients.uploader.upload.assert_not_called()

        uploaded = deployer.upload_artifacts()
        assert planned.custom_resource_urls == uploaded.custom_resource_urls


class TestValidate:
    def test_renders_the_stack_without_uploading(self, clients, workload_dir):
        factory = Mock(return_value=StubStack())
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients, stack_factory=factory)

        result = deployer.validate()

        assert result.imported_alb is None
        config, _ = factory.call_args[0]
        assert dict(config.runtime.custom_resource_urls) == deployer.planned_artifacts().custom_resource_urls
        clients.uploader.upload.assert_not_called()
        clients.image_pusher.build_and_push.assert_not_called()

    def test_bad_override_patch(self, clients, workload_dir):
        (workload_dir / "overrides").mkdir()
        (workload_dir / "overrides" / "cfn.patches.yml").write_text(
            "- op: replace\n  path: /Resources/DoesNotExist/Type\n  value: AWS::SQS::Queue\n"
        )
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients)

        with pytest.raises(TemplateOverrideError) as exc:
            deployer.validate()
        assert exc.value.index == 0

    @pytest.mark.parametrize("settings", [
        'on:\n  schedule: "every day"\n',
        "on:\n  schedule: '@daily'\ntimeout: soon\n",
    ])
    def test_bad_job_settings(self, clients, workload_dir, settings):
        text = "name: api\ntype: Scheduled Job\nimage:\n  build: api\n" + settings
        deployer = ScheduledJobDeployer(make_input(text, workload_dir), clients)

        with pytest.raises(InvalidManifestError):
            deployer.validate()
        clients.uploader.upload.assert_not_called()

    def test_unreadable_env_file(self, clients, workload_dir):
        text = BACKEND_MANIFEST + "env_file: missing.env\n"
        deployer = BackendServiceDeployer(make_input(text, workload_dir), clients)

        with pytest.raises(InvalidManifestError, match="missing.env"):
            deployer.validate()


class TestGenerateTemplate:
    def test_dry_run_never_uploads_or_deploys(self, clients, workload_dir):
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients)

        out = deployer.generate_cloudformation_template(GenerateCloudFormationTemplateInput(runtime=runtime()))

        assert "AWS::ECS::Service" in out.template
        assert '"AppName": "shop"' in out.parameters
        clients.uploader.upload.assert_not_called()
        clients.stack_engine.deploy_stack.assert_not_called()
        clients.image_pusher.build_and_push.assert_not_called()

    def test_dry_run_validates(self, clients, workload_dir):
        clients.lb_getter.load_balancer.return_value = make_lb(scheme="internet-facing")
        deployer = BackendServiceDeployer(make_input(IMPORTED_ALB_MANIFEST, workload_dir), clients)

        with pytest.raises(ImportedALBSchemeError):
            deployer.generate_cloudformation_template(GenerateCloudFormationTemplateInput(runtime=runtime()))

    def test_overrides_are_applied(self, clients, workload_dir):
        (workload_dir / "overrides").mkdir()
        (workload_dir / "overrides" / "cfn.patches.yml").write_text(
            "- op: add\n  path: /Resources/Service/Properties/EnableExecuteCommand\n  value: true\n"
        )
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients)

        out = deployer.generate_cloudformation_template(GenerateCloudFormationTemplateInput(runtime=runtime()))

        assert "EnableExecuteCommand: true" in out.template

    def test_stack_factory_replaces_assembly(self, clients, workload_dir):
        factory = Mock(return_value=StubStack())
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients, stack_factory=factory)

        out = deployer.generate_cloudformation_template(GenerateCloudFormationTemplateInput(runtime=runtime()))

        assert out.template == "Resources: {}\n"
        config, imported_alb = factory.call_args[0]
        assert config.manifest.name == "api"
        assert imported_alb is None


class TestDeployWorkload:
    def test_validates_once_then_deploys(self, clients, workload_dir):
        lb = make_lb(protocols=("HTTP", "HTTPS"))
        clients.lb_getter.load_balancer.return_value = lb
        factory = Mock(return_value=StubStack())
        deployer = BackendServiceDeployer(make_input(IMPORTED_ALB_MANIFEST, workload_dir), clients,
                                          stack_factory=factory)

        recommender = deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))

        clients.lb_getter.load_balancer.assert_called_once_with("imported")
        assert factory.call_args[0][1] == lb
        clients.stack_engine.deploy_stack.assert_called_once()
        _, kwargs = clients.stack_engine.deploy_stack.call_args
        assert kwargs["role_arn"] == make_target().env.execution_role_arn
        assert kwargs["bucket"] == "shop-artifacts"
        assert isinstance(recommender, NoopActionRecommender)

    def test_each_call_fetches_a_fresh_snapshot(self, clients, workload_dir):
        clients.lb_getter.load_balancer.return_value = make_lb()
        deployer = BackendServiceDeployer(make_input(IMPORTED_ALB_MANIFEST, workload_dir), clients,
                                          stack_factory=Mock(return_value=StubStack()))

        deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))
        deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))

        assert clients.lb_getter.load_balancer.call_args_list == [call("imported"), call("imported")]

    def test_internet_facing_alb_never_reaches_the_engine(self, clients, workload_dir):
        lb = make_lb(scheme="internet-facing", protocols=("HTTP", "HTTPS"))
        clients.lb_getter.load_balancer.return_value = lb
        deployer = BackendServiceDeployer(make_input(IMPORTED_ALB_MANIFEST, workload_dir), clients)

        with pytest.raises(ImportedALBSchemeError) as exc:
            deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))

        assert exc.value.arn == lb.arn
        assert exc.value.expected == "internal"
        clients.stack_engine.deploy_stack.assert_not_called()

    def test_no_http_goes_straight_to_build_and_deploy(self, clients, workload_dir):
        factory = Mock(return_value=StubStack())
        deployer = BackendServiceDeployer(make_input(BACKEND_MANIFEST, workload_dir), clients, stack_factory=factory)

        deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))

        clients.lb_getter.load_balancer.assert_not_called()
        clients.cert_validator.validate_cert_aliases.assert_not_called()
        factory.assert_called_once()
        clients.stack_engine.deploy_stack.assert_called_once()

    def test_alias_failure_blocks_deploy(self, clients, workload_dir):
        text = BACKEND_MANIFEST + "http:\n  path: /api\n"
        target = make_target(private_certs=("arn:cert",))
        deployer = BackendServiceDeployer(make_input(text, workload_dir, target=target), clients)

        with pytest.raises(RoutingRuleError):
            deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))
        clients.stack_engine.deploy_stack.assert_not_called()

    def test_job_is_never_force_updated(self, clients, workload_dir):
        text = "name: api\ntype: Scheduled Job\nimage:\n  build: api\non:\n  schedule: '@daily'\n"
        deployer = ScheduledJobDeployer(make_input(text, workload_dir), clients,
                                        stack_factory=Mock(return_value=StubStack()))

        deployer.deploy_workload(DeployWorkloadInput(runtime=runtime(), options=DeployOptions(force_new_update=True)))

        clients.service_updater.force_update.assert_not_called()
        clients.service_updater.last_updated_at.assert_not_called()


class TestRecommenders:
    def test_worker_recommends_queue_consumer(self, clients, workload_dir):
        text = "name: api\ntype: Worker Service\nimage:\n  build: api\nsubscribe:\n  topics:\n" \
               "    - name: orders\n      service: shop\n"
        deployer = WorkerServiceDeployer(make_input(text, workload_dir), clients,
                                         stack_factory=Mock(return_value=StubStack()))

        recommender = deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))

        assert isinstance(recommender, QueueRecommender)
        assert "STACKPILOT_QUEUE_URI" in recommender.recommended_actions()[0]

    def test_web_service_with_imported_certs_recommends_dns(self, clients, workload_dir):
        text = "name: api\ntype: Load Balanced Web Service\nimage:\n  build: api\nhttp:\n  path: /\n" \
               "  alias: shop.example.com\n"
        target = make_target(public_certs=("arn:cert",))
        deployer = LoadBalancedWebServiceDeployer(make_input(text, workload_dir, target=target), clients,
                                                  stack_factory=Mock(return_value=StubStack()))

        recommender = deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))

        assert isinstance(recommender, DNSAliasRecommender)
        assert recommender.recommended_actions() == [
            'Update the DNS record of "shop.example.com" to point to the load balancer of environment "test".'
        ]

    def test_web_service_under_app_domain_has_no_follow_up(self, clients, workload_dir):
        text = "name: api\ntype: Load Balanced Web Service\nimage:\n  build: api\nhttp:\n  path: /\n" \
               "  alias: shop.example.com\n"
        deployer = LoadBalancedWebServiceDeployer(
            make_input(text, workload_dir, target=make_target(domain="example.com")), clients,
            stack_factory=Mock(return_value=StubStack()),
        )

        recommender = deployer.deploy_workload(DeployWorkloadInput(runtime=runtime()))
        assert recommender.recommended_actions() == []


class TestStackRuntimeConfiguration:
    def test_from_upload_output(self):
        out = UploadArtifactsOutput(image_digests={"api": "sha256:1"}, env_file_arn="arn:aws:s3:::b/k",
                                    addons_url="https://b/a.yml", custom_resource_urls={"F": "u"})

        rt = stack_runtime_configuration(out, "api", {"team": "x"})

        assert rt.env_file_arns == {"api": "arn:aws:s3:::b/k"}
        assert rt.addons_url == "https://b/a.yml"
        assert rt.tags == {"team": "x"}
