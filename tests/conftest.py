"""
Shared builders for stackpilot tests.
"""

from pathlib import Path
from typing import Tuple
from unittest.mock import Mock

import pytest
import yaml

from stackpilot.aws.elbv2 import ImportedLoadBalancer, Listener
from stackpilot.deploy import DeployClients
from stackpilot.environment import App, DeployTarget, Environment, EnvironmentConfig, StackResources

BACKEND_MANIFEST = """\
name: api
type: Backend Service
image:
  build: api
  port: 8080
"""


def make_target(private_certs: Tuple[str, ...] = (), public_certs: Tuple[str, ...] = (),
                domain=None) -> DeployTarget:
    return DeployTarget(
        app=App(name="shop", domain=domain),
        env=Environment(
            name="test",
            region="us-west-2",
            account_id="123456789012",
            execution_role_arn="arn:aws:iam::123456789012:role/shop-test-CFNExecutionRole",
            config=EnvironmentConfig(private_certificates=private_certs, public_certificates=public_certs),
        ),
        resources=StackResources(
            s3_bucket="shop-artifacts",
            kms_key_arn="arn:aws:kms:us-west-2:123456789012:key/abc",
            repositories={"api": "123456789012.dkr.ecr.us-west-2.amazonaws.com/shop/api"},
        ),
    )


def make_lb(scheme: str = "internal", protocols=("HTTP",), name: str = "imported") -> ImportedLoadBalancer:
    arn = f"arn:aws:elasticloadbalancing:us-west-2:123456789012:loadbalancer/app/{name}/1234"
    return ImportedLoadBalancer(
        arn=arn,
        name=name,
        scheme=scheme,
        dns_name=f"{name}-1234.us-west-2.elb.amazonaws.com",
        listeners=tuple(
            Listener(arn=f"{arn}/listener/{i}", protocol=p, port=443 if p == "HTTPS" else 80)
            for i, p in enumerate(protocols)
        ),
    )


class FakeTemplateReader:
    """Returns fixed content for every custom resource script."""

    def __init__(self, missing=()):
        self.missing = set(missing)
        self.paths = []

    def read(self, path: str) -> bytes:
        self.paths.append(path)
        if path in self.missing:
            raise FileNotFoundError(path)
        return f"// {path}\n".encode()


def make_stack_engine() -> Mock:
    """A stack engine that renders what it is handed, like CloudFormation does."""
    engine = Mock()
    engine.rendered = []

    def deploy_stack(conf, **kwargs):
        engine.rendered.append((yaml.safe_load(conf.template()), conf.parameters()))

    engine.deploy_stack.side_effect = deploy_stack
    return engine


def make_uploader() -> Mock:
    uploader = Mock()
    uploader.upload.side_effect = lambda bucket, key, body: f"https://{bucket}.s3.us-west-2.amazonaws.com/{key}"
    return uploader


@pytest.fixture
def clients() -> DeployClients:
    regions = Mock()
    regions.is_available_in_region.return_value = True
    regions.partition_for_region.return_value = "aws"
    image_pusher = Mock()
    image_pusher.build_and_push.return_value = "sha256:" + "a" * 64
    return DeployClients(
        lb_getter=Mock(),
        cert_validator=Mock(),
        regions=regions,
        uploader=make_uploader(),
        image_pusher=image_pusher,
        stack_engine=make_stack_engine(),
        service_updater=Mock(),
        template_reader=FakeTemplateReader(),
    )


@pytest.fixture
def workload_dir(tmp_path) -> Path:
    d = tmp_path / "api"
    d.mkdir()
    return d
