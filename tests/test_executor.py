"""
Tests for DeployExecutor and the recommenders.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from stackpilot.deploy import DeployExecutor, DeployOptions, DNSAliasRecommender, QueueRecommender
from stackpilot.errors import EmptyChangeSetError, NoInfrastructureChangesError, StackExecutionError
from stackpilot.manifest import Topic

STARTED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_conf():
    conf = Mock()
    conf.stack_name.return_value = "shop-test-api"
    return conf


def make_executor(updater=None, engine=None):
    return DeployExecutor(engine or Mock(), "shop-artifacts", "arn:role", updater)


class TestExecute:
    def test_passes_options_to_engine(self):
        engine = Mock()
        conf = make_conf()

        make_executor(engine=engine).execute(conf, "shop", "test", "api",
                                             DeployOptions(detach=True, disable_rollback=True), STARTED)

        engine.deploy_stack.assert_called_once_with(conf, bucket="shop-artifacts", role_arn="arn:role",
                                                    detach=True, disable_rollback=True)

    def test_empty_change_set_without_force(self):
        engine = Mock()
        engine.deploy_stack.side_effect = EmptyChangeSetError("shop-test-api")

        with pytest.raises(NoInfrastructureChangesError) as exc:
            make_executor(engine=engine).execute(make_conf(), "shop", "test", "api", DeployOptions(), STARTED)

        assert exc.value.stack_name == "shop-test-api"
        assert isinstance(exc.value.__cause__, EmptyChangeSetError)

    def test_empty_change_set_with_force_updates_stale_service(self):
        engine = Mock()
        engine.deploy_stack.side_effect = EmptyChangeSetError("shop-test-api")
        updater = Mock()
        updater.last_updated_at.return_value = STARTED - timedelta(days=1)

        make_executor(updater, engine).execute(make_conf(), "shop", "test", "api",
                                               DeployOptions(force_new_update=True), STARTED)

        updater.force_update.assert_called_once_with("shop", "test", "api")

    def test_force_skipped_when_service_already_redeployed(self):
        updater = Mock()
        updater.last_updated_at.return_value = STARTED + timedelta(seconds=30)

        make_executor(updater).execute(make_conf(), "shop", "test", "api",
                                       DeployOptions(force_new_update=True), STARTED)

        updater.force_update.assert_not_called()

    def test_no_force_update_without_flag(self):
        updater = Mock()

        make_executor(updater).execute(make_conf(), "shop", "test", "api", DeployOptions(), STARTED)

        updater.last_updated_at.assert_not_called()
        updater.force_update.assert_not_called()

    def test_force_without_updater_is_skipped(self, caplog):
        make_executor().execute(make_conf(), "shop", "test", "api", DeployOptions(force_new_update=True), STARTED)
        assert "cannot be force updated" in caplog.text

    def test_engine_failure_propagates(self):
        engine = Mock()
        engine.deploy_stack.side_effect = StackExecutionError("deploy stack", "shop-test-api", "ROLLBACK_COMPLETE")
        updater = Mock()

        with pytest.raises(StackExecutionError):
            make_executor(updater, engine).execute(make_conf(), "shop", "test", "api",
                                                   DeployOptions(force_new_update=True), STARTED)
        updater.force_update.assert_not_called()


class TestRecommenders:
    def test_dns_alias_with_lb_name(self):
        rec = DNSAliasRecommender(["a.example.com", "b.example.com"], "test", "lb-1.elb.amazonaws.com")
        assert rec.recommended_actions() == [
            'Update the DNS record of "a.example.com" to point to "lb-1.elb.amazonaws.com".',
            'Update the DNS record of "b.example.com" to point to "lb-1.elb.amazonaws.com".',
        ]

    def test_queue_without_topics(self):
        assert QueueRecommender("worker", []).recommended_actions() == []

    def test_queue_names_topics(self):
        rec = QueueRecommender("worker", [Topic(name="orders", service="shop")])
        [action] = rec.recommended_actions()
        assert "shop/orders" in action
        assert "worker" in action
