"""
Deploy driver: ties manifest loading, the deployers and the journal together.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .aws.sessions import default_session, env_session
from .deploy import (
    DeployClients,
    DeployOptions,
    DeployWorkloadInput,
    GenerateCloudFormationTemplateInput,
    VariantDeployer,
    WorkloadDeployerInput,
    deployer_for,
    stack_runtime_configuration,
)
from .environment import DeployTarget, load_deploy_target
from .errors import NoInfrastructureChangesError, StackpilotError, ValidationError
from .events import EventTypes, emit_event, get_status_from_events, read_events
from .ids import new_deployment_id
from .manifest import WorkloadManifest, load_manifest
from .state import create_deployment_dir, read_request_json, read_result_json, write_request_json, write_result_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployRequest:
    """
    Attributes:
        manifest_path: Workload manifest; its directory holds addons/ and overrides/
        env_config_path: Environment description YAML
        workspace: Root that image build contexts and env files are relative to
        profile: AWS named profile
        image_tag: Extra image tag
        tags: User tags added to the stack
    """
    manifest_path: Path
    env_config_path: Path
    workspace: Path = Path(".")
    profile: Optional[str] = None
    image_tag: Optional[str] = None
    tags: Optional[Dict[str, str]] = None


def build_clients(target: DeployTarget, profile: Optional[str] = None) -> DeployClients:
    """Production clients for a deploy to the target environment."""
    base = default_session(profile, target.env.region)
    return DeployClients.from_sessions(base, env_session(base, target.env))


def _load(request: DeployRequest):
    text = request.manifest_path.read_text()
    mft: WorkloadManifest = load_manifest(text, str(request.manifest_path))
    target = load_deploy_target(request.env_config_path)
    return text, mft, target


def _deployer(request: DeployRequest, text: str, mft: WorkloadManifest, target: DeployTarget,
              clients: DeployClients) -> VariantDeployer:
    return deployer_for(WorkloadDeployerInput(
        target=target,
        manifest=mft,
        raw_manifest=text,
        workspace=request.workspace,
        workload_dir=request.manifest_path.parent,
        image_tag=request.image_tag,
    ), clients)


def deploy(request: DeployRequest, options: DeployOptions = DeployOptions(),
           deployment_id: Optional[str] = None, clients: Optional[DeployClients] = None) -> Dict[str, Any]:
    """
    Deploy one workload.

    Stages run strictly in order: region check, validation, artifact upload,
    stack deploy (which validates again with fresh lookups). Each stage is
    journalled under the deployment directory.

    Args:
        request: What to deploy
        options: Force update, rollback and detach options
        deployment_id: Optional deployment ID (generated if not provided)
        clients: Collaborators; built from boto3 sessions when omitted

    Returns:
        Deployment result dictionary

    Raises:
        StackpilotError: Any failure, after it has been journalled
    """
    text, mft, target = _load(request)
    if deployment_id is None:
        deployment_id = new_deployment_id()

    create_deployment_dir(deployment_id)
    write_request_json(deployment_id, target.app.name, target.env.name, mft.name, mft.type,  # type: ignore[attr-defined]
                       str(request.manifest_path))
    emit_event(deployment_id, EventTypes.INIT, {
        "deployment_id": deployment_id,
        "app": target.app.name,
        "environment": target.env.name,
        "workload": mft.name,
        "kind": mft.type,  # type: ignore[attr-defined]
    })

    try:
        if clients is None:
            clients = build_clients(target, request.profile)
        deployer = _deployer(request, text, mft, target, clients)

        if not deployer.is_service_available_in_region(target.env.region):
            raise ValidationError(f'{mft.type} is not available in region "{target.env.region}"')  # type: ignore[attr-defined]
        emit_event(deployment_id, EventTypes.REGION_CHECKED, {"region": target.env.region})

        validation = deployer.validate()
        emit_event(deployment_id, EventTypes.VALIDATED, {
            "imported_alb": validation.imported_alb.arn if validation.imported_alb else None,
        })

        uploaded = deployer.upload_artifacts()
        emit_event(deployment_id, EventTypes.ARTIFACTS_UPLOADED, {
            "images": uploaded.image_digests,
            "env_file": uploaded.env_file_arn,
            "addons": uploaded.addons_url,
            "custom_resources": sorted(uploaded.custom_resource_urls),
        })

        emit_event(deployment_id, EventTypes.STACK_DEPLOY_START, {"force": options.force_new_update})
        recommender = deployer.deploy_workload(DeployWorkloadInput(
            runtime=stack_runtime_configuration(uploaded, mft.name, request.tags),
            options=options,
        ))
        emit_event(deployment_id, EventTypes.STACK_DEPLOYED, {
            "stack": f"{target.app.name}-{target.env.name}-{mft.name}",
        })

        actions = recommender.recommended_actions()
        if actions:
            emit_event(deployment_id, EventTypes.RECOMMENDATIONS, {"actions": actions})
    except NoInfrastructureChangesError as e:
        emit_event(deployment_id, EventTypes.NO_CHANGES, {"stack": e.stack_name, "hint": "use --force"})
        raise
    except StackpilotError as e:
        emit_event(deployment_id, EventTypes.ERROR, {"reason": str(e), "error": type(e).__name__})
        raise

    result = {
        "deployment_id": deployment_id,
        "status": get_status_from_events(deployment_id),
        "stack": f"{target.app.name}-{target.env.name}-{mft.name}",
        "recommended_actions": actions,
    }
    write_result_json(deployment_id, result)
    logger.info(f"Deployment {deployment_id} finished")
    return result


def render_template(request: DeployRequest, upload_assets: bool = False,
                    clients: Optional[DeployClients] = None) -> Dict[str, str]:
    """
    Render the workload's template and parameters without deploying.

    Args:
        request: What to render
        upload_assets: Upload artifacts first so the template references real objects;
            otherwise the locations an upload would use are computed
        clients: Collaborators; built from boto3 sessions when omitted

    Returns:
        {"template": ..., "parameters": ...}
    """
    text, mft, target = _load(request)
    if clients is None:
        clients = build_clients(target, request.profile)
    deployer = _deployer(request, text, mft, target, clients)

    if upload_assets:
        deployer.validate()
        artifacts = deployer.upload_artifacts()
    else:
        artifacts = deployer.planned_artifacts()
    output = deployer.generate_cloudformation_template(GenerateCloudFormationTemplateInput(
        runtime=stack_runtime_configuration(artifacts, mft.name, request.tags),
    ))
    return {"template": output.template, "parameters": output.parameters}


def status(deployment_id: str) -> Dict[str, Any]:
    """
    Raises:
        FileNotFoundError: If the deployment does not exist
    """
    request = read_request_json(deployment_id)
    events = read_events(deployment_id)
    result: Dict[str, Any] = {
        "deployment_id": deployment_id,
        "status": get_status_from_events(deployment_id),
        "request": request,
        "result": read_result_json(deployment_id),
    }
    errors = [e for e in events if e.get("type") == EventTypes.ERROR]
    if errors:
        result["failure_reason"] = errors[-1].get("data", {}).get("reason")
    return result
