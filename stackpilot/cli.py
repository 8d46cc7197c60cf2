"""
Click CLI for stackpilot deployments.

Exit codes: 0 success, 2 validation error, 3 configuration error, 1 anything else.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from .deploy import DeployOptions
from .errors import ConfigurationError, NoInfrastructureChangesError, StackpilotError, ValidationError
from .events import read_events
from .ids import is_valid_deployment_id
from .orchestrator import DeployRequest, deploy, render_template, status
from .state import list_deployments
from .tags import parse_user_tags

EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_CONFIGURATION = 3


def exit_code_for(error: Exception) -> int:
    if isinstance(error, ValidationError):
        return EXIT_VALIDATION
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIGURATION
    return EXIT_FAILURE


def _fail(error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    cause = error.__cause__
    if cause is not None:
        click.echo(f"Caused by: {cause}", err=True)
    sys.exit(exit_code_for(error))


def _request(manifest: str, env_config: str, workspace: str, profile: Optional[str],
             image_tag: Optional[str], tags: tuple) -> DeployRequest:
    try:
        user_tags = parse_user_tags(list(tags)) if tags else None
    except ValueError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_VALIDATION)
    return DeployRequest(
        manifest_path=Path(manifest),
        env_config_path=Path(env_config),
        workspace=Path(workspace),
        profile=profile,
        image_tag=image_tag,
        tags=user_tags,
    )


def workload_options(f):
    f = click.option("--tag", "tags", multiple=True, help="Stack tags in format 'key=value' (repeatable)")(f)
    f = click.option("--image-tag", help="Additional tag for the container image")(f)
    f = click.option("--profile", help="AWS named profile")(f)
    f = click.option("--workspace", default=".", show_default=True, type=click.Path(exists=True, file_okay=False),
                     help="Directory image build contexts and env files are relative to")(f)
    f = click.option("--env-config", required=True, type=click.Path(exists=True, dir_okay=False),
                     help="Environment description YAML")(f)
    f = click.option("--manifest", "-m", required=True, type=click.Path(exists=True, dir_okay=False),
                     help="Workload manifest")(f)
    return f


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """
    stackpilot - deploy container workloads to AWS with CloudFormation.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("deploy")
@workload_options
@click.option("--force", is_flag=True, help="Force a new service deployment even without infrastructure changes")
@click.option("--disable-rollback", is_flag=True, help="Keep failed resources for debugging")
@click.option("--detach", is_flag=True, help="Do not wait for the stack operation to finish")
@click.option("--id", "deployment_id", help="Optional deployment ID")
def deploy_cmd(manifest: str, env_config: str, workspace: str, profile: Optional[str], image_tag: Optional[str],
               tags: tuple, force: bool, disable_rollback: bool, detach: bool, deployment_id: Optional[str]):
    """
    Validate, upload artifacts and deploy a workload stack.
    """
    request = _request(manifest, env_config, workspace, profile, image_tag, tags)
    options = DeployOptions(force_new_update=force, disable_rollback=disable_rollback, detach=detach)
    try:
        result = deploy(request, options, deployment_id=deployment_id)
    except NoInfrastructureChangesError as e:
        click.echo(str(e), err=True)
        sys.exit(0)
    except (StackpilotError, OSError) as e:
        _fail(e)
        return

    print(json.dumps(result, indent=2))
    for action in result.get("recommended_actions", []):
        click.echo(f"Recommended follow-up: {action}", err=True)


@main.command("template")
@workload_options
@click.option("--upload-assets", is_flag=True, help="Upload artifacts so the template references real objects")
@click.option("--output-dir", type=click.Path(file_okay=False), help="Write template and parameters here instead of stdout")
def template_cmd(manifest: str, env_config: str, workspace: str, profile: Optional[str], image_tag: Optional[str],
                 tags: tuple, upload_assets: bool, output_dir: Optional[str]):
    """
    Render a workload's CloudFormation template without deploying it.
    """
    request = _request(manifest, env_config, workspace, profile, image_tag, tags)
    try:
        rendered = render_template(request, upload_assets=upload_assets)
    except (StackpilotError, OSError) as e:
        _fail(e)
        return

    if not output_dir:
        click.echo(rendered["template"])
        click.echo("---", err=True)
        click.echo(rendered["parameters"], err=True)
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    name = request.manifest_path.parent.name or "workload"
    (out / f"{name}.stack.yml").write_text(rendered["template"])
    (out / f"{name}.params.json").write_text(rendered["parameters"])
    click.echo(f"Wrote {out / f'{name}.stack.yml'} and {out / f'{name}.params.json'}")


@main.command("status")
@click.argument("deployment_id", required=False)
@click.option("--format", "output_format", type=click.Choice(["json", "human"]), default="human", help="Output format")
def status_cmd(deployment_id: Optional[str], output_format: str):
    """
    Show a deployment's status, or list deployments when no ID is given.
    """
    if deployment_id is None:
        for d in list_deployments():
            click.echo(d)
        return

    if not is_valid_deployment_id(deployment_id):
        click.echo(f"Invalid deployment ID: {deployment_id}", err=True)
        sys.exit(EXIT_FAILURE)

    try:
        result = status(deployment_id)
    except FileNotFoundError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_FAILURE)

    if output_format == "json":
        print(json.dumps(result, indent=2))
        return

    request = result["request"]
    click.echo(f"Deployment: {deployment_id}")
    click.echo(f"Workload:   {request['app']}/{request['environment']}/{request['workload']} ({request['kind']})")
    click.echo(f"Status:     {result['status'].upper()}")
    events = read_events(deployment_id)
    if events:
        click.echo("Recent events:")
        for event in events[-5:]:
            click.echo(f"  {event.get('ts', 'unknown')}: {event.get('type', 'unknown')}")
    if result.get("failure_reason"):
        click.echo(f"Failure: {result['failure_reason']}")


if __name__ == "__main__":
    main()
