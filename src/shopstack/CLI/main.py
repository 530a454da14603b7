# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for shopstack.
"""
import functools
import logging
import os
import sys
import time

import click

from ..BLUEPRINTS import ecommerce
from ..CONVERTERS.stack_renderer import COMPOSE_FILENAME, StackRenderer
from ..CONVERTERS.to_compose import ComposeConverter
from ..MANAGERS.acceptance import AcceptanceSuite
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.network_manager import NetworkManager
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MANAGERS.topology_validator import TopologyValidator
from ..PARSERS.compose_parser import ComposeParser
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..PARSERS.nginx_parser import NginxParser
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.engine_client import DockerEngineClient, MockEngineClient
from ..UTILS.log_setup import configure_logging
from ..exceptions import StackException, TopologyError

log = logging.getLogger(__name__)

# Engine state kept inside the workdir
STATE_DIR = ".shopstack"


def handle_errors(func):
    """Turns shopstack errors into a one-line message and exit code 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TopologyError as e:
            click.echo("Error: invalid topology", err=True)
            for problem in e.problems:
                click.echo(f"  - {problem}", err=True)
            sys.exit(1)
        except StackException as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option('--env-file', '-e', multiple=True, default=['.env'], show_default=True,
              help='Environment file(s) supplying the deployment variables')
@click.option('--workdir', '-w', default='.', show_default=True,
              help='Directory holding the compose file and build contexts')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.option('--dry-run', is_flag=True, help='Use an in-memory engine instead of docker')
@click.pass_context
def cli(ctx, env_file, workdir, verbose, dry_run):
    """
    shopstack - deployment topology for the e-commerce demo.

    Declares the cache, API and static asset services, renders their
    manifests and drives the container engine.
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['env_files'] = list(env_file)
    ctx.obj['workdir'] = workdir
    ctx.obj['dry_run'] = dry_run


def _stack(ctx, wait_ready=True):
    settings = EnvironmentManager(ctx.obj['workdir']).load_settings(ctx.obj['env_files'])
    return settings, ecommerce.build_topology(settings, wait_ready=wait_ready)


def _orchestrator(ctx, wait_ready=True, monitor=False):
    """
    The engine works from a manifest kept in the .shopstack directory of the
    workdir; files written by 'render' or by hand are left alone.
    """
    settings, config = _stack(ctx, wait_ready)
    workdir = ctx.obj['workdir']
    variables = settings.as_environment()
    state_dir = os.path.join(workdir, STATE_DIR)
    os.makedirs(state_dir, exist_ok=True)
    compose_file = ComposeConverter(config, variables).write(os.path.join(state_dir, COMPOSE_FILENAME))
    dry_run = ctx.obj['dry_run']
    if dry_run:
        engine = MockEngineClient(config.project_name)
    else:
        engine = DockerEngineClient(config.project_name, project_dir=os.path.abspath(workdir),
                                    environment=variables)
    return ServiceOrchestrator(config, engine, compose_file, base_dir=workdir,
                               wait_ready=wait_ready, monitor=monitor, check_host=not dry_run)


@cli.command()
@click.option('--out', '-o', default=None, help='Output directory (defaults to the workdir)')
@click.pass_context
@handle_errors
def render(ctx, out):
    """Write docker-compose.yml, the Dockerfiles and nginx.conf."""
    settings, config = _stack(ctx)
    TopologyValidator(ctx.obj['workdir']).validate(config)
    renderer = StackRenderer(config, variables=settings.as_environment())
    for path in renderer.render(out or ctx.obj['workdir']):
        click.echo(path)


@cli.command()
@click.option('--resolved', is_flag=True, help='Print the values of the variables instead of references')
@click.pass_context
@handle_errors
def config(ctx, resolved):
    """Print the compose manifest after checking every variable is supplied."""
    settings, topology = _stack(ctx)
    variables = None if resolved else settings.as_environment()
    click.echo(ComposeConverter(topology, variables).render(), nl=False)


@cli.command()
@click.option('--file', '-f', 'compose_file', default=None,
              help='Validate an existing compose file instead of the built-in topology')
@click.pass_context
@handle_errors
def validate(ctx, compose_file):
    """Check a topology and its build recipes against the deployment invariants."""
    workdir = ctx.obj['workdir']
    env = EnvironmentManager(workdir).get_merged_environment(ctx.obj['env_files'])
    if compose_file:
        topology = ComposeParser(env).parse(compose_file)
        base_dir = os.path.dirname(os.path.abspath(compose_file))
    else:
        _, topology = _stack(ctx)
        base_dir = workdir
    TopologyValidator(base_dir).validate(topology)

    problems = []
    parser = DockerfileParser()
    for name, svc in topology.services.items():
        if svc.build is None:
            continue
        path = os.path.join(base_dir, svc.build.context, svc.build.dockerfile)
        if not os.path.exists(path):
            log.info("No Dockerfile at %s, skipping recipe checks for %s", path, name)
            continue
        with open(path) as f:
            recipe = parser.parse_recipe(f.read(), name)
        problems += recipe.check_contract(require_non_root=(name == ecommerce.API_SERVICE))
        nginx_conf = os.path.join(base_dir, svc.build.context, "nginx.conf")
        if os.path.exists(nginx_conf):
            NginxParser().parse(nginx_conf)
    if problems:
        raise TopologyError(problems)

    click.echo(f"Topology OK: {', '.join(topology.services)}")
    for name, svc in topology.services.items():
        for line in TopologyValidator(base_dir).volume_manager.describe(svc.bind_mounts):
            click.echo(f"  {name}: {line}")

    network_manager = NetworkManager()
    network_manager.plan(topology, DependencyResolver().resolve_order(topology))
    for name, svc in topology.services.items():
        for net in svc.networks:
            address = network_manager.resolve_hostname(name, net)
            if address:
                click.echo(f"  {name}: {address} on {net}")


@cli.command()
@click.option('--no-wait-ready', is_flag=True, help='Only order starts, do not wait for dependency health')
@click.option('--build/--no-build', default=True, show_default=True, help='Build images first')
@click.option('--detach', '-d', is_flag=True, help='Return once services are started')
@click.pass_context
@handle_errors
def up(ctx, no_wait_ready, build, detach):
    """Start services in dependency order."""
    orchestrator = _orchestrator(ctx, wait_ready=not no_wait_ready, monitor=not detach)
    if build:
        orchestrator.build()
    orchestrator.up()
    click.echo("Services started.")
    if detach:
        return
    click.echo("Monitoring... Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping services...")
        orchestrator.down()


@cli.command()
@click.pass_context
@handle_errors
def down(ctx):
    """Stop and remove services. Uploaded files are kept."""
    _orchestrator(ctx).down()
    click.echo("Services stopped.")


@cli.command()
@click.pass_context
@handle_errors
def ps(ctx):
    """List service status"""
    orchestrator = _orchestrator(ctx)
    click.echo(f"{'SERVICE':15} {'STATUS':10}")
    click.echo("-" * 25)
    for name, state in orchestrator.ps().items():
        click.echo(f"{name:15} {state:10}")


@cli.command()
@click.pass_context
@handle_errors
def health(ctx):
    """Run every health probe once."""
    orchestrator = _orchestrator(ctx)
    failed = False
    for name, svc in orchestrator.config.services.items():
        hc = svc.health_check
        if hc is None or hc.disabled:
            click.echo(f"{name:15} no probe")
            continue
        result = orchestrator.engine.exec_probe(orchestrator.container(name), hc.test, hc.timeout)
        failed = failed or not result.success
        click.echo(f"{name:15} {'ok' if result.success else 'FAIL'} {result.output.strip()}")
    if failed:
        sys.exit(1)


@cli.command()
@click.option('--url', default=None, help='Base URL of the static server')
@click.pass_context
@handle_errors
def check(ctx, url):
    """Run the deployment acceptance checks against the running stack."""
    orchestrator = _orchestrator(ctx)
    orchestrator.plan()
    results = AcceptanceSuite(orchestrator).run(url)
    for r in results:
        click.echo(f"{'PASS' if r.passed else 'FAIL':5} {r.name:30} {r.detail}")
    if not all(r.passed for r in results):
        sys.exit(1)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
