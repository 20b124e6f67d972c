"""Command-line interface for wasmbuild."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, cast

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from wasmbuild import __version__
from wasmbuild.build import BuildOrchestrator, BuildRun, ScanOptions
from wasmbuild.config import WasmbuildConfig, load_config
from wasmbuild.config.schema import ExecutorType
from wasmbuild.console import console
from wasmbuild.errors import BuildError, InvalidManifest
from wasmbuild.executors import EXECUTORS, get_executor
from wasmbuild.manifest import MANIFEST_FILENAME, Manifest, find_manifest, load_manifest
from wasmbuild.manifest.base import BuildStep, Profile

logger = logging.getLogger(__name__)

# Exit status for configuration errors: bad manifest, flags or placeholders
CONFIG_ERROR_EXIT_CODE = 2


def _config_error(message: str) -> SystemExit:
    console.print(f"[red]{escape(message)}[/red]")
    return SystemExit(CONFIG_ERROR_EXIT_CODE)


def _setup_logging() -> None:
    """Send debug logging to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def parse_vars(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated key=value options into a mapping; later keys win."""
    variables: dict[str, str] = {}
    for value in values:
        if "=" not in value:
            raise _config_error(f"Invalid variable '{value}'. Use: --var key=value")
        key, val = value.split("=", 1)
        key = key.strip()
        if not key:
            raise _config_error(f"Invalid variable '{value}': empty name")
        variables[key] = val
    return variables


def _load_config() -> WasmbuildConfig:
    try:
        return load_config()
    except (TypeError, ValueError) as e:
        raise _config_error(f"Invalid configuration: {e}") from None


def _resolve_manifest(manifest_path: Path | None, config: WasmbuildConfig) -> Manifest:
    """Load the manifest from -f, the config, or the nearest wasmbuild.yaml."""
    path = manifest_path
    if path is None and config.manifest:
        path = Path(config.manifest)
    if path is None:
        path = find_manifest()
    if path is None:
        raise _config_error(
            f"No {MANIFEST_FILENAME} found in {Path.cwd()} or its parents "
            "(use --manifest)"
        )
    try:
        manifest = load_manifest(path)
    except InvalidManifest as e:
        raise _config_error(f"Invalid manifest {path}: {e}") from None
    logger.debug("Loaded manifest %s", manifest.source)
    return manifest


def _resolve_template_id(manifest: Manifest, template_id: str | None) -> str:
    """Return template_id, or the only template when none was given."""
    if template_id is not None:
        return template_id
    ids = manifest.template_ids()
    if len(ids) == 1:
        console.print(f"[dim]Auto-selected template: {ids[0]}[/dim]")
        return ids[0]
    raise _config_error(
        f"Manifest defines {len(ids)} templates, specify one: {', '.join(ids)}"
    )


def manifest_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that reads the manifest."""
    return click.option(
        "--manifest",
        "-f",
        "manifest_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        envvar="WASMBUILD_MANIFEST",
        help=f"Manifest file (default: nearest {MANIFEST_FILENAME}).",
    )(func)


def profile_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options that select and resolve a profile."""
    func = click.option(
        "--var",
        "-V",
        "variables",
        multiple=True,
        metavar="KEY=VALUE",
        help="Template variable, e.g. -V component_name=my-component. Repeatable.",
    )(func)
    return click.option(
        "--profile", "-p", help="Profile to use (default: defaultProfile)."
    )(func)


_EXECUTION_OPTIONS = (
    click.option(
        "--executor",
        "-x",
        type=click.Choice(list(EXECUTORS.keys())),
        envvar="WASMBUILD_EXECUTOR",
        help="Executor to use (default: shell).",
    ),
    click.option(
        "--image",
        "-i",
        envvar="WASMBUILD_IMAGE",
        help="Toolchain image. Only for docker executor.",
    ),
    click.option(
        "--timeout",
        type=click.FloatRange(min=0, min_open=True),
        envvar="WASMBUILD_TIMEOUT",
        help="Seconds before a step command is terminated (default: none).",
    ),
    click.option(
        "--follow-symlinks/--no-follow-symlinks",
        default=None,
        envvar="WASMBUILD_FOLLOW_SYMLINKS",
        help="Descend into symlinked directories when checking staleness.",
    ),
    click.option(
        "--ignore-hidden/--no-ignore-hidden",
        default=None,
        envvar="WASMBUILD_IGNORE_HIDDEN",
        help="Skip dot-files inside scanned directories.",
    ),
    click.option(
        "--quiet/--no-quiet",
        "-q",
        default=None,
        envvar="WASMBUILD_QUIET",
        help="Do not echo step output.",
    ),
)


def execution_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options that control how steps run."""
    for option in reversed(_EXECUTION_OPTIONS):
        func = option(func)
    return func


def _make_orchestrator(
    manifest: Manifest,
    config: WasmbuildConfig,
    executor: str | None = None,
    image: str | None = None,
    timeout: float | None = None,
    follow_symlinks: bool | None = None,
    ignore_hidden: bool | None = None,
    quiet: bool | None = None,
) -> BuildOrchestrator:
    """Build an orchestrator from config with CLI values layered on top."""
    effective = config.merge(
        WasmbuildConfig(
            executor=cast(ExecutorType | None, executor),
            image=image,
            timeout=timeout,
            follow_symlinks=follow_symlinks,
            ignore_hidden=ignore_hidden,
            quiet=quiet,
        )
    )
    logger.debug("Effective config: %s", effective.to_dict())

    if image and effective.executor != "docker":
        raise _config_error("--image can only be used with docker executor")
    try:
        step_executor = get_executor(
            effective.executor,
            image=effective.image,
            timeout=effective.timeout,
            quiet=bool(effective.quiet),
            mount_root=manifest.base_dir,
        )
    except ValueError as e:
        raise _config_error(str(e)) from None

    return BuildOrchestrator(
        manifest,
        executor=step_executor,
        scan_options=ScanOptions(
            follow_symlinks=bool(effective.follow_symlinks),
            ignore_hidden=bool(effective.ignore_hidden),
        ),
        quiet=bool(effective.quiet),
    )


def _finish(run: BuildRun) -> None:
    """Exit with the run's status when it failed."""
    if not run.succeeded:
        if run.error is not None:
            logger.debug("Build failed", exc_info=run.error)
        raise SystemExit(run.exit_code)


def version_callback(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console.print(f"wasmbuild [bold cyan]{__version__}[/bold cyan]")
    ctx.exit()


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """wasmbuild - build WebAssembly components from template profiles."""
    if verbose:
        _setup_logging()

    if ctx.invoked_subcommand is None:
        console.print("[bold]wasmbuild[/bold] - incremental component builds")
        console.print("\nRun [cyan]wasmbuild --help[/cyan] for available commands.")


@main.command()
@click.argument("template", required=False)
@manifest_options
@profile_options
@execution_options
def build(
    template: str | None,
    manifest_path: Path | None,
    profile: str | None,
    variables: tuple[str, ...],
    executor: str | None,
    image: str | None,
    timeout: float | None,
    follow_symlinks: bool | None,
    ignore_hidden: bool | None,
    quiet: bool | None,
) -> None:
    """Build TEMPLATE with a profile, skipping steps that are up to date."""
    config = _load_config()
    manifest = _resolve_manifest(manifest_path, config)
    template_id = _resolve_template_id(manifest, template)
    orchestrator = _make_orchestrator(
        manifest,
        config,
        executor=executor,
        image=image,
        timeout=timeout,
        follow_symlinks=follow_symlinks,
        ignore_hidden=ignore_hidden,
        quiet=quiet,
    )

    try:
        run = orchestrator.build(template_id, profile, parse_vars(variables))
    except BuildError as e:
        raise _config_error(str(e)) from None
    _finish(run)


@main.command()
@click.argument("name")
@click.argument("template", required=False)
@manifest_options
@profile_options
@execution_options
def custom(
    name: str,
    template: str | None,
    manifest_path: Path | None,
    profile: str | None,
    variables: tuple[str, ...],
    executor: str | None,
    image: str | None,
    timeout: float | None,
    follow_symlinks: bool | None,
    ignore_hidden: bool | None,
    quiet: bool | None,
) -> None:
    """Run the custom command NAME of a TEMPLATE profile."""
    config = _load_config()
    manifest = _resolve_manifest(manifest_path, config)
    template_id = _resolve_template_id(manifest, template)
    orchestrator = _make_orchestrator(
        manifest,
        config,
        executor=executor,
        image=image,
        timeout=timeout,
        follow_symlinks=follow_symlinks,
        ignore_hidden=ignore_hidden,
        quiet=quiet,
    )

    try:
        run = orchestrator.run_custom(
            name, template_id, profile, parse_vars(variables)
        )
    except BuildError as e:
        raise _config_error(str(e)) from None
    except KeyError as e:
        raise _config_error(e.args[0]) from None
    _finish(run)


@main.command()
@click.argument("template", required=False)
@manifest_options
@profile_options
def clean(
    template: str | None,
    manifest_path: Path | None,
    profile: str | None,
    variables: tuple[str, ...],
) -> None:
    """Remove the clean paths of a TEMPLATE profile."""
    config = _load_config()
    manifest = _resolve_manifest(manifest_path, config)
    template_id = _resolve_template_id(manifest, template)
    orchestrator = BuildOrchestrator(manifest, quiet=bool(config.quiet))

    try:
        run = orchestrator.clean(template_id, profile, parse_vars(variables))
    except BuildError as e:
        raise _config_error(str(e)) from None
    _finish(run)


@main.command()
@manifest_options
def profiles(manifest_path: Path | None) -> None:
    """List templates and their profiles."""
    manifest = _resolve_manifest(manifest_path, _load_config())

    console.print(f"[bold]Templates in {manifest.source}:[/bold]\n")
    for template_id, template in manifest.templates.items():
        console.print(f"  [cyan]{template_id}[/cyan]")
        for profile_name, profile in template.profiles.items():
            marker = ""
            if profile_name == template.default_profile:
                marker = " [green](default)[/green]"
            console.print(
                f"    {profile_name}{marker} [dim]{len(profile.build)} step(s)[/dim]"
            )
            if profile.custom_commands:
                names = ", ".join(profile.custom_commands)
                console.print(f"      [dim]Custom commands: {names}[/dim]")


def _print_step(index: int, step: BuildStep) -> None:
    console.print(f"  {index}. {escape(step.command)}")
    if step.dir is not None:
        console.print(f"     [dim]dir:[/dim] {escape(step.dir)}")
    for label, values in (
        ("rmdirs", step.rmdirs),
        ("mkdirs", step.mkdirs),
        ("sources", step.sources),
        ("targets", step.targets),
    ):
        if values:
            console.print(f"     [dim]{label}:[/dim] {escape(', '.join(values))}")


def _print_profile(template_id: str, profile: Profile) -> None:
    console.print(f"[bold]{template_id} ({profile.name})[/bold]\n")
    for label, value in (
        ("sourceWit", profile.source_wit),
        ("generatedWit", profile.generated_wit),
        ("componentWasm", profile.component_wasm),
        ("linkedWasm", profile.linked_wasm),
    ):
        if value is not None:
            console.print(f"[cyan]{label}:[/cyan] {escape(value)}")
    if profile.clean:
        console.print(f"[cyan]clean:[/cyan] {escape(', '.join(profile.clean))}")

    console.print("\n[bold]Build steps:[/bold]")
    for i, step in enumerate(profile.build, start=1):
        _print_step(i, step)

    for name, steps in profile.custom_commands.items():
        console.print(f"\n[bold]Custom command {name}:[/bold]")
        for i, step in enumerate(steps, start=1):
            _print_step(i, step)


@main.command()
@click.argument("template", required=False)
@manifest_options
@profile_options
@click.option("--yaml", "as_yaml", is_flag=True, help="Print the profile as YAML.")
def show(
    template: str | None,
    manifest_path: Path | None,
    profile: str | None,
    variables: tuple[str, ...],
    as_yaml: bool,
) -> None:
    """Show a TEMPLATE profile with all placeholders resolved."""
    config = _load_config()
    manifest = _resolve_manifest(manifest_path, config)
    template_id = _resolve_template_id(manifest, template)
    orchestrator = BuildOrchestrator(manifest, quiet=True)

    try:
        resolved = orchestrator.resolve_profile(
            template_id, profile, parse_vars(variables)
        )
    except BuildError as e:
        raise _config_error(str(e)) from None

    if as_yaml:
        click.echo(
            yaml.safe_dump(
                {resolved.name: resolved.to_dict()},
                default_flow_style=False,
                sort_keys=False,
            ),
            nl=False,
        )
        return
    _print_profile(template_id, resolved)
