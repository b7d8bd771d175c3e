"""Build, verify, cache and key management commands."""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import click
from click.core import ParameterSource

from velobuild.cli.output import OutputFormatter
from velobuild.core import logging as log
from velobuild.core.config import BuildSettings, load_settings
from velobuild.core.errors import ConfigError
from velobuild.core.logging import ProgressReporter
from velobuild.engine import BuildEngine
from velobuild.fetch.cache import ContentCache
from velobuild.models.build import BuildAction, BuildResult
from velobuild.packaging.signing import load_verification_key, write_key_pair
from velobuild.packaging.verify import PackageVerifier

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID_ARGS = 2

_BUILD_OPTIONS = [
    click.option(
        "--root",
        "-r",
        "artifact_root",
        type=click.Path(path_type=Path),
        default=None,
        help="Artifact definitions directory (default: ./artifacts)",
    ),
    click.option(
        "--include",
        "-i",
        multiple=True,
        help="Artifact name pattern, glob or dotted prefix (repeatable)",
    ),
    click.option(
        "--platform",
        "-p",
        type=click.Choice(["windows", "linux", "darwin", "macos", "any"], case_sensitive=False),
        default=None,
        help="Target platform; tools for other platforms are skipped",
    ),
    click.option(
        "--output",
        "-o",
        "output_path",
        type=click.Path(path_type=Path),
        default=None,
        help="Package path (build) or export directory (export)",
    ),
    click.option(
        "--cache-dir",
        type=click.Path(path_type=Path),
        default=None,
        help="Tool cache directory (default: ~/.velobuild/cache)",
    ),
    click.option(
        "--catalog",
        "catalog_path",
        type=click.Path(path_type=Path),
        default=None,
        help="Curated tool catalog (YAML)",
    ),
    click.option(
        "--strict/--permissive",
        default=True,
        help="Package only verified tools (default) or include unverified ones",
    ),
    click.option(
        "--workers",
        "-w",
        type=click.IntRange(1, 32),
        default=4,
        help="Concurrent downloads (1-32, default: 4)",
    ),
    click.option(
        "--allow-empty",
        is_flag=True,
        default=False,
        help="Treat a missing artifact directory as an empty scan",
    ),
    click.option(
        "--force",
        is_flag=True,
        default=False,
        help="Replace an existing package",
    ),
    click.option(
        "--sign-key",
        "signing_key_path",
        type=click.Path(path_type=Path),
        default=None,
        help="PEM private key to sign the build manifest",
    ),
]


def build_options(func: Callable) -> Callable:
    """Attach the options shared by all build actions."""
    for option in reversed(_BUILD_OPTIONS):
        func = option(func)
    return func


def _explicit(ctx: click.Context, name: str, value: Any) -> Any:
    """Value of an option only if the user set it, so config files still apply."""
    if ctx.get_parameter_source(name) in (ParameterSource.DEFAULT, None):
        return None
    return value


def _settings(ctx: click.Context, **options: Any) -> BuildSettings:
    include = options.get("include")
    overrides = {
        "artifact_root": options.get("artifact_root"),
        "include": list(include) if include else None,
        "platform": options.get("platform"),
        "output_path": options.get("output_path"),
        "cache_dir": options.get("cache_dir"),
        "catalog_path": options.get("catalog_path"),
        "signing_key_path": options.get("signing_key_path"),
    }
    for name, setting in (
        ("strict", "strict"),
        ("workers", "workers"),
        ("allow_empty", "allow_empty"),
        ("force", "overwrite"),
    ):
        if name in options:
            overrides[setting] = _explicit(ctx, name, options[name])

    return load_settings(config_path=ctx.obj.get("config_path"), overrides=overrides)


def _run_engine(
    engine: BuildEngine, action: BuildAction, cancel_event: threading.Event
) -> BuildResult:
    """Run the engine off the main thread so Ctrl-C can cancel it cleanly."""
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(engine.run, action)
        while True:
            try:
                return future.result()
            except KeyboardInterrupt:
                log.warning("Cancelling; waiting for in-flight downloads to stop")
                cancel_event.set()


def _action_command(action: BuildAction, summary: str) -> click.Command:
    @click.pass_context
    def command(ctx: click.Context, **options: Any) -> None:
        formatter: OutputFormatter = ctx.obj.get("formatter", OutputFormatter())

        try:
            settings = _settings(ctx, **options)
        except ConfigError as e:
            formatter.error(e.to_structured_error())
            ctx.exit(EXIT_INVALID_ARGS)
            return

        cancel_event = threading.Event()
        engine = BuildEngine(settings, progress=ProgressReporter(), cancel_event=cancel_event)
        result = _run_engine(engine, action, cancel_event)

        formatter.output(result)
        ctx.exit(EXIT_SUCCESS if result.success else EXIT_FAILURE)

    command.__doc__ = summary
    return click.command(name=action.value)(build_options(command))


scan = _action_command(
    BuildAction.SCAN,
    "Read artifacts and list the tools they declare. No network access.",
)
resolve = _action_command(
    BuildAction.RESOLVE,
    "Resolve tool sources from artifacts and the catalog, apply the platform filter.",
)
download = _action_command(
    BuildAction.DOWNLOAD,
    "Resolve and fetch tools into the cache, verifying SHA-256 hashes.",
)
build = _action_command(
    BuildAction.BUILD,
    "Build an offline collector package and write the mapping exports next to it.",
)
export = _action_command(
    BuildAction.EXPORT,
    "Resolve and write tool-mapping.json / tool-mapping.csv to --output.",
)


@click.command()
@click.argument("package_path", type=click.Path(path_type=Path))
@click.option(
    "--public-key",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="PEM public key to check the manifest signature",
)
@click.pass_context
def verify(ctx: click.Context, package_path: Path, public_key: Path | None) -> None:
    """Verify a collector package.

    Checks:
    - collector.config.yaml and build-manifest.json exist
    - Every bundled tool matches its recorded SHA-256
    - The manifest signature (with --public-key)
    """
    formatter: OutputFormatter = ctx.obj.get("formatter", OutputFormatter())

    key = None
    if public_key is not None:
        try:
            key = load_verification_key(public_key)
        except ConfigError as e:
            formatter.error(e.to_structured_error())
            ctx.exit(EXIT_INVALID_ARGS)
            return

    result = PackageVerifier(package_path).verify(key)
    formatter.output(result)
    if not result.valid:
        for problem in result.errors:
            log.error(problem, path=str(package_path))
    ctx.exit(EXIT_SUCCESS if result.valid else EXIT_FAILURE)


@click.group()
def cache() -> None:
    """Inspect or clear the tool cache."""
    pass


@cache.command()
@click.option("--cache-dir", type=click.Path(path_type=Path), default=None)
@click.pass_context
def stats(ctx: click.Context, cache_dir: Path | None) -> None:
    """Show cache statistics."""
    formatter: OutputFormatter = ctx.obj.get("formatter", OutputFormatter())
    try:
        settings = _settings(ctx, cache_dir=cache_dir)
    except ConfigError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_INVALID_ARGS)
        return

    formatter.output(ContentCache(settings.cache_dir).stats())


@cache.command()
@click.option("--cache-dir", type=click.Path(path_type=Path), default=None)
@click.pass_context
def clear(ctx: click.Context, cache_dir: Path | None) -> None:
    """Remove every cached tool binary."""
    formatter: OutputFormatter = ctx.obj.get("formatter", OutputFormatter())
    try:
        settings = _settings(ctx, cache_dir=cache_dir)
    except ConfigError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_INVALID_ARGS)
        return

    removed = ContentCache(settings.cache_dir).clear()
    formatter.output({"cache_dir": str(settings.cache_dir), "removed": removed})


@click.command()
@click.option(
    "--algorithm",
    type=click.Choice(["ed25519", "rsa-sha256"]),
    default="ed25519",
    help="Signature algorithm (default: ed25519)",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory for the key files (default: current directory)",
)
@click.option("--force", is_flag=True, default=False, help="Overwrite existing key files")
@click.pass_context
def keygen(ctx: click.Context, algorithm: str, output_dir: Path, force: bool) -> None:
    """Generate a manifest signing key pair."""
    formatter: OutputFormatter = ctx.obj.get("formatter", OutputFormatter())
    try:
        private_path, public_path = write_key_pair(output_dir, algorithm, overwrite=force)
    except ConfigError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_FAILURE)
        return

    formatter.output(
        {
            "algorithm": algorithm,
            "private_key": str(private_path),
            "public_key": str(public_path),
        }
    )
    click.echo(f"Keep {private_path} secret; share {public_path} for verification.", err=True)
