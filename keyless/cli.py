"""Command-line interface for keyless signing operations."""

import asyncio
import logging
import sys
from pathlib import Path

import click

from . import __version__
from .api import create_signer, create_verifier
from .bundle import BundleKind, parse_bundle
from .config import load_config, load_default_config
from .errors import ConfigurationError, KeylessError, MalformedInputError

DEFAULT_PAYLOAD_TYPE = "application/vnd.in-toto+json"

config_option = click.option(
    "--config",
    type=click.Path(exists=True),
    help="Configuration file (YAML). Defaults to .keyless/config.yaml if present.",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")


def _setup_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_config(config):
    """Load the named config, or the default one; exit on errors."""
    if config:
        try:
            signing_config = load_config(config)
        except (FileNotFoundError, ConfigurationError) as e:
            click.echo(f"❌ Config error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Loaded config: {config}")
        return signing_config

    try:
        signing_config = load_default_config()
    except ConfigurationError as e:
        click.echo(f"❌ Config error: {e}", err=True)
        sys.exit(1)
    if signing_config:
        click.echo("Loaded default config: .keyless/config.yaml")
    return signing_config


@click.group()
@click.version_option(version=__version__)
def main():
    """Keyless artifact signing tool."""
    pass


@main.command()
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", type=click.Path(), help="Bundle path (default: ARTIFACT.keyless.json)")
@config_option
@verbose_option
def sign(artifact, output, config, verbose):
    """Sign an artifact and write a signature bundle."""
    _setup_logging(verbose)
    signing_config = _load_config(config)

    payload = Path(artifact).read_bytes()
    output = output or f"{artifact}.keyless.json"

    click.echo(f"Signing artifact: {artifact}")
    try:
        signer = create_signer(signing_config)
        signed = asyncio.run(signer.sign_blob(payload))
    except KeylessError as e:
        click.echo(f"❌ Signing failed: {e}", err=True)
        sys.exit(1)

    Path(output).write_text(signed.to_json())
    click.echo("✅ Signing complete!")
    click.echo(f"Bundle: {output}")
    if signed.tlog_entry is not None:
        click.echo(f"Log index: {signed.tlog_entry.log_index}")


@main.command()
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--payload-type",
    default=DEFAULT_PAYLOAD_TYPE,
    show_default=True,
    help="DSSE payload type of the artifact",
)
@click.option("--output", type=click.Path(), help="Bundle path (default: ARTIFACT.dsse.json)")
@config_option
@verbose_option
def attest(artifact, payload_type, output, config, verbose):
    """Sign an artifact as a DSSE attestation and record it in the log."""
    _setup_logging(verbose)
    signing_config = _load_config(config)

    payload = Path(artifact).read_bytes()
    output = output or f"{artifact}.dsse.json"

    click.echo(f"Attesting artifact: {artifact} ({payload_type})")
    try:
        signer = create_signer(signing_config)
        bundle = asyncio.run(signer.sign_attestation(payload, payload_type))
    except KeylessError as e:
        click.echo(f"❌ Attestation failed: {e}", err=True)
        sys.exit(1)

    Path(output).write_text(bundle.to_json())
    click.echo("✅ Attestation complete!")
    click.echo(f"Bundle: {output}")
    click.echo(f"Log index: {bundle.log_index}")


@main.command()
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--bundle",
    "bundle_path",
    type=click.Path(),
    help="Signature bundle (default: ARTIFACT.keyless.json)",
)
@config_option
@verbose_option
def verify(artifact, bundle_path, config, verbose):
    """Verify an artifact against its signature bundle."""
    _setup_logging(verbose)
    bundle_path = bundle_path or f"{artifact}.keyless.json"

    if not Path(bundle_path).exists():
        click.echo(f"❌ Bundle not found: {bundle_path}", err=True)
        sys.exit(1)

    signing_config = _load_config(config)

    click.echo(f"Verifying artifact: {artifact}")
    click.echo(f"Bundle: {bundle_path}")
    try:
        bundle = parse_bundle(Path(bundle_path).read_text())
        if bundle.kind is not BundleKind.PLAIN:
            click.echo("❌ Bundle is a DSSE attestation; use verify-dsse", err=True)
            sys.exit(1)
        verifier = create_verifier(config=signing_config)
        ok = asyncio.run(verifier.verify_bundle(bundle, Path(artifact).read_bytes()))
    except (ConfigurationError, MalformedInputError) as e:
        click.echo(f"❌ Verification failed: {e}", err=True)
        sys.exit(1)

    if ok:
        click.echo("✅ Signature verified successfully!")
    else:
        click.echo("❌ Verification failed!", err=True)
        sys.exit(1)


@main.command("verify-dsse")
@click.argument("bundle_path", metavar="BUNDLE", type=click.Path(exists=True, dir_okay=False))
@config_option
@verbose_option
def verify_dsse(bundle_path, config, verbose):
    """Verify a DSSE attestation bundle."""
    _setup_logging(verbose)
    signing_config = _load_config(config)

    click.echo(f"Verifying attestation: {bundle_path}")
    try:
        bundle = parse_bundle(Path(bundle_path).read_text())
        if bundle.kind is not BundleKind.DSSE:
            click.echo("❌ Bundle is a plain signature; use verify", err=True)
            sys.exit(1)
        verifier = create_verifier(config=signing_config)
        ok = asyncio.run(verifier.verify_dsse(bundle))
    except (ConfigurationError, MalformedInputError) as e:
        click.echo(f"❌ Verification failed: {e}", err=True)
        sys.exit(1)

    if ok:
        click.echo("✅ Attestation verified successfully!")
        click.echo(f"Payload type: {bundle.attestation.payload_type}")
        click.echo(f"Log index: {bundle.log_index}")
    else:
        click.echo("❌ Verification failed!", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
