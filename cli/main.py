#!/usr/bin/env python3
"""
Metaplex Auth - Command Line Interface

Issue upload tokens and store files, NFTs and NFT bundles with NFT.Storage,
authorized by a Solana keypair.
"""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml

from crypto.auth import AuthContext, make_upload_token
from crypto.exceptions import CryptoError
from crypto.keys import load_solana_keypair
from ipld.exceptions import IPLDError
from ipld.unixfs import File
from network.backends import get_backend
from network.client import MetaplexStorageClient
from network.exceptions import UploadError
from nft.bundle import NFTBundle
from nft.exceptions import NFTError
from nft.load import iter_files

from cli import __version__
from cli.config import ConfigurationManager

_LOG_HANDLER: Optional[logging.Handler] = None


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.output_format: Optional[str] = None
        self.verbose: int = 0
        self.config: Optional[ConfigurationManager] = None
        self.logger: logging.Logger = logging.getLogger('metaplex-auth')

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        global _LOG_HANDLER

        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        root = logging.getLogger()
        if _LOG_HANDLER is not None:
            root.removeHandler(_LOG_HANDLER)

        _LOG_HANDLER = logging.StreamHandler(sys.stderr)
        _LOG_HANDLER.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root.addHandler(_LOG_HANDLER)
        root.setLevel(level)

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self, **overrides):
        """Load layered configuration and apply command line overrides."""
        self.config = ConfigurationManager(config_file=self.config_file)
        self.config.apply_overrides(output_format=self.output_format, **overrides)
        self.config.validate()
        self.logger.debug(f"Configuration sources: {', '.join(self.config.get_sources())}")

    def get_config(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def make_auth(self, keyfile: str) -> AuthContext:
        keypair = load_solana_keypair(keyfile)
        return AuthContext.with_signer(
            keypair.sign,
            keypair.public_key,
            minting_agent=self.get_config('minting_agent'),
            solana_cluster=self.get_config('cluster'),
            agent_version=__version__,
        )

    def make_client(self, keyfile: str) -> MetaplexStorageClient:
        return MetaplexStorageClient(
            self.make_auth(keyfile),
            endpoint=self.get_config('endpoint'),
            backend=get_backend(self.get_config('backend')),
            gateway_host=self.get_config('gateway_host'),
            max_concurrency=self.get_config('max_concurrency'),
            chunk_size=self.get_config('chunk_size'),
        )

    def upload_options(self) -> Dict[str, Any]:
        def on_stored_chunk(size: int):
            self.logger.info(f"Stored chunk of {size} bytes")

        return {
            'max_retries': self.get_config('max_retries'),
            'on_stored_chunk': on_stored_chunk,
        }

    def output(self, data: Any):
        """Output data in the configured format."""
        format_type = self.get_config('output_format', 'table')

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif format_type == "yaml":
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, list):
                    click.echo(f"{key}:")
                    for item in value:
                        click.echo(f"  {item}")
                else:
                    click.echo(f"{key:22} {value}")
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Report package errors with the stage that failed and exit non-zero."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except (CryptoError, IPLDError, NFTError, UploadError) as e:
            ctx = click.get_current_context().find_object(CLIContext)
            if ctx is not None and ctx.verbose >= 2:
                ctx.logger.exception(f"{e.stage} failed")
            click.echo(f"Error ({e.stage}): {e}", err=True)
            sys.exit(1)

    return wrapper


keyfile_option = click.option(
    '--keyfile', '-k',
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help='Path to a Solana keypair file (JSON array of 64 bytes)'
)

cluster_option = click.option(
    '--cluster',
    type=click.Choice(['mainnet-beta', 'devnet', 'testnet']),
    default=None,
    help='Solana cluster the NFTs are minted on'
)

endpoint_option = click.option(
    '--endpoint',
    default=None,
    help='Storage API endpoint'
)


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c',
              type=click.Path(dir_okay=False),
              help='Path to configuration file')
@click.option('--output-format', '-o',
              type=click.Choice(['table', 'json', 'yaml']),
              default=None,
              help='Output format')
@click.option('--verbose', '-v',
              count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(__version__, prog_name='metaplex-auth')
@pass_context
def cli(ctx: CLIContext, config_file: Optional[str], output_format: Optional[str], verbose: int):
    """
    Metaplex Auth Command Line Interface

    Store NFT assets and metadata with NFT.Storage using upload tokens
    signed by your Solana key. No API key is needed.

    Examples:
        metaplex-auth did -k ~/.config/solana/id.json
        metaplex-auth token -k id.json bafy...
        metaplex-auth upload -k id.json image.png
        metaplex-auth nft -k id.json assets/0.json
        metaplex-auth bundle -k id.json assets/
    """
    ctx.config_file = config_file
    ctx.output_format = output_format
    ctx.verbose = verbose

    ctx.setup_logging()
    ctx.logger.debug("CLI initialized with context")


@cli.command()
@keyfile_option
@handle_cli_error
@pass_context
def did(ctx: CLIContext, keyfile: str):
    """Print the did:key that signs upload tokens for KEYFILE."""
    ctx.load_config()
    keypair = load_solana_keypair(keyfile)
    ctx.output({'did': keypair.did, 'public_key': keypair.public_key.hex()})


@cli.command()
@keyfile_option
@cluster_option
@click.argument('cid')
@handle_cli_error
@pass_context
def token(ctx: CLIContext, keyfile: str, cluster: Optional[str], cid: str):
    """Issue an upload token for CID without uploading anything."""
    ctx.load_config(cluster=cluster)
    upload_token = make_upload_token(ctx.make_auth(keyfile), cid)
    ctx.output({'root_cid': cid, 'token': upload_token})


def _collect_files(paths: List[str]) -> List[File]:
    files = []
    for path in map(Path, paths):
        if path.is_dir():
            for name, file_path in iter_files(path):
                files.append(File.from_path(file_path, name=f"{path.name}/{name}"))
        else:
            files.append(File.from_path(path))
    return files


@cli.command()
@keyfile_option
@cluster_option
@endpoint_option
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True))
@handle_cli_error
@pass_context
def upload(ctx: CLIContext, keyfile: str, cluster: Optional[str], endpoint: Optional[str],
           paths: List[str]):
    """Store files (or directories of files) wrapped in one directory."""
    ctx.load_config(cluster=cluster, endpoint=endpoint)
    client = ctx.make_client(keyfile)

    files = _collect_files(paths)
    click.echo(f"uploading {len(files)} file{'s' if len(files) != 1 else ''}...", err=True)

    result = client.store_directory(files, **ctx.upload_options())
    ctx.output({
        'root_cid': result.root_cid,
        'ipfs_uris': result.ipfs_uris(),
        'gateway_urls': result.gateway_urls(ctx.get_config('gateway_host')),
    })


@cli.command()
@keyfile_option
@cluster_option
@endpoint_option
@click.argument('metadata_json', type=click.Path(exists=True, dir_okay=False))
@click.option('--image', type=click.Path(exists=True, dir_okay=False),
              help='Image file; located next to the metadata if omitted')
@click.option('--validate/--no-validate', default=False,
              help='Validate metadata against the Metaplex schema')
@handle_cli_error
@pass_context
def nft(ctx: CLIContext, keyfile: str, cluster: Optional[str], endpoint: Optional[str],
        metadata_json: str, image: Optional[str], validate: bool):
    """Package and store one NFT from a metadata JSON file."""
    ctx.load_config(cluster=cluster, endpoint=endpoint)
    client = ctx.make_client(keyfile)

    result = client.store_nft_from_filesystem(
        metadata_json,
        image,
        validate_schema=validate,
        **ctx.upload_options()
    )
    ctx.output({
        'metadata_uri': result.metadata_uri,
        'metadata_gateway_url': result.metadata_gateway_url,
        'asset_root_cid': result.asset_root_cid,
        'metadata_root_cid': result.metadata_root_cid,
    })


@cli.command()
@keyfile_option
@cluster_option
@endpoint_option
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@click.option('--validate/--no-validate', default=False,
              help='Validate metadata against the Metaplex schema')
@handle_cli_error
@pass_context
def bundle(ctx: CLIContext, keyfile: str, cluster: Optional[str], endpoint: Optional[str],
           directory: str, validate: bool):
    """Package every NFT under DIRECTORY into one bundle and store it."""
    ctx.load_config(cluster=cluster, endpoint=endpoint)
    client = ctx.make_client(keyfile)

    nft_bundle = NFTBundle()
    for _ in nft_bundle.add_all_nfts_from_directory(
            directory,
            gateway_host=ctx.get_config('gateway_host'),
            validate_schema=validate):
        pass

    if not len(nft_bundle):
        click.echo(f"No NFT metadata files found in {directory}", err=True)
        sys.exit(1)

    ctx.logger.info(f"Uploading bundle of {len(nft_bundle)} NFT(s), {nft_bundle.get_raw_size()} bytes")
    root_cid = client.store_bundle(nft_bundle, **ctx.upload_options())

    ctx.output({
        'root_cid': root_cid,
        'metadata_uris': {id: entry.metadata_uri for id, entry in nft_bundle.manifest().items()},
    })


def main():
    cli(prog_name='metaplex-auth')


if __name__ == '__main__':
    main()
