#!/usr/bin/env python3

import logging
import sys

import click
from colorama import Fore, init

from .config import load_config, probe_config
from .errors import CertsiftError
from .pipeline import extract, probe_chain, probe_chains
from .probe import parse_target, split_groups
from .render import FORMATS, paint, render_extraction, render_outcomes, render_report


class ColorHandler(logging.Handler):
    """Log records as coloured ``[timestamp] [LEVEL] message`` lines on stderr"""

    COLORS = {
        'DEBUG': Fore.BLUE,
        'INFO': Fore.CYAN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA,
    }

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color
        self.setFormatter(logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s',
                                            datefmt='%Y-%m-%d %H:%M:%S'))

    def emit(self, record):
        try:
            message = self.format(record)
            click.echo(paint(message, self.COLORS.get(record.levelname, Fore.WHITE), self.color), err=True)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False, color: bool = True):
    """Route certsift logging to stderr; INFO and DEBUG only when verbose"""
    logger = logging.getLogger('certsift')
    for handler in list(logger.handlers):
        if isinstance(handler, ColorHandler):
            logger.removeHandler(handler)
    logger.addHandler(ColorHandler(color))
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def fail(message: str, color: bool, code: int = 1):
    click.echo(paint(f"[!] {message}", Fore.RED, color), err=True)
    sys.exit(code)


@click.group()
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='YAML configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--color/--no-color', default=True, help='Colour text output and log lines')
@click.pass_context
def cli(ctx, config_file, verbose, color):
    """
    certsift - find, decode and chain X.509 certificates

    Reads certificates out of PEM files, openssl transcripts and YAML or JSON
    documents, or fetches them live from a TLS server, including servers that
    negotiate post-quantum hybrid key exchange.
    """
    setup_logging(verbose, color)
    try:
        config = load_config(config_file)
    except CertsiftError as e:
        fail(str(e), color)
    ctx.obj = {'config': config, 'color': color}


@cli.command()
@click.argument('file', type=click.File('rb'), default='-')
@click.option('--format', '-f', 'fmt', type=click.Choice(FORMATS), help='Output format (default: text)')
@click.pass_context
def parse(ctx, file, fmt):
    """Extract certificates from FILE (standard input by default)"""
    color = ctx.obj['color']
    fmt = fmt or ctx.obj['config']['output']['format']

    try:
        result = extract(file.read())
    except KeyboardInterrupt:
        fail("Interrupted by user", color, 130)

    click.echo(render_extraction(result, fmt, color), nl=False)
    if not result.records and not result.objects:
        sys.exit(1)


@cli.command()
@click.argument('targets', nargs=-1, required=True)
@click.option('--chain', is_flag=True, help='Show the whole chain, not only the leaf')
@click.option('--groups', '-g', help='Key exchange groups to offer, colon separated, in order')
@click.option('--pqc', is_flag=True, help='Offer post-quantum hybrid groups only')
@click.option('--timeout', '-t', type=float, help='Connect and handshake timeout in seconds')
@click.option('--servername', '-s', help='SNI name to send (default: the target host)')
@click.option('--cert', type=click.Path(exists=True, dir_okay=False), help='Client certificate to present')
@click.option('--key', type=click.Path(exists=True, dir_okay=False), help='Private key of the client certificate')
@click.option('--ca-file', type=click.Path(exists=True, dir_okay=False), help='CA bundle used for verification')
@click.option('--verify/--no-verify', default=None, help='Verify the chain against the CA bundle (default: on)')
@click.option('--workers', '-w', type=int, help='Concurrent probes when several targets are given')
@click.option('--format', '-f', 'fmt', type=click.Choice(FORMATS), help='Output format (default: text)')
@click.pass_context
def connect(ctx, targets, chain, groups, pqc, timeout, servername, cert, key, ca_file, verify, workers, fmt):
    """Fetch the certificate chain of one or more TLS servers"""
    color = ctx.obj['color']
    config = ctx.obj['config']
    fmt = fmt or config['output']['format']

    for target in targets:
        try:
            parse_target(target)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='TARGETS')

    try:
        settings = probe_config(
            config,
            groups=split_groups(groups) if groups else None,
            pqc_only=True if pqc else None,
            timeout=timeout,
            servername=servername,
            client_cert=cert,
            client_key=key,
            ca_file=ca_file,
            verify=verify,
        )

        if len(targets) == 1:
            report = probe_chain(targets[0], settings)
            click.echo(render_report(report, fmt, color, chain), nl=False)
            return

        outcomes = probe_chains(targets, settings, max_workers=workers or config['probe']['workers'])
        click.echo(render_outcomes(outcomes, fmt, color, chain), nl=False)
        failed = [target for target, outcome in outcomes.items() if isinstance(outcome, Exception)]
        if failed:
            sys.exit(1)

    except KeyboardInterrupt:
        fail("Interrupted by user", color, 130)
    except CertsiftError as e:
        fail(str(e), color)


def main():
    init()
    cli()


if __name__ == '__main__':
    main()
