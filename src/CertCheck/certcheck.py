import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from CertCheck import __version__
from CertCheck.checks.certcheck_checks import CheckContext, run_checks
from CertCheck.checks.retrieval_logic import fetch_certificate
from CertCheck.config.certcheck_config import (
    DEFAULT_CRITICAL_DAYS,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_WARNING_DAYS,
    DIRECT_PROTOCOLS,
    LONG_OUTPUT_ATTRIBUTES,
    MATCH_MODES,
    STARTTLS_PROTOCOLS,
    Config,
    EvaluationResult,
    Finding,
    Logger,
)
from CertCheck.report import compose_status_line
from CertCheck.utils.errors import CertCheckError, ConfigurationError, ErrorLevel
from CertCheck.utils.x509 import parse_certificate

#=============================================================== Arguments ===============================================================

class PluginArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors end the run as UNKNOWN instead of exiting with status 2 (CRITICAL)."""

    def error(self, message: str) -> None:
        raise ConfigurationError(f"{self.prog}: {message}")

    def exit(self, status: int = 0, message: Optional[str] = None) -> None:
        # --help and --version print no check result, so they must not read as OK.
        if message:
            self._print_message(message, sys.stderr)
        sys.exit(ErrorLevel.UNKNOWN.exit_code)

def build_parser() -> PluginArgumentParser:
    parser = PluginArgumentParser(
        prog="check_ssl_cert",
        description="Checks the X.509 certificate of a TLS service (or a local certificate file) for monitoring systems.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Exit codes: 0 OK, 1 WARNING, 2 CRITICAL, 3 UNKNOWN (also after --help and --version)",
    )

    connection = parser.add_argument_group("connection")
    connection.add_argument("-H", "--host", help="server hostname or address (use 'localhost' with --file)")
    connection.add_argument("-p", "--port", type=int, help=f"TCP port (default: {DEFAULT_PORT})")
    connection.add_argument("-P", "--protocol", choices=DIRECT_PROTOCOLS + STARTTLS_PROTOCOLS,
                            help="use the specific protocol, upgrading with STARTTLS where applicable (default: none)")
    connection.add_argument("-f", "--file", help="local certificate file to check instead of connecting")
    connection.add_argument("-t", "--timeout", type=float, help=f"seconds after which retrieval is aborted, 0 disables (default: {DEFAULT_TIMEOUT})")
    connection.add_argument("-r", "--rootcert", help="root certificate file or directory used for chain verification")
    connection.add_argument("-C", "--clientcert", help="client certificate (PEM) sent to the server")
    connection.add_argument("--clientkey", help="client certificate key, when not stored with the certificate")
    connection.add_argument("--clientpass", help="passphrase of the client certificate key")

    versions = connection.add_mutually_exclusive_group()
    for version in ("tls1", "tls1_1", "tls1_2", "tls1_3"):
        versions.add_argument(f"--{version}", dest="tls_version", action="store_const", const=version,
                              help=f"force {version.upper().replace('_', '.')}")

    validation = parser.add_argument_group("validation")
    validation.add_argument("-c", "--critical", type=int, help=f"minimum number of days the certificate has to be valid (default: {DEFAULT_CRITICAL_DAYS})")
    validation.add_argument("-w", "--warning", type=int, help=f"minimum number of days before a warning (default: {DEFAULT_WARNING_DAYS})")
    validation.add_argument("-n", "--cn", help="pattern to match the CN (or a SubAltName with --altnames)")
    validation.add_argument("-N", "--host-cn", dest="host_cn", action="store_true", default=None, help="match the CN against the host name")
    validation.add_argument("--altnames", action="store_true", default=None, help="match the name against the SubAltName entries too")
    validation.add_argument("--match-mode", dest="match_mode", choices=MATCH_MODES, help="how certificate names are compared (default: literal)")
    validation.add_argument("-i", "--issuer", help="pattern to match the issuer O or CN")
    validation.add_argument("--serial", help="pattern to match the serial number")
    validation.add_argument("-o", "--org", help="pattern to match the organization of the certificate")
    validation.add_argument("-e", "--email", help="pattern to match the email address in the certificate")
    validation.add_argument("-s", "--selfsigned", action="store_true", default=None, help="allow self-signed certificates")
    validation.add_argument("-A", "--noauth", action="store_true", default=None, help="ignore authority warnings (expiration only)")
    validation.add_argument("--ignore-exp", dest="ignore_exp", action="store_true", default=None, help="ignore expiration date")
    validation.add_argument("--ignore-sig-alg", dest="ignore_sig_alg", action="store_true", default=None, help="do not check if the certificate was signed with SHA1 or MD5")
    validation.add_argument("--ocsp", action="store_true", default=None, help="check revocation via OCSP")
    validation.add_argument("--ssllabs", help="SSL Labs assessment (minimum acceptable grade, e.g. A-)")
    validation.add_argument("--ignore-ssl-labs-cache", dest="ignore_ssl_labs_cache", action="store_true", default=None,
                            help="force a new check by SSL Labs")
    validation.add_argument("--long-output", dest="long_output",
                            help=f"comma separated list of attributes appended to the output, or 'all' ({','.join(LONG_OUTPUT_ATTRIBUTES)})")

    general = parser.add_argument_group("general")
    general.add_argument("--name", help="identifying name printed in the status line")
    general.add_argument("--config", help="TOML configuration file")
    general.add_argument("--log-file", dest="log_file", help="also write debug logs to this (rotating) file")
    general.add_argument("-v", "--verbose", action="count", default=0, help="verbose output on stderr (-vv for debug)")
    general.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser

def parse_options(argv: Optional[list[str]] = None) -> tuple[dict, Optional[str], int]:
    """Parse argv into (Config options, TOML path, verbosity)."""
    args = vars(build_parser().parse_args(argv))
    config_file = args.pop("config")
    verbosity = args.pop("verbose")
    return args, config_file, verbosity

#=============================================================== Pipeline ================================================================

def evaluate(config: Config, now: Optional[datetime] = None) -> EvaluationResult:
    """
    Retrieve, normalize and validate the certificate described by config.

    Raises:
        CertCheckError for failures before the rule engine runs (configuration, transport, parsing).
    """
    logging.debug("-----------------------------------Entering evaluate()--------------------------------------------")
    retrieval = fetch_certificate(config.retrieval)
    cert = parse_certificate(retrieval.pem)

    context = CheckContext(
        cert      = cert,
        retrieval = retrieval,
        config    = config.validation,
        host      = config.retrieval.host,
        now       = now or datetime.now(timezone.utc),
        timeout   = config.retrieval.timeout,
    )
    return run_checks(context)

def run(argv: Optional[list[str]] = None, now: Optional[datetime] = None) -> tuple[ErrorLevel, str]:
    """Run one evaluation and return (status, status line); never raises for check failures."""
    name = None
    validation = None
    try:
        options, config_file, verbosity = parse_options(argv)
        Logger.configure(verbosity=verbosity)

        config = Config(options, config_file)
        name = config.name
        validation = config.validation
        Logger.configure(config.logging_level, verbosity, config.log_file)

        result = evaluate(config, now)
    except CertCheckError as e:
        logging.error(f'{e.__class__.__name__}: {e.message}')
        result = EvaluationResult().record(Finding(e.level, e.__class__.__name__, e.message))
    except Exception as e:
        logging.exception('Unexpected error while checking the certificate')
        result = EvaluationResult().record(Finding(ErrorLevel.UNKNOWN, e.__class__.__name__, str(e) or e.__class__.__name__))

    return result.status, compose_status_line(result, validation, name)

def main(argv: Optional[list[str]] = None) -> None:
    status, line = run(argv)
    print(line)
    sys.exit(status.exit_code)

if __name__ == "__main__":
    main()
