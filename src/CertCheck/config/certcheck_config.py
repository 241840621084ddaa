import logging
import sys
import tomllib
from dataclasses import dataclass, field, replace
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from CertCheck.checks.grade_converter import convert_grade
from CertCheck.utils.errors import CertCheckError, ConfigurationError, ErrorLevel

SHORTNAME = "SSL_CERT"
LOCALHOST = "localhost"

DIRECT_PROTOCOLS   = ("none", "http", "https")
STARTTLS_PROTOCOLS = ("smtp", "pop3", "imap", "ftp", "xmpp")
TLS_VERSIONS       = ("tls1", "tls1_1", "tls1_2", "tls1_3")
MATCH_MODES        = ("literal", "glob", "wildcard")

LONG_OUTPUT_ATTRIBUTES = (
    "startdate",
    "enddate",
    "subject",
    "issuer",
    "serial",
    "modulus",
    "hash",
    "email",
    "ocsp_uri",
    "fingerprint",
)

DEFAULT_PORT          = 443
DEFAULT_TIMEOUT       = 15
DEFAULT_CRITICAL_DAYS = 15
DEFAULT_WARNING_DAYS  = 20

@dataclass(frozen=True)
class Finding:
    level: ErrorLevel
    check: str
    message: str

@dataclass(frozen=True)
class EvaluationResult:
    """
    Everything the status line needs, accumulated stage by stage.

    Each check returns a new instance (via record() / dataclasses.replace); nothing is mutated in place.
    """
    findings: tuple[Finding, ...] = ()
    self_signed: bool = False
    matched_name: Optional[str] = None
    matched_issuer: Optional[str] = None
    valid_until: Optional[str] = None
    days_valid: Optional[int] = None
    grade: Optional[str] = None
    long_output: tuple[tuple[str, str], ...] = ()

    @property
    def status(self) -> ErrorLevel:
        if not self.findings:
            return ErrorLevel.NONE
        return max((f.level for f in self.findings), key=lambda level: level.value)

    @property
    def terminal_finding(self) -> Optional[Finding]:
        for finding in self.findings:
            if finding.level.is_terminal:
                return finding
        return None

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.level == ErrorLevel.WARN]

    def record(self, finding: Finding) -> "EvaluationResult":
        return replace(self, findings=self.findings + (finding,))

    def update(self, **changes: Any) -> "EvaluationResult":
        return replace(self, **changes)

@dataclass(frozen=True)
class RetrievalRequest:
    host: str
    port: int = DEFAULT_PORT
    protocol: str = "none"
    file: Optional[str] = None
    client_cert: Optional[str] = None
    client_key: Optional[str] = None
    client_pass: Optional[str] = None
    root_cert: Optional[str] = None
    protocol_version: Optional[str] = None
    server_name: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def is_local_file(self) -> bool:
        return self.file is not None

    @property
    def uses_starttls(self) -> bool:
        return self.protocol in STARTTLS_PROTOCOLS

    def validate(self) -> None:
        if not self.host:
            raise ConfigurationError("--host is required")
        if self.file is not None and self.host != LOCALHOST:
            raise ConfigurationError(f"A local certificate file can only be checked with --host {LOCALHOST}")
        if self.protocol not in DIRECT_PROTOCOLS + STARTTLS_PROTOCOLS:
            raise ConfigurationError(f"Unsupported protocol '{self.protocol}'")
        if self.protocol_version is not None and self.protocol_version not in TLS_VERSIONS:
            raise ConfigurationError(f"Unsupported TLS version '{self.protocol_version}'")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port {self.port}")
        if self.timeout < 0:
            raise ConfigurationError("--timeout must be a positive number of seconds (or 0 to disable)")
        if self.client_pass is not None and self.client_cert is None:
            raise ConfigurationError("--clientpass requires --clientcert")

@dataclass(frozen=True)
class ValidationConfig:
    critical_days: Optional[int] = None
    warning_days: Optional[int] = None
    common_name: Optional[str] = None
    match_altnames: bool = False
    match_mode: str = "literal"
    issuer: Optional[str] = None
    serial: Optional[str] = None
    allow_self_signed: bool = False
    ignore_expiration: bool = False
    reject_weak_signature: bool = True
    organization: Optional[str] = None
    email: Optional[str] = None
    grade_threshold: Optional[str] = None
    ignore_grade_cache: bool = False
    check_revocation: bool = False
    check_authority: bool = True
    long_output: tuple[str, ...] = ()

    def validate(self) -> None:
        """Reject inconsistent settings before any certificate is looked at."""
        for name, days in (("--critical", self.critical_days), ("--warning", self.warning_days)):
            if days is not None and days < 0:
                raise ConfigurationError(f"{name} must be a non-negative number of days")

        if self.critical_days is not None and self.warning_days is not None:
            if self.warning_days <= self.critical_days:
                raise ConfigurationError("--warning (w) must be greater than --critical (c)")

        if self.match_mode not in MATCH_MODES:
            raise ConfigurationError(f"Unsupported name match mode '{self.match_mode}'")

        if self.grade_threshold is not None:
            try:
                convert_grade(self.grade_threshold)
            except CertCheckError as e:
                raise ConfigurationError(e.message) from e

class Config:
    """
    Merge command-line options, an optional TOML file and built-in defaults.

    Command-line values win over the TOML file, which wins over the defaults. The TOML file uses
    the same option names as the command line (with underscores), grouped as:

        [general]       logging_level, log_file, name
        [retrieval]     host, port, protocol, file, timeout, rootcert, clientcert, clientkey, clientpass, tls_version
        [validation]    critical, warning, cn, host_cn, altnames, match_mode, issuer, serial, org, email,
                        selfsigned, ignore_exp, ignore_sig_alg, noauth, ocsp, ssllabs, ignore_ssl_labs_cache, long_output
    """
    def __init__(self, options: Optional[dict] = None, config_file: Optional[str] = None) -> None:
        self.options = {k: v for k, v in (options or {}).items() if v is not None}
        self.file_settings = self._load_file(config_file) if config_file else {}

        self.logging_level = str(self._setting("general", "logging_level", "error")).lower()
        self.log_file      = self._setting("general", "log_file")
        self.name          = self._setting("general", "name")

        host = self._setting("retrieval", "host")
        validation = self._build_validation()

        server_name = validation.common_name
        if server_name and "*" in server_name:
            server_name = None

        self.retrieval = RetrievalRequest(
            host             = host,
            port             = self._int_setting("retrieval", "port", DEFAULT_PORT),
            protocol         = str(self._setting("retrieval", "protocol", "none")).lower(),
            file             = self._setting("retrieval", "file"),
            client_cert      = self._setting("retrieval", "clientcert"),
            client_key       = self._setting("retrieval", "clientkey"),
            client_pass      = self._setting("retrieval", "clientpass"),
            root_cert        = self._setting("retrieval", "rootcert"),
            protocol_version = self._setting("retrieval", "tls_version"),
            server_name      = server_name,
            timeout          = self._float_setting("retrieval", "timeout", DEFAULT_TIMEOUT),
        )
        self.validation = validation

        self.retrieval.validate()
        self.validation.validate()

    def _load_file(self, path: str) -> dict:
        try:
            with open(path, "rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e.strerror}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid configuration file {path}: {e}") from e

    def _setting(self, section: str, key: str, default: Any = None) -> Any:
        if key in self.options:
            return self.options[key]
        return self.file_settings.get(section, {}).get(key, default)

    def _int_setting(self, section: str, key: str, default: Optional[int] = None) -> Optional[int]:
        value = self._setting(section, key, default)
        if value is None or isinstance(value, int) and not isinstance(value, bool):
            return value
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"'{key}' must be an integer, got '{value}'")

    def _float_setting(self, section: str, key: str, default: Optional[float] = None) -> Optional[float]:
        value = self._setting(section, key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"'{key}' must be a number, got '{value}'")

    def _build_validation(self) -> ValidationConfig:
        common_name = self._setting("validation", "cn")
        if self._setting("validation", "host_cn", False):
            common_name = self._setting("retrieval", "host")

        return ValidationConfig(
            critical_days         = self._int_setting("validation", "critical", DEFAULT_CRITICAL_DAYS),
            warning_days          = self._int_setting("validation", "warning", DEFAULT_WARNING_DAYS),
            common_name           = common_name,
            match_altnames        = bool(self._setting("validation", "altnames", False)),
            match_mode            = str(self._setting("validation", "match_mode", "literal")).lower(),
            issuer                = self._setting("validation", "issuer"),
            serial                = self._normalize_serial(self._setting("validation", "serial")),
            allow_self_signed     = bool(self._setting("validation", "selfsigned", False)),
            ignore_expiration     = bool(self._setting("validation", "ignore_exp", False)),
            reject_weak_signature = not self._setting("validation", "ignore_sig_alg", False),
            organization          = self._setting("validation", "org"),
            email                 = self._setting("validation", "email"),
            grade_threshold       = self._setting("validation", "ssllabs"),
            ignore_grade_cache    = bool(self._setting("validation", "ignore_ssl_labs_cache", False)),
            check_revocation      = bool(self._setting("validation", "ocsp", False)),
            check_authority       = not self._setting("validation", "noauth", False),
            long_output           = self._parse_long_output(self._setting("validation", "long_output")),
        )

    @staticmethod
    def _normalize_serial(serial: Optional[str]) -> Optional[str]:
        if serial is None:
            return None
        return str(serial).strip().upper().replace(":", "")

    @staticmethod
    def _parse_long_output(value: Any) -> tuple[str, ...]:
        """Accept 'a,b,c', a TOML list, or 'all'. Names are checked later by the long-output stage."""
        if not value:
            return ()
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",")]
        else:
            items = [str(item).strip() for item in value]
        items = [item for item in items if item]
        if items == ["all"]:
            return LONG_OUTPUT_ATTRIBUTES
        return tuple(items)

class Logger:
    """Route log records to stderr (stdout carries only the status line) and, optionally, a rotating file."""
    log_format  = "%(asctime)s.%(msecs)03d %(levelname)-8s %(module)s: %(message)s"
    date_format = "%Y-%m-%dT%H:%M:%S"
    levels = {
        "debug":    logging.DEBUG,
        "info":     logging.INFO,
        "warn":     logging.WARNING,
        "warning":  logging.WARNING,
        "error":    logging.ERROR,
        "critical": logging.CRITICAL,
    }

    @classmethod
    def level_for(cls, logging_level: str, verbosity: int = 0) -> int:
        if verbosity >= 2:
            return logging.DEBUG
        if verbosity == 1:
            return logging.INFO
        if logging_level not in cls.levels:
            logging.warning(f"Invalid logging level '{logging_level}'; defaulting to 'error'.")
            return logging.ERROR
        return cls.levels[logging_level]

    @classmethod
    def configure(cls, logging_level: str = "error", verbosity: int = 0, log_file: Optional[str] = None) -> logging.Logger:
        formatter = logging.Formatter(cls.log_format, datefmt=cls.date_format)
        level = cls.level_for(logging_level, verbosity)

        root = logging.getLogger()
        root.setLevel(level)
        for handler in list(root.handlers):
            if getattr(handler, "_certcheck", False):
                root.removeHandler(handler)
                handler.close()

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(level)
        stream_handler._certcheck = True
        root.addHandler(stream_handler)

        if log_file:
            file_handler = RotatingFileHandler(log_file, maxBytes=5*1048576, backupCount=7)
            file_handler.setFormatter(formatter)
            file_handler.setLevel(logging.DEBUG)
            file_handler._certcheck = True
            root.addHandler(file_handler)
            root.setLevel(logging.DEBUG)
            logging.info(f"Logging to {log_file}.")

        return root
