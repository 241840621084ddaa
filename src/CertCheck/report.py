from typing import Optional

from CertCheck.config.certcheck_config import SHORTNAME, EvaluationResult, ValidationConfig
from CertCheck.utils.errors import ErrorLevel
from CertCheck.utils.misc import format_days

def compose_message(result: EvaluationResult) -> str:
    """Message part of the status line: the terminal finding, the collected warnings, or the OK summary."""
    terminal = result.terminal_finding
    if terminal is not None:
        return terminal.message

    if result.status == ErrorLevel.WARN:
        return "; ".join(finding.message for finding in result.warnings)

    message = "X.509 "
    if result.self_signed:
        message += "self signed "
    message += f"certificate '{result.matched_name or ''}' from '{result.matched_issuer or ''}'"
    if result.valid_until is not None:
        message += f" valid until {result.valid_until}"
    if result.days_valid is not None:
        message += f" ({format_days(result.days_valid)})"
    if result.grade:
        message += f", SSL Labs grade: {result.grade}"
    return message

def compose_performance_data(result: EvaluationResult, config: Optional[ValidationConfig]) -> str:
    if result.days_valid is None:
        return ""
    warning = critical = ""
    if config is not None:
        warning = "" if config.warning_days is None else str(config.warning_days)
        critical = "" if config.critical_days is None else str(config.critical_days)
    return f"|days={result.days_valid};{warning};{critical};;"

def compose_status_line(result: EvaluationResult, config: Optional[ValidationConfig] = None, name: Optional[str] = None) -> str:
    """
    Render the single report for the monitoring system.

    Args:
        result:     Final EvaluationResult of the run.
        config:     ValidationConfig supplying the thresholds for the performance data (None when configuration failed).
        name:       Optional identifying name printed after the status label.

    Returns:
        'SSL_CERT <LABEL>[ <name>]: <message>[|days=N;W;C;;]' followed by one 'attribute: value' line per
        requested long-output attribute.
    """
    label = result.status.label
    header = f"{SHORTNAME} {label} {name}" if name else f"{SHORTNAME} {label}"
    lines = [f"{header}: {compose_message(result)}{compose_performance_data(result, config)}"]
    lines.extend(f"{attribute}: {value}" for attribute, value in result.long_output)
    return "\n".join(lines)
