import logging
import requests
from dataclasses import dataclass
from requests.exceptions import RequestException
from typing import Optional

from CertCheck.checks.grade_converter import convert_grade
from CertCheck.utils.errors import ExternalServiceError
from CertCheck.utils.misc import request_timeout

SSL_LABS_API = "https://api.ssllabs.com/api/v2/analyze"

@dataclass(frozen=True)
class Assessment:
    status: str
    grade: Optional[str] = None
    status_message: Optional[str] = None

def lowest_grade(endpoints: list[dict]) -> Optional[str]:
    """Worst grade reported across all assessed endpoints (a host can resolve to several addresses)."""
    grades = [endpoint["grade"] for endpoint in endpoints if endpoint.get("grade")]
    if not grades:
        return None
    return min(grades, key=convert_grade)

def fetch_assessment(host: str, ignore_cache: bool = False, timeout: float = 15) -> Assessment:
    """
    Query the SSL Labs assessment API for host.

    Args:
        host:           Hostname to look up.
        ignore_cache:   Ask SSL Labs to start a fresh assessment instead of serving a cached one.
        timeout:        Request timeout in seconds.

    Raises:
        ExternalServiceError if SSL Labs cannot be reached or does not return a JSON document.
    """
    logging.debug("-----------------------------------Entering fetch_assessment()------------------------------------")
    params = {"host": host}
    if ignore_cache:
        params["startNew"] = "on"

    try:
        response = requests.get(SSL_LABS_API, params=params, timeout=request_timeout(timeout))
        response.raise_for_status()
    except RequestException as e:
        logging.error(f'Error contacting SSL Labs: {e}')
        raise ExternalServiceError(f"Cannot contact SSL Labs: {e}") from e

    try:
        document = response.json()
    except ValueError as e:
        raise ExternalServiceError("SSL Labs returned an invalid response") from e

    status = str(document.get("status", ""))
    logging.info(f'SSL Labs assessment status for {host}: {status}')
    return Assessment(
        status         = status,
        grade          = lowest_grade(document.get("endpoints") or []),
        status_message = document.get("statusMessage"),
    )
