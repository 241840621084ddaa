import certifi
import logging
import os
import socket
from dataclasses import dataclass
from OpenSSL import SSL, crypto
from typing import Optional

from CertCheck.checks.starttls import negotiate_starttls
from CertCheck.config.certcheck_config import LOCALHOST, RetrievalRequest
from CertCheck.utils.deadline import run_with_deadline
from CertCheck.utils.errors import ConfigurationError, ParseError, TransportError
from CertCheck.utils.misc import get_verify_error_description
from CertCheck.utils.x509 import PEM_MARKER

UNEXPECTED_MESSAGE = "unexpected message"
SELF_SIGNED_CODES = (18, 19)     # X509_V_ERR_DEPTH_ZERO_SELF_SIGNED_CERT, X509_V_ERR_SELF_SIGNED_CERT_IN_CHAIN
EXPIRED_CODE = 10                # X509_V_ERR_CERT_HAS_EXPIRED

# Alerts sent when the peer insists on a client certificate. The generic "handshake failure" alert is
# not one of them. The server certificate has already been received at that point, so the run can
# continue with it.
CLIENT_CERT_FAULTS = ("certificate required", "bad certificate", "peer did not return a certificate")

@dataclass(frozen=True)
class VerifyError:
    code: int
    depth: int
    message: str

    @property
    def self_signed(self) -> bool:
        return self.code in SELF_SIGNED_CODES

    def __str__(self) -> str:
        return f"verify error:num={self.code}:{self.message} (depth {self.depth})"

@dataclass(frozen=True)
class RetrievalResult:
    """Raw output of the retrieval stage: leaf-first PEM bytes plus structured diagnostics."""
    pem: bytes
    diagnostics: tuple[str, ...] = ()
    verify_errors: tuple[VerifyError, ...] = ()
    success: bool = True

    @property
    def collapsed_diagnostics(self) -> str:
        return "; ".join(line for line in self.diagnostics if line)

class VerifyRecorder:
    """pyOpenSSL verify callback that records every chain verification fault and lets the handshake continue."""

    def __init__(self) -> None:
        self.errors: list[VerifyError] = []

    def __call__(self, conn: SSL.Connection, cert: crypto.X509, errno: int, depth: int, preverify_ok: int) -> bool:
        if not preverify_ok:
            error = VerifyError(errno, depth, get_verify_error_description(errno))
            if error not in self.errors:
                logging.info(f'Chain verification fault: {error}')
                self.errors.append(error)
        return True

def ssl_error_lines(error: Exception) -> list[str]:
    """Flatten a pyOpenSSL error into 'library:function:reason' lines."""
    lines = []
    if error.args and isinstance(error.args[0], list):
        for entry in error.args[0]:
            if isinstance(entry, tuple):
                lines.append(":".join(str(part) for part in entry if part))
            else:
                lines.append(str(entry))
    elif isinstance(error, SSL.SysCallError) and len(error.args) == 2:
        lines.append(str(error.args[1]))
    if not lines:
        lines.append(str(error) or error.__class__.__name__)
    return lines

def is_unexpected_message(error: Exception) -> bool:
    return any(UNEXPECTED_MESSAGE in line.lower() for line in ssl_error_lines(error))

def is_client_cert_request(error: Exception) -> bool:
    return any(fault in line.lower() for line in ssl_error_lines(error) for fault in CLIENT_CERT_FAULTS)

def supports_sni() -> bool:
    return hasattr(SSL.Connection, "set_tlsext_host_name")

def create_context(request: RetrievalRequest, recorder: VerifyRecorder) -> SSL.Context:
    """Build the client SSL.Context: trust anchors, forced protocol version and optional client certificate."""
    ctx = SSL.Context(SSL.TLS_CLIENT_METHOD)

    match request.protocol_version:
        case "tls1":
            version = SSL.TLS1_VERSION
        case "tls1_1":
            version = SSL.TLS1_1_VERSION
        case "tls1_2":
            version = SSL.TLS1_2_VERSION
        case "tls1_3":
            version = SSL.TLS1_3_VERSION
        case _:
            version = None
    if version is not None:
        ctx.set_min_proto_version(version)
        ctx.set_max_proto_version(version)
        if version in (SSL.TLS1_VERSION, SSL.TLS1_1_VERSION):
            # Legacy protocol versions are refused at the default OpenSSL security level.
            ctx.set_cipher_list(b"DEFAULT:@SECLEVEL=0")
        logging.debug(f'Protocol version forced to {request.protocol_version}.')

    ctx.set_verify(SSL.VERIFY_PEER, recorder)

    try:
        if request.root_cert and os.path.isdir(request.root_cert):
            ctx.load_verify_locations(None, request.root_cert)
        elif request.root_cert:
            ctx.load_verify_locations(request.root_cert)
        else:
            ctx.load_verify_locations(certifi.where())
    except SSL.Error as e:
        raise ConfigurationError(f"Cannot load root certificates from {request.root_cert or certifi.where()}: {ssl_error_lines(e)[0]}")

    if request.client_cert:
        if request.client_pass is not None:
            passphrase = request.client_pass.encode()
            ctx.set_passwd_cb(lambda max_length, prompt_twice, userdata: passphrase)
        try:
            ctx.use_certificate_chain_file(request.client_cert)
            ctx.use_privatekey_file(request.client_key or request.client_cert)
        except SSL.Error as e:
            raise ConfigurationError(f"Cannot load client certificate {request.client_cert}: {ssl_error_lines(e)[0]}")

    return ctx

def handshake(request: RetrievalRequest, server_name: Optional[str]) -> RetrievalResult:
    """
    Connect to request.host:request.port (upgrading via STARTTLS when needed) and collect the presented chain.

    Raises:
        TransportError if the connection or the cleartext negotiation fails.
        SSL.Error for TLS handshake faults, so the caller can apply the SNI retry rule.
    """
    logging.debug("-----------------------------------Entering handshake()-------------------------------------------")
    recorder = VerifyRecorder()
    ctx = create_context(request, recorder)

    try:
        sock = socket.create_connection((request.host, request.port), timeout=request.timeout or None)
    except OSError as e:
        logging.error(f'Unable to connect to {request.host}:{request.port}: {e}')
        raise TransportError(f"Cannot connect to {request.host}:{request.port}: {e.strerror or e}") from e

    diagnostics = []
    try:
        if request.uses_starttls:
            negotiate_starttls(sock, request.protocol, request.host)

        # OpenSSL drives the file descriptor directly and expects a blocking socket; the overall
        # deadline is enforced by run_with_deadline().
        sock.settimeout(None)

        conn = SSL.Connection(ctx, sock)
        if server_name:
            conn.set_tlsext_host_name(server_name.encode("idna"))
        conn.set_connect_state()

        try:
            conn.do_handshake()
        except SSL.Error as e:
            chain = conn.get_peer_cert_chain()
            if chain and not request.client_cert and is_client_cert_request(e):
                # The server certificate was received before the peer rejected the missing client certificate.
                logging.warning(f'Server requested a client certificate; continuing with the presented chain.')
                diagnostics.extend(ssl_error_lines(e))
            else:
                raise
        else:
            chain = conn.get_peer_cert_chain()
            try:
                conn.shutdown()
            except SSL.Error:
                pass

        pem = b"".join(crypto.dump_certificate(crypto.FILETYPE_PEM, cert) for cert in chain or [])
        logging.info(f'Received {len(chain or [])} certificate(s) from {request.host}:{request.port}.')
        return RetrievalResult(pem=pem, diagnostics=tuple(diagnostics), verify_errors=tuple(recorder.errors), success=bool(pem))
    except OSError as e:
        raise TransportError(f"Cannot fetch certificate from {request.host}:{request.port}: {e.strerror or e}") from e
    finally:
        sock.close()

def fetch_remote_certificate(request: RetrievalRequest) -> RetrievalResult:
    server_name = request.server_name or request.host
    if not supports_sni() or _is_ip_address(server_name):
        server_name = None

    try:
        return handshake(request, server_name)
    except SSL.Error as e:
        if not (server_name and is_unexpected_message(e)):
            raise TransportError(ssl_error_lines(e)[0]) from e
        logging.warning(f'Handshake with SNI {server_name} failed with an unexpected message; retrying without SNI.')

    try:
        return handshake(request, None)
    except SSL.Error as e:
        if is_unexpected_message(e):
            raise TransportError("Cannot fetch certificate: unexpected message during protocol negotiation") from e
        raise TransportError(ssl_error_lines(e)[0]) from e

def read_certificate_file(request: RetrievalRequest) -> RetrievalResult:
    logging.debug("-----------------------------------Entering read_certificate_file()-------------------------------")
    if request.host != LOCALHOST:
        raise ConfigurationError(f"A local certificate file can only be checked with --host {LOCALHOST}")
    try:
        with open(request.file, "rb") as f:
            data = f.read()
    except OSError as e:
        raise TransportError(f"Cannot read certificate file {request.file}: {e.strerror}") from e

    if PEM_MARKER not in data:
        raise ParseError(f"{request.file} is not a valid certificate file")
    return RetrievalResult(pem=data)

def fetch_certificate(request: RetrievalRequest) -> RetrievalResult:
    """
    Obtain the certificate described by request, from a local file or over the network.

    Args:
        request:    The RetrievalRequest built from the configuration.

    Returns:
        RetrievalResult with leaf-first PEM bytes, handshake diagnostics and chain verification faults.

    Raises:
        ConfigurationError, TransportError (including DeadlineExceeded) or ParseError.
    """
    if request.is_local_file:
        return read_certificate_file(request)

    result = run_with_deadline(fetch_remote_certificate, request.timeout, request)
    if PEM_MARKER not in result.pem:
        details = result.collapsed_diagnostics
        raise ParseError(f"No certificate returned: {details}" if details else "No certificate returned")
    return result

def _is_ip_address(name: str) -> bool:
    for family in (socket.AF_INET, socket.AF_INET6):
        try:
            socket.inet_pton(family, name)
            return True
        except (OSError, ValueError):
            continue
    return False
