import logging
import socket

from CertCheck.utils.errors import TransportError

class ReplyReader:
    """Buffered reader for the cleartext part of a STARTTLS dialogue."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.buffer = b""

    def _fill(self) -> None:
        chunk = self.sock.recv(4096)
        if not chunk:
            raise TransportError("Connection closed by server during STARTTLS negotiation")
        self.buffer += chunk

    def readline(self) -> str:
        while b"\n" not in self.buffer:
            self._fill()
        line, _, self.buffer = self.buffer.partition(b"\n")
        return line.rstrip(b"\r").decode("utf-8", errors="replace")

    def read_reply(self) -> tuple[str, list[str]]:
        """Read a (possibly multi-line) SMTP/FTP style reply: '250-...' lines continue, '250 ...' ends it."""
        lines = []
        while True:
            line = self.readline()
            lines.append(line)
            if len(line) < 4 or line[3] != "-":
                return line[:3], lines

    def read_until(self, *markers: bytes) -> bytes:
        while not any(marker in self.buffer for marker in markers):
            self._fill()
        data, self.buffer = self.buffer, b""
        return data

def _expect(protocol: str, condition: bool, reply: str) -> None:
    if not condition:
        logging.error(f'{protocol.upper()} STARTTLS negotiation failed: {reply}')
        raise TransportError(f"{protocol.upper()} STARTTLS negotiation failed: {reply.strip()}")

def smtp_starttls(sock: socket.socket, host: str) -> None:
    reader = ReplyReader(sock)
    code, lines = reader.read_reply()
    _expect("smtp", code == "220", lines[-1])

    sock.sendall(f"EHLO {socket.getfqdn()}\r\n".encode())
    code, lines = reader.read_reply()
    _expect("smtp", code == "250", lines[-1])
    if not any("STARTTLS" in line.upper() for line in lines):
        logging.warning(f"SMTP server {host} does not advertise STARTTLS; trying anyway.")

    sock.sendall(b"STARTTLS\r\n")
    code, lines = reader.read_reply()
    _expect("smtp", code == "220", lines[-1])

def pop3_starttls(sock: socket.socket, host: str) -> None:
    reader = ReplyReader(sock)
    banner = reader.readline()
    _expect("pop3", banner.startswith("+OK"), banner)

    sock.sendall(b"STLS\r\n")
    reply = reader.readline()
    _expect("pop3", reply.startswith("+OK"), reply)

def imap_starttls(sock: socket.socket, host: str) -> None:
    reader = ReplyReader(sock)
    banner = reader.readline()
    _expect("imap", banner.upper().startswith("* OK"), banner)

    sock.sendall(b". STARTTLS\r\n")
    while True:
        reply = reader.readline()
        if reply.startswith(". "):
            break
        logging.debug(f'Untagged IMAP response: {reply}')
    _expect("imap", reply.upper().startswith(". OK"), reply)

def ftp_starttls(sock: socket.socket, host: str) -> None:
    reader = ReplyReader(sock)
    code, lines = reader.read_reply()
    _expect("ftp", code == "220", lines[-1])

    sock.sendall(b"AUTH TLS\r\n")
    code, lines = reader.read_reply()
    _expect("ftp", code == "234", lines[-1])

def xmpp_starttls(sock: socket.socket, host: str) -> None:
    reader = ReplyReader(sock)
    stream_header = (
        f"<?xml version='1.0'?><stream:stream to='{host}' xmlns='jabber:client' "
        f"xmlns:stream='http://etherx.jabber.org/streams' version='1.0'>"
    )
    sock.sendall(stream_header.encode())

    features = reader.read_until(b"</stream:features>")
    _expect("xmpp", b"starttls" in features.lower(), "server does not offer STARTTLS")

    sock.sendall(b"<starttls xmlns='urn:ietf:params:xml:ns:xmpp-tls'/>")
    reply = reader.read_until(b"proceed", b"failure")
    _expect("xmpp", b"proceed" in reply, reply.decode("utf-8", errors="replace"))

STARTTLS_HANDLERS = {
    "smtp": smtp_starttls,
    "pop3": pop3_starttls,
    "imap": imap_starttls,
    "ftp":  ftp_starttls,
    "xmpp": xmpp_starttls,
}

def negotiate_starttls(sock: socket.socket, protocol: str, host: str) -> None:
    """Speak the cleartext preamble of `protocol` on sock so that the next bytes exchanged are a TLS handshake."""
    logging.debug(f"-----------------------------------Entering negotiate_starttls() for {protocol}-----------------------")
    try:
        handler = STARTTLS_HANDLERS[protocol]
    except KeyError:
        raise TransportError(f"No STARTTLS support for protocol '{protocol}'")
    try:
        handler(sock, host)
    except OSError as e:
        raise TransportError(f"Cannot negotiate STARTTLS with {host}: {e}") from e
    logging.info(f'{protocol.upper()} STARTTLS negotiation with {host} succeeded.')
