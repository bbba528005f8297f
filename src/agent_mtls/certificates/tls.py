"""Transport security contexts for mutual TLS between agents."""
from __future__ import annotations

import os
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from agent_mtls.certificates.agent_cert import AgentCertificate
from agent_mtls.certificates.files import PRIVATE_FILE_MODE, write_file


@dataclass(frozen=True)
class TransportSecurityContext:
    """Key, certificate and trust anchor needed for one side of an mTLS link.

    Parameters
    ----------
    agent_id:
        The agent the material belongs to.
    key_pem:
        The agent's private key.
    cert_pem:
        The agent's certificate.
    ca_cert_pem:
        The CA certificate; the only trust anchor for the peer.
    """

    agent_id: str
    key_pem: bytes = field(repr=False)
    cert_pem: bytes = field(repr=False)
    ca_cert_pem: bytes = field(repr=False)

    def server_context(self) -> ssl.SSLContext:
        """Return a server-side context that requires a CA-signed client cert."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self._configure(context)
        return context

    def client_context(self, check_hostname: bool = True) -> ssl.SSLContext:
        """Return a client-side context presenting this agent's certificate.

        Parameters
        ----------
        check_hostname:
            Match the peer certificate's DNS names against the host name
            passed to ``wrap_socket``.
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = check_hostname
        self._configure(context)
        return context

    def _configure(self, context: ssl.SSLContext) -> None:
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.verify_mode = ssl.CERT_REQUIRED
        context.load_verify_locations(cadata=self.ca_cert_pem.decode("ascii"))
        # load_cert_chain only reads from files.
        with tempfile.TemporaryDirectory(prefix="agent-mtls-") as tmp:
            tmp_dir = Path(tmp)
            os.chmod(tmp_dir, 0o700)
            cert_file = tmp_dir / "cert.pem"
            key_file = tmp_dir / "key.pem"
            write_file(cert_file, self.cert_pem)
            write_file(key_file, self.key_pem, PRIVATE_FILE_MODE)
            context.load_cert_chain(certfile=str(cert_file), keyfile=str(key_file))


class TLSContextFactory:
    """Builds :class:`TransportSecurityContext` objects from issued records."""

    @staticmethod
    def build(cert: AgentCertificate) -> TransportSecurityContext:
        return TransportSecurityContext(
            agent_id=cert.agent_id,
            key_pem=cert.key_pem,
            cert_pem=cert.cert_pem,
            ca_cert_pem=cert.ca_cert_pem,
        )
