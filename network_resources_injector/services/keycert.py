"""
Server TLS identity and client CA pool.

The identity owns the live certificate/key pair as a ready-to-use SSLContext and
hands it out at handshake time; reloading builds a brand new context and swaps it
in under the write lock, so a handshake never sees a half updated pair.
"""

from __future__ import annotations

import os
import ssl
from typing import Callable, List, Optional, Sequence

from ..core.locks import ReadWriteLock
from ..core.logging import get_logger


logger = get_logger(__name__)

# TLS 1.2 suites; TLS 1.3 suites are not configurable and are all AEAD
CIPHER_SUITES = ":".join(
    [
        "ECDHE-RSA-AES256-GCM-SHA384",
        "ECDHE-ECDSA-AES256-GCM-SHA384",
        "ECDHE-RSA-AES128-GCM-SHA256",
        "ECDHE-ECDSA-AES128-GCM-SHA256",
    ]
)
ECDH_CURVE = "secp384r1"


class ClientCAPool:
    """Client CA bundle used to verify API server client certificates."""

    def __init__(self, ca_paths: Sequence[str], insecure: bool = False) -> None:
        self.ca_paths: List[str] = list(ca_paths)
        self.insecure = insecure
        if not self.insecure:
            self.load()

    def load(self) -> None:
        if self.insecure:
            logger.info("can not load client CA pool. Disable insecure mode to enable")
            return
        if not self.ca_paths:
            raise ValueError("no client CA file path(s) found")

        for path in self.ca_paths:
            if not os.path.isfile(path):
                raise ValueError(f"failed to load client CA file from path '{path}'")
            scratch = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            try:
                scratch.load_verify_locations(cafile=path)
            except ssl.SSLError as exc:
                raise ValueError(f"failed to parse client CA file from path '{path}'") from exc
            logger.info("added client CA to cert pool from path '%s'", path)
        logger.info("added '%d' client CA(s) to cert pool", len(self.ca_paths))

    def apply(self, context: ssl.SSLContext) -> None:
        if self.insecure:
            context.verify_mode = ssl.CERT_NONE
            return
        context.verify_mode = ssl.CERT_REQUIRED
        for path in self.ca_paths:
            context.load_verify_locations(cafile=path)


def new_server_context(ca_pool: Optional[ClientCAPool] = None) -> ssl.SSLContext:
    """Server side SSLContext with the webhook's protocol and cipher restrictions, without a certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(CIPHER_SUITES)
    context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    context.set_ecdh_curve(ECDH_CURVE)
    if ca_pool is not None:
        ca_pool.apply(context)
    else:
        context.verify_mode = ssl.CERT_NONE
    return context


class KeyCertIdentity:
    """Current server certificate/key pair, swappable at runtime."""

    def __init__(
        self,
        cert_path: str,
        key_path: str,
        context_factory: Optional[Callable[[], ssl.SSLContext]] = None,
    ) -> None:
        self._cert_path = cert_path
        self._key_path = key_path
        self._context_factory = context_factory or new_server_context
        self._lock = ReadWriteLock()
        self._context = self._load()

    @property
    def cert_path(self) -> str:
        return self._cert_path

    @property
    def key_path(self) -> str:
        return self._key_path

    def _load(self) -> ssl.SSLContext:
        context = self._context_factory()
        context.load_cert_chain(certfile=self._cert_path, keyfile=self._key_path)
        context.sni_callback = self._select_context
        return context

    def reload(self) -> None:
        """Load the pair from disk again; raises if it does not parse or match."""
        context = self._load()
        with self._lock.write_locked():
            self._context = context
        logger.info("certificate reloaded")

    def get_context(self) -> ssl.SSLContext:
        with self._lock.read_locked():
            return self._context

    def get_certificate_func(self) -> Callable[[ssl.SSLObject, Optional[str], ssl.SSLContext], None]:
        """Handshake time callback selecting the current pair."""
        return self._select_context

    def _select_context(self, ssl_object, server_name, initial_context) -> None:
        current = self.get_context()
        if ssl_object.context is not current:
            ssl_object.context = current
        return None
