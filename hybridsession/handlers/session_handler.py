#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: session_handler.py

    Description:
        Manages the initiating side's session state: AES-256 session key
        generation, RSA-OAEP wrapping under the server's public key, and the
        15-minute reuse window. The cache is an explicit SessionStore owned by
        the caller, with an injected clock, and holds at most one session at a
        time. ensure_session performs its read-check-generate-wrap-write
        sequence under the store lock, so concurrent callers that find no valid
        session trigger exactly one wrap and all observe the same wrapped key.
        Nothing here is ever written to disk.
"""


import threading
import typing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Callable, Union, Tuple
from hybridsession.handlers.error_handler import HybridSessionError, NoActiveSessionError, ApplicationCodes, HTTPCodes
from hybridsession.handlers.packet_handler import PacketHandler, SymmetricPacket, WrappedKeyEnvelope
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.encryption.AES_manager import AESManager
from hybridsession.encryption.pem_manager import KeyMaterial, load_public_key
from hybridsession.utilities.audit_log import AuditLog
import hybridsession.constants as CONSTANTS
import hybridsession.handlers.sanitization_validation as VALIDATION

####################################################################################################
# Client Session Data Object
####################################################################################################

"""
    Represents one client-side session. In-memory only.

    public_key_fingerprint : SHA-256 fingerprint of the public key the session key was wrapped under
    raw_key_bytes          : Raw AES-256 key bytes (32 bytes)
    wrapped_key_b64        : Base64URL RSA-OAEP wrapping of raw_key_bytes
    created_at             : UTC datetime when this session was created
    expires_at             : created_at + TTL; the session is valid strictly before this instant
"""
@dataclass(frozen=True)
class ClientSessionDataObject:

    public_key_fingerprint: str
    raw_key_bytes: bytes = field(repr=False)
    wrapped_key_b64: str = field(repr=False)
    created_at: datetime = None
    expires_at: datetime = None

    def is_valid_at(self, now: datetime) -> bool:
        return now < self.expires_at

    @property
    def created_ms(self) -> int:
        return VALIDATION.datetime_to_epoch_ms(self.created_at)


####################################################################################################
# SESSION STORE
####################################################################################################

"""
    Holds the single active client session. A new session replaces the previous one outright.
"""
class SessionStore:

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._session: Optional[ClientSessionDataObject] = None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def get(self, fingerprint: str) -> Optional[ClientSessionDataObject]:
        with self._lock:
            if self._session is not None and self._session.public_key_fingerprint == fingerprint:
                return self._session
            return None

    def current(self) -> Optional[ClientSessionDataObject]:
        with self._lock:
            return self._session

    def replace(self, session: ClientSessionDataObject) -> None:
        with self._lock:
            self._session = session

    def clear(self) -> None:
        with self._lock:
            self._session = None



class ClientSessionHandler:

    """
        Initialize ClientSessionHandler with its store, crypto managers and time source.

        @param store (SessionStore | None): Session cache; a private store is created if omitted.
        @param rsa_manager (RSAManager | None): Key wrapper.
        @param aes_manager (AESManager | None): Packet codec.
        @param clock (Callable[[], datetime] | None): Returns the current aware UTC datetime.
        @param ttl_seconds (int): Session lifetime; 15 minutes by default.
        @param audit_log (AuditLog | None): Receives session_created / session_ended events.
        @ensures All dependencies are validated and wired.
    """
    def __init__(self, store: Optional[SessionStore] = None, rsa_manager: Optional[RSAManager] = None, aes_manager: Optional[AESManager] = None,
                 clock: Optional[Callable[[], datetime]] = None, ttl_seconds: int = CONSTANTS._SESSION_TTL_SECONDS, audit_log: Optional[AuditLog] = None) -> None:

        # Validate dependencies
        if store is not None and not isinstance(store, SessionStore):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "ClientSessionHandler requires SessionStore instance", "store")
        if rsa_manager is not None and not isinstance(rsa_manager, RSAManager):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "ClientSessionHandler requires RSAManager instance", "rsa_manager")
        if aes_manager is not None and not isinstance(aes_manager, AESManager):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "ClientSessionHandler requires AESManager instance", "aes_manager")
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise HybridSessionError(ApplicationCodes.INVALID_CONFIGURATION, HTTPCodes.INTERNAL_SERVER_ERROR, "ttl_seconds must be a positive integer", "ttl_seconds")

        self._store: SessionStore = store if store is not None else SessionStore()
        self._rsa_manager: RSAManager = rsa_manager if rsa_manager is not None else RSAManager()
        self._aes_manager: AESManager = aes_manager if aes_manager is not None else AESManager()
        self._clock: Callable[[], datetime] = clock if clock is not None else VALIDATION.utc_now
        self._ttl = timedelta(seconds=ttl_seconds)
        self._audit_log: Optional[AuditLog] = audit_log
        self._packet_handler: PacketHandler = PacketHandler()


    @property
    def store(self) -> SessionStore:
        return self._store


    """
        Return a wrapped session key for the given public key, reusing the cached session while valid.

        @param public_key (str | KeyMaterial): Server SPKI public key (raw PEM text is normalized and parsed).
        @return WrappedKeyEnvelope: fresh=False on reuse (no RSA work), fresh=True when a new key was wrapped.
        @ensures At most one wrap runs at a time per store; a public-key change always yields a new session.
    """
    def ensure_session(self, public_key: Union[str, KeyMaterial]) -> WrappedKeyEnvelope:
        return self.checkout_session(public_key)[0]


    """
        Same as ensure_session, but also hand back the session that was validated or created.

        Callers running a full request/response exchange pass the returned session to
        encrypt_with_session / decrypt_with_session, so the exchange stays on one key even if
        another caller sharing the store replaces the session meanwhile.

        @return tuple[WrappedKeyEnvelope, ClientSessionDataObject]
    """
    def checkout_session(self, public_key: Union[str, KeyMaterial]) -> Tuple[WrappedKeyEnvelope, ClientSessionDataObject]:

        # Key format problems surface as KeyFormatError
        if not isinstance(public_key, KeyMaterial):
            public_key = load_public_key(public_key)

        try:
            with self._store.lock:

                now = self._clock()
                cached = self._store.get(public_key.fingerprint)

                # Fast path: same public key and still inside the TTL
                if cached is not None and cached.is_valid_at(now):
                    return self._packet_handler.create_wrapped_key_envelope(cached.wrapped_key_b64, False, cached.created_ms), cached

                previous = self._store.current()

                # Fresh key material for every new session
                raw_key = AESManager.generate_key()
                wrapped = self._rsa_manager.wrap(raw_key, public_key)

                session = ClientSessionDataObject(
                    public_key_fingerprint=public_key.fingerprint,
                    raw_key_bytes=raw_key,
                    wrapped_key_b64=VALIDATION.encode_bytes_to_base64url(wrapped),
                    created_at=now,
                    expires_at=now + self._ttl,
                )

                self._store.replace(session)

            if self._audit_log is not None:
                self._audit_log.event(event="session_created", fingerprint=public_key.fingerprint[:16], created_ms=session.created_ms, replaced_previous=previous is not None)

            return self._packet_handler.create_wrapped_key_envelope(session.wrapped_key_b64, True, session.created_ms), session

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.SESSION_STORE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to establish client session", "session")


    def _require_session(self) -> ClientSessionDataObject:
        session = self._store.current()
        if session is None:
            raise NoActiveSessionError()
        return session


    """
        Encrypt a JSON string under the active session key, or under a session from checkout_session.

        @param plaintext_json (str): Caller-encoded JSON text.
        @param session (ClientSessionDataObject | None): Pinned session; its validity was checked at checkout.
        @return SymmetricPacket: Encrypted packet.
        @ensures NoActiveSessionError when no session is pinned and none exists or the active one has expired.
    """
    def encrypt_with_session(self, plaintext_json: str, session: Optional[ClientSessionDataObject] = None) -> SymmetricPacket:

        if session is None:
            session = self._require_session()

            # Validity is re-checked on every unpinned use
            if not session.is_valid_at(self._clock()):
                raise NoActiveSessionError("Session expired; call ensure_session again", ApplicationCodes.SESSION_EXPIRED)

        return self._aes_manager.encrypt(plaintext_json, session.raw_key_bytes)


    """
        Decrypt a serialized SymmetricPacket under the active session key, or under a pinned session.

        @param packet_json (str | SymmetricPacket): Packet JSON text as received from the server.
        @param session (ClientSessionDataObject | None): Session the request was encrypted under.
        @return str: Decrypted plaintext (JSON text).
        @ensures NoActiveSessionError when no session exists; TamperError on integrity failure.
                 A response for a request sent just before expiry is still accepted.
    """
    def decrypt_with_session(self, packet_json: typing.Union[str, SymmetricPacket], session: Optional[ClientSessionDataObject] = None) -> str:

        if session is None:
            session = self._require_session()

        return self._aes_manager.decrypt(packet_json, session.raw_key_bytes)


    """
        Wrapped key of the active session, for building request envelopes.
    """
    def current_wrapped_key_b64(self) -> str:
        return self._require_session().wrapped_key_b64


    """
        Drop the active session. The next ensure_session generates and wraps a new key.
    """
    def end_session(self) -> None:
        with self._store.lock:
            had_session = self._store.current() is not None
            self._store.clear()

        if had_session and self._audit_log is not None:
            self._audit_log.event(event="session_ended")
