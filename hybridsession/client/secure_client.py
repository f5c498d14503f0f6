#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: secure_client.py

    Description:
        Initiating-side HTTP client. Ensures a session key (reusing it for the
        TTL window), encrypts a JSON object under it, posts
        {wrapped_key_b64, payload} to the receiving side and decrypts the
        response packet. Transport uses requests; every failure is surfaced as
        a HybridSessionError subclass and nothing is retried.
"""

import json
import time
import typing
from dataclasses import dataclass
import requests
from requests import RequestException
from hybridsession.handlers.error_handler import HybridSessionError, ApplicationCodes, HTTPCodes
from hybridsession.handlers.packet_handler import PacketHandler
from hybridsession.handlers.session_handler import ClientSessionHandler
from hybridsession.encryption.pem_manager import KeyMaterial, load_public_key
from hybridsession.config import ClientConfig
import hybridsession.constants as CONSTANTS


"""
    The receiving side could not be reached or answered with something that is not a response envelope.
"""
class SecureTransportError(HybridSessionError):

    def __init__(self, detail: str, status_code: typing.Optional[int] = None) -> None:
        super().__init__(ApplicationCodes.TRANSPORT_ERROR, HTTPCodes.BAD_GATEWAY, detail, "transport")
        self.status_code = status_code


"""
    The receiving side answered {ok:false, error}.
"""
class ServerRejectedError(HybridSessionError):

    def __init__(self, detail: str, status_code: int) -> None:
        super().__init__(ApplicationCodes.SERVER_REJECTED, status_code, detail, "response")
        self.status_code = status_code


"""
    Outcome of one encrypted round trip.

    response         : Decrypted, JSON-decoded server response
    fresh            : Whether this exchange created a new session key
    wrapped_key_b64  : Wrapped session key that was sent
    session_ms       : Time spent in ensure_session
    server_timings   : Server-reported decrypt/encrypt durations, when present
"""
@dataclass(frozen=True)
class SecureExchange:

    response: typing.Any
    fresh: bool
    wrapped_key_b64: str
    session_ms: float
    server_timings: typing.Optional[dict] = None


class SecureClient:

    """
        Initialize a SecureClient.

        @param base_url (str): Receiving side base URL, e.g. http://127.0.0.1:5000
        @param public_key (str | KeyMaterial): Server SPKI public key.
        @param session_handler (ClientSessionHandler | None): Shared session manager; a private one is created if omitted.
        @param http_session (requests.Session | None): Transport; anything with a compatible post() works.
        @param timeout (float): Per-request timeout in seconds.
    """
    def __init__(self, base_url: str, public_key: typing.Union[str, KeyMaterial], session_handler: typing.Optional[ClientSessionHandler] = None,
                 http_session: typing.Optional[typing.Any] = None, timeout: float = 10.0) -> None:

        self._url = base_url.rstrip("/") + CONSTANTS._DECRYPT_ROUTE
        self._public_key: KeyMaterial = public_key if isinstance(public_key, KeyMaterial) else load_public_key(public_key)
        self._session_handler = session_handler if session_handler is not None else ClientSessionHandler()
        self._http = http_session if http_session is not None else requests.Session()
        self._timeout = timeout
        self._packet_handler = PacketHandler()


    """
        Build a client from PUBLIC_KEY_PEM / HYBRIDSESSION_SERVER_URL / HYBRIDSESSION_SESSION_TTL_SECONDS.
    """
    @classmethod
    def from_env(cls, http_session: typing.Optional[typing.Any] = None) -> "SecureClient":
        config = ClientConfig.from_env()
        return cls(config.server_url, config.public_key_pem, ClientSessionHandler(ttl_seconds=config.ttl_seconds), http_session=http_session)


    @property
    def session_handler(self) -> ClientSessionHandler:
        return self._session_handler


    """
        Send one JSON-serializable object and return the decrypted server response.

        @param obj (Any): JSON-serializable request object.
        @return SecureExchange: Decoded response plus session/timing metadata.
        @ensures SecureTransportError for network/format failures, ServerRejectedError for {ok:false}.
    """
    def send(self, obj: typing.Any) -> SecureExchange:

        t_session = time.perf_counter()
        envelope, session = self._session_handler.checkout_session(self._public_key)
        session_ms = (time.perf_counter() - t_session) * 1000.0

        try:
            plaintext_json = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError):
            raise HybridSessionError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.BAD_REQUEST, "Request object is not JSON serializable", "obj")

        # The whole exchange stays on the checked-out session, whatever the store holds later
        packet = self._session_handler.encrypt_with_session(plaintext_json, session)
        request_body = self._packet_handler.create_request_envelope(session.wrapped_key_b64, packet).to_dict()

        try:
            http_response = self._http.post(self._url, json=request_body, timeout=self._timeout)
        except RequestException as exc:
            raise SecureTransportError(f"Request to {self._url} failed: {exc}")

        try:
            body = http_response.json()
        except ValueError:
            raise SecureTransportError(f"Non-JSON response from {self._url}", http_response.status_code)

        response = self._packet_handler.parse_response_envelope(body)
        if not response.ok:
            raise ServerRejectedError(response.error or "server error", http_response.status_code)

        response_plaintext = self._session_handler.decrypt_with_session(response.payload, session)

        try:
            decoded = json.loads(response_plaintext)
        except ValueError:
            decoded = response_plaintext

        return SecureExchange(response=decoded, fresh=envelope.fresh, wrapped_key_b64=session.wrapped_key_b64, session_ms=session_ms, server_timings=response.timings)
