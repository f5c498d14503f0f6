#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
File name: request_handler.py

Description:
    Implements the receiving side of the hybrid session protocol. Every
    request carries its own RSA-wrapped AES key: the handler unwraps it with
    the server private key, decrypts the payload, hands the plaintext to the
    business logic, encrypts the result under the same key and forgets the
    key. No session, key or plaintext is kept between requests, so requests
    may be processed fully in parallel.
"""



import json
import time
import typing
from hybridsession.handlers.packet_handler import PacketHandler, SymmetricPacket
from hybridsession.handlers.error_handler import ApplicationCodes, HybridSessionError, HTTPCodes, KeyFormatError, UnwrapError
from hybridsession.encryption.AES_manager import AESManager
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.encryption.pem_manager import KeyMaterial
from hybridsession.utilities.audit_log import AuditLog
import hybridsession.handlers.sanitization_validation as VALIDATION
import hybridsession.constants as CONSTANTS


BusinessLogic = typing.Callable[[str], str]


"""
    Default business transform: echo the client's object with a server timestamp.

    @param plaintext (str): Decrypted client plaintext (JSON text when the client sent JSON).
    @return str: JSON text {"echo": <object or raw text>, "serverTime": <epoch ms>, "msg": "..."}
"""
def echo_business_logic(plaintext: str) -> str:

    try:
        echo = json.loads(plaintext)
    except ValueError:
        echo = plaintext

    response = {
        "echo": echo,
        "serverTime": int(time.time() * 1000),
        "msg": "server encrypted response",
    }
    return json.dumps(response, separators=(",", ":"), ensure_ascii=False)



"""
    Runs the stateless unwrap -> decrypt -> business logic -> encrypt cycle. The private key is
    loaded once at startup and passed in; it is never re-read from configuration per request.
"""
class ServerRequestHandler:
    """
        Initialize the ServerRequestHandler.

        @param: KeyMaterial - PKCS8 private key used to unwrap every request's session key.
        @param: BusinessLogic | None - plaintext -> plaintext transform; echo_business_logic by default.
        @param: RSAManager | None - key unwrapper.
        @param: AESManager | None - packet codec.
        @param: AuditLog | None - receives request_processed events.
    """
    def __init__(self, private_key: KeyMaterial, business_logic: typing.Optional[BusinessLogic] = None, rsa_manager: typing.Optional[RSAManager] = None,
                 aes_manager: typing.Optional[AESManager] = None, audit_log: typing.Optional[AuditLog] = None):

        # Validate parameter types
        if not isinstance(private_key, KeyMaterial) or not private_key.is_private:
            raise KeyFormatError("ServerRequestHandler requires private key material", "private_key")
        if business_logic is not None and not callable(business_logic):
            raise HybridSessionError(ApplicationCodes.REQUEST_HANDLER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "business_logic must be callable", "business_logic")

        self._private_key: KeyMaterial = private_key
        self._business_logic: BusinessLogic = business_logic if business_logic is not None else echo_business_logic
        self._rsa_manager: RSAManager = rsa_manager if rsa_manager is not None else RSAManager()
        self._aes_manager: AESManager = aes_manager if aes_manager is not None else AESManager()
        self._audit_log: typing.Optional[AuditLog] = audit_log
        self._packet_handler: PacketHandler = PacketHandler()


    """
        Process one encrypted request.

        @param wrapped_key_b64 (str): Base64URL RSA-OAEP wrapped AES key supplied by the client.
        @param payload (SymmetricPacket | dict | str): Encrypted client packet.
        @param private_key (KeyMaterial | None): Overrides the configured private key.
        @return SymmetricPacket: Response encrypted under the client's session key.
        @ensures Any failure aborts the request; nothing is retried and nothing is cached.
    """
    def handle(self, wrapped_key_b64: str, payload: typing.Union[SymmetricPacket, dict, str], private_key: typing.Optional[KeyMaterial] = None) -> SymmetricPacket:
        return self._process(wrapped_key_b64, payload, private_key)[0]


    def _process(self, wrapped_key_b64: str, payload: typing.Any, private_key: typing.Optional[KeyMaterial]) -> typing.Tuple[SymmetricPacket, dict]:

        key_material = private_key if private_key is not None else self._private_key

        # Step 1: recover the session key
        try:
            wrapped = VALIDATION.decode_base64url_to_bytes("wrapped_key_b64", wrapped_key_b64)
        except HybridSessionError:
            raise UnwrapError()
        aes_key = self._rsa_manager.unwrap(wrapped, key_material)

        # Step 2: authenticate and decrypt the client payload
        t_decrypt = time.perf_counter()
        request_plaintext = self._aes_manager.decrypt(payload, aes_key)
        server_decrypt_ms = (time.perf_counter() - t_decrypt) * 1000.0

        # Step 3: external business logic
        try:
            response_plaintext = self._business_logic(request_plaintext)
        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.BUSINESS_LOGIC_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Request processing failed", "payload")

        if not isinstance(response_plaintext, str):
            raise HybridSessionError(ApplicationCodes.BUSINESS_LOGIC_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Business logic must return a string", "payload")

        # Step 4: encrypt the response under the same key
        t_encrypt = time.perf_counter()
        response_packet = self._aes_manager.encrypt(response_plaintext, aes_key)
        server_encrypt_ms = (time.perf_counter() - t_encrypt) * 1000.0

        # Step 5: the key and plaintexts go out of scope here
        del aes_key, request_plaintext, response_plaintext

        timings = {"server_decrypt_ms": round(server_decrypt_ms, 3), "server_encrypt_ms": round(server_encrypt_ms, 3)}
        return response_packet, timings


    """
        Handle a parsed HTTP request body {wrapped_key_b64, payload}.

        @param: dict - parsed JSON body
        @return: tuple[dict, int] - ({ok: true, payload, timings}, 200)
        @ensures Validation and crypto failures propagate as HybridSessionError for the ErrorHandler.
    """
    def respond_to_encrypted_request(self, request_obj: typing.Any) -> typing.Tuple[dict, int]:

        request = self._packet_handler.parse_request_envelope(request_obj)

        response_packet, timings = self._process(request.wrapped_key_b64, request.payload, None)

        if self._audit_log is not None:
            self._audit_log.event(event="request_processed", context=CONSTANTS._DECRYPT_ROUTE, **timings)

        return self._packet_handler.create_success_response_packet(response_packet, timings), HTTPCodes.OK
