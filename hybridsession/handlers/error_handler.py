#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: error_handler.py

    Description:
        Centralized error handling for all hybrid session components.
        Defines the error taxonomy (key format, wrap/unwrap, tamper,
        unsupported version, missing session), converts exceptions into the
        standardized {ok:false, error} failure packet, and logs diagnostic
        information to the audit log. Unexpected exceptions are always
        normalized to a generic internal error so no detail leaks to clients.
"""


from dataclasses import dataclass
import typing
from typing import Tuple
from hybridsession.utilities.audit_log import AuditLog


"""
    Container Class for HTTP status constants.
"""
@dataclass
class HTTPCodes:
    # 200 OK
    OK = 200

    # 400 Bad Request
    BAD_REQUEST = 400

    # 413 Payload Too Large
    PAYLOAD_TOO_LARGE = 413

    # 415 Unsupported Media Type
    UNSUPPORTED_MEDIA_TYPE = 415

    # 500 Internal Server Error
    INTERNAL_SERVER_ERROR = 500

    # 502 Bad Gateway (client side, upstream failure)
    BAD_GATEWAY = 502


"""
    Container Class for application error code strings.
"""
@dataclass
class ApplicationCodes:

    MALFORMED_JSON           = "malformed_json"
    MISSING_FIELDS           = "missing_fields"
    UNKNOWN_FIELDS           = "unknown_fields"
    INVALID_TYPE             = "invalid_type"
    INVALID_LENGTH           = "invalid_length"
    INVALID_CONTENT_TYPE     = "invalid_content_type"
    INVALID_REQUEST          = "invalid_request"
    INVALID_PACKET_STRUCTURE = "invalid_packet_structure"
    INVALID_BASE64URL        = "invalid_base64url"
    INVALID_AES_KEY          = "invalid_aes_key"
    INVALID_NONCE            = "invalid_nonce"
    INVALID_CONFIGURATION    = "invalid_configuration"
    KEY_FORMAT_ERROR         = "key_format_error"
    WRAP_ERROR               = "wrap_error"
    UNWRAP_ERROR             = "unwrap_error"
    TAMPER_ERROR             = "tamper_error"
    UNSUPPORTED_VERSION      = "unsupported_version"
    NO_ACTIVE_SESSION        = "no_active_session"
    SESSION_EXPIRED          = "session_expired"
    SESSION_STORE_ERROR      = "session_store_error"
    ENCRYPTION_ERROR         = "encryption_error"
    BUSINESS_LOGIC_ERROR     = "business_logic_error"
    REQUEST_HANDLER_ERROR    = "request_handler_error"
    TRANSPORT_ERROR          = "transport_error"
    SERVER_REJECTED          = "server_rejected"
    INTERNAL_SERVER_ERROR    = "internal_server_error"



class HybridSessionError(Exception):

    """
        Initialize a HybridSessionError containing application code, HTTP code, detail message, and field context.

        @param application_code (str): Identifier from ApplicationCodes signaling the failure type.
        @param http_code (int): HTTP status code associated with the error.
        @param detail (str): Descriptive message intended for client-facing error packets.
        @param field (str): Logical field related to the error (optional).
        @require isinstance(application_code, str)
        @require isinstance(http_code, int)
        @require isinstance(detail, str)
        @ensures Error metadata is accessible to the centralized ErrorHandler.
    """
    def __init__(self, application_code: str, http_code: int, detail: str, field: str = "") -> None:
        self.application_code = application_code
        self.http_code = http_code
        self.detail = detail
        self.field = field
        super().__init__(f"{application_code}: {detail}")



####################################################################################################
# Error taxonomy
####################################################################################################

"""
    Malformed PEM/DER key material after normalization, or key material of the wrong role/format.
    Fatal and never retried; surfaced as a configuration problem when it comes from configuration.
"""
class KeyFormatError(HybridSessionError):

    def __init__(self, detail: str = "Invalid key material", field: str = "key", http_code: int = HTTPCodes.INTERNAL_SERVER_ERROR) -> None:
        super().__init__(ApplicationCodes.KEY_FORMAT_ERROR, http_code, detail, field)


"""
    RSA-OAEP wrap of a session key failed.
"""
class WrapError(HybridSessionError):

    def __init__(self, detail: str = "Unable to wrap session key", field: str = "aes_key") -> None:
        super().__init__(ApplicationCodes.WRAP_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, detail, field)


"""
    RSA-OAEP unwrap failed. Always one message, whatever check failed.
"""
class UnwrapError(HybridSessionError):

    MESSAGE = "Unable to unwrap session key"

    def __init__(self) -> None:
        super().__init__(ApplicationCodes.UNWRAP_ERROR, HTTPCodes.BAD_REQUEST, UnwrapError.MESSAGE, "wrapped_key_b64")


"""
    AEAD authentication failure. Never distinguishes a bad key from bad ciphertext.
"""
class TamperError(HybridSessionError):

    MESSAGE = "decryption failed"

    def __init__(self) -> None:
        super().__init__(ApplicationCodes.TAMPER_ERROR, HTTPCodes.BAD_REQUEST, TamperError.MESSAGE, "payload")


"""
    Unknown wire version or algorithm tag.
"""
class UnsupportedVersionError(HybridSessionError):

    def __init__(self, detail: str = "Unsupported packet version or algorithm", field: str = "v") -> None:
        super().__init__(ApplicationCodes.UNSUPPORTED_VERSION, HTTPCodes.BAD_REQUEST, detail, field)


"""
    Programmer-error guard on the initiating side: no session was ensured, or it has expired.
"""
class NoActiveSessionError(HybridSessionError):

    def __init__(self, detail: str = "No active session; call ensure_session first", application_code: str = ApplicationCodes.NO_ACTIVE_SESSION) -> None:
        super().__init__(application_code, HTTPCodes.INTERNAL_SERVER_ERROR, detail, "session")





class ErrorHandler:

    """
        Initialize the ErrorHandler and attach an AuditLog for diagnostic event recording.

        @param audit_log (AuditLog | None): Shared audit log; a private one is created if omitted.
        @ensures ErrorHandler is ready to format and log errors.
    """
    def __init__(self, audit_log: typing.Optional[AuditLog] = None) -> None:

        self.audit_log = audit_log if audit_log is not None else AuditLog()


    """
        Process an exception and return a standardized failure packet.

        @param e (Exception): Exception raised during request handling.
        @param context (str): Logical context string identifying the failing operation.
        @require isinstance(e, Exception)
        @return tuple[dict, int]: (clean_error_packet, http_status_code)
        @ensures Exception is logged to audit_log and a canonical failure packet is returned.
    """
    def handle_server_error(self, e: Exception, context: str = "") -> Tuple[dict, int]:

        # If the exception is already a HybridSessionError
        if isinstance(e, HybridSessionError):
            application_code = e.application_code
            http_code = e.http_code
            message = e.detail
        else:
            # For non-raised errors, normalize to INTERNAL_SERVER_ERROR
            application_code = ApplicationCodes.INTERNAL_SERVER_ERROR
            http_code = HTTPCodes.INTERNAL_SERVER_ERROR
            message = "An internal server error occurred. Please try again later."

        # Always log the raw exception detail for operators
        self.audit_log.event(event="server_exception", context=context, error_code=application_code, detail=str(e))

        # Return packet and HTTP code
        return self.create_error_response_packet(message), http_code



    """
        Build a standardized failure response packet.

        @param message (str): Human-readable error message for the client.
        @require isinstance(message, str)
        @return dict: {ok: False, error: message}
    """
    def create_error_response_packet(self, message: str) -> dict:

        if not isinstance(message, str) or not message.strip():
            message = "An internal server error occurred. Please try again later."

        return {"ok": False, "error": message}
