#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: server.py

    Description:
        Entry point for the receiving side. Configures the Flask application,
        loads the server private key once from configuration, and wires the
        stateless request handler, audit logging and centralized error
        handling. Exposes POST /api/decrypt, which accepts
        {wrapped_key_b64, payload} and answers {ok:true, payload, timings} or
        {ok:false, error}. All exceptions are normalized through the
        ErrorHandler to keep a consistent failure shape.
"""


import typing
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

# Import logging module
from hybridsession.utilities.audit_log import AuditLog

# Import key loading
from hybridsession.encryption.pem_manager import KeyMaterial, load_private_key

# Import handlers
from hybridsession.handlers.request_handler import ServerRequestHandler, BusinessLogic
from hybridsession.handlers.error_handler import ErrorHandler, ApplicationCodes, HTTPCodes, HybridSessionError
from hybridsession.config import ServerConfig
import hybridsession.constants as CONSTANTS


#####################################################################################################################################################################

"""
    Create and configure the Flask application.

    @param private_key_pem (str | KeyMaterial | None): Server private key; read from PRIVATE_KEY_PEM when omitted.
    @param business_logic (BusinessLogic | None): plaintext -> plaintext transform; echo by default.
    @param audit_log (AuditLog | None): Shared audit log; one is created from configuration when omitted.
    @param config (ServerConfig | None): Explicit configuration; read from the environment when omitted.
    @return Flask: Fully configured Flask application instance.
    @ensures The private key is parsed exactly once here; a missing or malformed key raises KeyFormatError.
"""
def create_app(private_key_pem: typing.Union[str, KeyMaterial, None] = None, business_logic: typing.Optional[BusinessLogic] = None,
               audit_log: typing.Optional[AuditLog] = None, config: typing.Optional[ServerConfig] = None) -> Flask:

    config = config if config is not None else ServerConfig.from_env()

    app = Flask(__name__)

    # Enforce a payload limit to align with packet validation caps
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length


    ################################################################################################
    # Initialize Handlers
    ################################################################################################

    # Load the private key once; requests never touch configuration again
    if isinstance(private_key_pem, KeyMaterial):
        private_key = private_key_pem
    else:
        private_key = load_private_key(private_key_pem if private_key_pem is not None else config.private_key_pem)

    # Instantiate audit log for non-sensitive operational logging
    app.audit_log = audit_log if audit_log is not None else AuditLog(config.audit_log_path)

    # Centralized error handler
    app.error_handler = ErrorHandler(app.audit_log)

    # Stateless request handler
    app.request_handler = ServerRequestHandler(private_key=private_key, business_logic=business_logic, audit_log=app.audit_log)

    app.audit_log.event(event="server_started", key_fingerprint=private_key.fingerprint[:16])


    ################################################################################################
    # ROUTES
    ################################################################################################

    """
        Handle an encrypted request: unwrap, decrypt, process, encrypt.

        @require Request method is POST and Content-Type is application/json
        @require JSON body must parse into a dict
        @return flask.Response: JSON packet + status code
        @ensures Delegates to the request handler, normalizes errors through ErrorHandler.
    """
    @app.post(CONSTANTS._DECRYPT_ROUTE)
    def decrypt():
        try:

            # Require JSON content type
            content_type = request.headers.get("Content-Type", "").lower()
            if "application/json" not in content_type:
                raise HybridSessionError(ApplicationCodes.INVALID_CONTENT_TYPE, HTTPCodes.UNSUPPORTED_MEDIA_TYPE, f"Invalid Content-Type header: {content_type}", "Content-Type")

            # Reject oversized bodies before reading them
            if request.content_length is not None and request.content_length > app.config["MAX_CONTENT_LENGTH"]:
                raise HybridSessionError(ApplicationCodes.INVALID_LENGTH, HTTPCodes.PAYLOAD_TOO_LARGE, "Payload exceeds maximum size limit", "body")

            # Parse JSON body strictly
            try:
                encrypted_request = request.get_json(force=True)
            except Exception:
                raise HybridSessionError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.BAD_REQUEST, "Failed to parse JSON body", "body")

            # Validate object type is dict
            if not isinstance(encrypted_request, dict):
                raise HybridSessionError(ApplicationCodes.INVALID_PACKET_STRUCTURE, HTTPCodes.BAD_REQUEST, "Invalid JSON structure (expected object)", "request_obj")

            # Delegate to the request handler
            resp_obj, http_status = app.request_handler.respond_to_encrypted_request(encrypted_request)

            return jsonify(resp_obj), http_status

        # Normalize unhandled errors
        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="decrypt_error")
            return jsonify(clean_packet), status


    ################################################################################################
    # GLOBAL ERROR HANDLERS
    ################################################################################################


    """
        413 Payload Too Large exception into a failure packet.
    """
    @app.errorhandler(413)
    def handle_payload_too_large(_e):

        e = HybridSessionError(ApplicationCodes.INVALID_LENGTH, HTTPCodes.PAYLOAD_TOO_LARGE, "Payload exceeds maximum size limit", "body")

        clean_packet, status = app.error_handler.handle_server_error(e, context="payload_too_large")

        return jsonify(clean_packet), status


    """
        Catch-all handler for any unexpected exception raised during request processing.
    """
    @app.errorhandler(Exception)
    def handle_internal_error(e: Exception):

        # Routing errors (404, 405, ...) keep their status
        if isinstance(e, HTTPException) and e.code is not None and e.code < 500:
            e = HybridSessionError(ApplicationCodes.INVALID_REQUEST, e.code, e.name, "route")

        clean_packet, status = app.error_handler.handle_server_error(e, context="global_error_handler")

        return jsonify(clean_packet), status

    # Return the configured Flask app
    return app
