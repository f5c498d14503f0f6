#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: config.py

    Description:
        Environment-driven configuration for both sides of the protocol. Values
        are read once (at application or client construction) and passed on
        explicitly; nothing here rewrites the environment or is consulted per
        request. PEM values are only collected here; turning them into key
        material is the PEM manager's job.
"""

import os
import typing
from dataclasses import dataclass
from hybridsession.handlers.error_handler import HybridSessionError, ApplicationCodes, HTTPCodes
import hybridsession.constants as CONSTANTS


def _read_positive_int(environ: typing.Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise HybridSessionError(ApplicationCodes.INVALID_CONFIGURATION, HTTPCodes.INTERNAL_SERVER_ERROR, f"{name} must be an integer", name)
    if value <= 0:
        raise HybridSessionError(ApplicationCodes.INVALID_CONFIGURATION, HTTPCodes.INTERNAL_SERVER_ERROR, f"{name} must be positive", name)
    return value


"""
    Receiving side configuration.

    private_key_pem    : Raw PKCS8 PEM text (any form normalize_pem accepts); None when unset
    max_content_length : Flask request size cap in bytes
    audit_log_path     : Audit log file; None means the AuditLog default
"""
@dataclass(frozen=True)
class ServerConfig:

    private_key_pem: typing.Optional[str] = None
    max_content_length: int = CONSTANTS._MAX_CONTENT_LENGTH
    audit_log_path: typing.Optional[str] = None

    @classmethod
    def from_env(cls, environ: typing.Optional[typing.Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        return cls(
            private_key_pem=env.get(CONSTANTS._ENV_PRIVATE_KEY_PEM),
            max_content_length=_read_positive_int(env, CONSTANTS._ENV_MAX_CONTENT_LENGTH, CONSTANTS._MAX_CONTENT_LENGTH),
            audit_log_path=env.get(CONSTANTS._ENV_AUDIT_LOG) or None,
        )


"""
    Initiating side configuration.

    public_key_pem  : Raw SPKI PEM text; None when unset
    server_url      : Base URL of the receiving side
    ttl_seconds     : Session reuse window
"""
@dataclass(frozen=True)
class ClientConfig:

    public_key_pem: typing.Optional[str] = None
    server_url: str = CONSTANTS._DEFAULT_SERVER_URL
    ttl_seconds: int = CONSTANTS._SESSION_TTL_SECONDS

    @classmethod
    def from_env(cls, environ: typing.Optional[typing.Mapping[str, str]] = None) -> "ClientConfig":
        env = os.environ if environ is None else environ
        return cls(
            public_key_pem=env.get(CONSTANTS._ENV_PUBLIC_KEY_PEM),
            server_url=(env.get(CONSTANTS._ENV_SERVER_URL) or CONSTANTS._DEFAULT_SERVER_URL).rstrip("/"),
            ttl_seconds=_read_positive_int(env, CONSTANTS._ENV_SESSION_TTL_SECONDS, CONSTANTS._SESSION_TTL_SECONDS),
        )
