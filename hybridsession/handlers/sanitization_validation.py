#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: sanitization_validation.py

    Description:
        Provides the encoding, decoding and type-conversion utilities used by
        the hybrid session wire format, as well as reusable field-level
        validation helpers. Includes strict Base64URL conversions (no padding,
        canonical only), UTF-8 helpers, compact JSON serialization, timestamp
        helpers, and required/unknown field checks.

        Ensures strict input validation and raises HybridSessionError for all
        malformed or non-conforming data processed during request handling.
"""

import base64
import binascii
import typing
import json
from datetime import datetime, timezone

from hybridsession.handlers.error_handler import HybridSessionError, ApplicationCodes, HTTPCodes
import hybridsession.constants as CONSTANTS


####################################################################################################
#                                   Base64URL Encoding / Decoding
####################################################################################################

"""
    Convert an unpadded Base64URL string into raw bytes.

    @param field_name (str): Logical field name for context in error messages.
    @param b64u_text (Any): Base64URL-encoded string to decode.
    @require b64u_text is a non-empty string without '=' padding
    @return bytes: Decoded byte sequence.
    @ensures Non-alphabet characters, impossible lengths and non-canonical encodings raise HybridSessionError.
"""
def decode_base64url_to_bytes(field_name: str, b64u_text: typing.Any) -> bytes:
    try:
        # Validate input with generic validators
        validate_string(b64u_text, ApplicationCodes.INVALID_TYPE, field_name)
        validate_b64(b64u_text, ApplicationCodes.INVALID_BASE64URL, field_name)

        # A single leftover character can never encode a whole byte
        if len(b64u_text) % 4 == 1:
            raise HybridSessionError(ApplicationCodes.INVALID_BASE64URL, HTTPCodes.BAD_REQUEST, f"{field_name} has invalid Base64URL length", field_name)

        # Add padding back (the wire form strips "=")
        padded = b64u_text + "=" * ((4 - len(b64u_text) % 4) % 4)

        # Decode base64url text into bytes
        decoded_bytes = base64.urlsafe_b64decode(padded)

        # Reject non-canonical text (non-zero trailing bits decode to the same bytes)
        if encode_bytes_to_base64url(decoded_bytes) != b64u_text:
            raise HybridSessionError(ApplicationCodes.INVALID_BASE64URL, HTTPCodes.BAD_REQUEST, f"{field_name} is not canonical Base64URL", field_name)

        return bytes(decoded_bytes)

    except HybridSessionError:
        raise
    except (binascii.Error, ValueError):
        raise HybridSessionError(ApplicationCodes.INVALID_BASE64URL, HTTPCodes.BAD_REQUEST, f"Invalid base64url for {field_name}", field_name)
    except Exception:
        raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, f"Invalid base64url for {field_name}", field_name)



"""
    Convert raw bytes into a Base64URL string without padding.

    @param raw (bytes): Bytes to encode.
    @require raw is bytes or bytearray
    @return str: Base64URL-encoded ASCII string without '=' padding.
    @ensures Output string is safe for URL transport and JSON serialization.
"""
def encode_bytes_to_base64url(raw: bytes) -> str:
    try:
        # Validate input type
        if not isinstance(raw, (bytes, bytearray)):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "b64url encode expects bytes", "raw")

        # Perform base64url encoding and strip padding
        return base64.urlsafe_b64encode(bytes(raw)).decode("ascii").rstrip("=")

    except HybridSessionError:
        raise
    except Exception:
        raise HybridSessionError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error during base64url encoding", "raw")



####################################################################################################
#                                   UTF-8 / JSON Conversions
####################################################################################################

"""
    Convert raw bytes into a UTF-8 decoded string.

    @param raw_bytes (bytes): UTF-8 encoded bytes.
    @require raw_bytes is bytes or bytearray
    @return str: UTF-8 decoded text.
    @ensures Raises HybridSessionError on invalid UTF-8 sequences.
"""
def decode_bytes_to_utf8_text(raw_bytes: bytes) -> str:
    try:
        # Validate input type
        if not isinstance(raw_bytes, (bytes, bytearray)):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Input must be bytes for UTF-8 decode", "raw_bytes")

        # Decode to text
        return bytes(raw_bytes).decode("utf-8")

    except HybridSessionError:
        raise
    except Exception:
        raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Invalid UTF-8 byte sequence", "raw_bytes")



"""
    Convert UTF-8 text into raw bytes.

    @param text (str): Input string.
    @require text is a string
    @return bytes: UTF-8 encoded byte sequence.
    @ensures Raises HybridSessionError on encoding failure.
"""
def encode_utf8_text_to_bytes(text: str) -> bytes:
    try:
        # Validate input type
        if not isinstance(text, str):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Input must be string", "text")

        # Encode to bytes
        return text.encode("utf-8")

    except HybridSessionError:
        raise
    except Exception:
        raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Text is not encodable as UTF-8", "text")



"""
    Encode a dictionary into compact JSON text.

    @param data (dict): JSON-serializable dictionary.
    @require data is a dict
    @return str: Compact JSON text.
    @ensures Raises error on non-serializable or malformed input.
"""
def encode_dict_to_json_text(data: typing.Dict[str, typing.Any]) -> str:
    try:
        # Validate input type
        if not isinstance(data, dict):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Input must be dict", "data")

        # Serialize to compact JSON
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)

    except HybridSessionError:
        raise
    except Exception:
        raise HybridSessionError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.BAD_REQUEST, "Failed to serialize JSON payload", "data")



"""
    Parse JSON text into a Python dictionary.

    @param json_text (str | bytes): Raw JSON text.
    @param field_name (str): Logical field name for context in error messages.
    @return dict: Parsed JSON object.
    @ensures Raises HybridSessionError on malformed or non-object JSON values.
"""
def decode_json_text_to_dict(json_text: typing.Union[str, bytes], field_name: str = "json") -> dict:
    try:
        # Validate input type
        if isinstance(json_text, (bytes, bytearray)):
            json_text = decode_bytes_to_utf8_text(json_text)

        if not isinstance(json_text, str):
            raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, f"{field_name} must be JSON text", field_name)

        obj = json.loads(json_text)

        # Validate output type
        if not isinstance(obj, dict):
            raise HybridSessionError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.BAD_REQUEST, "Expected JSON object", field_name)

        return obj

    except HybridSessionError:
        raise
    except Exception:
        raise HybridSessionError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.BAD_REQUEST, f"Malformed JSON in {field_name}", field_name)



####################################################################################################
#                                   Time helpers
####################################################################################################

"""
    Return the current time as a timezone-aware UTC datetime.
"""
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


"""
    Convert a datetime into integer epoch milliseconds.

    @param value (datetime): Aware datetime (naive values are treated as UTC).
    @return int: Milliseconds since the Unix epoch.
"""
def datetime_to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)



####################################################################################################
#                               GENERIC VALIDATORS (REUSABLE)
####################################################################################################

"""
    Function: Validate that a value is a non-empty string.

    @param: typing.Any - value to be validated
    @param: ApplicationCodes - application-level error type to raise if validation fails
    @param: str - field_name identifying the failing field
    @require: value must be a string with at least one non-whitespace character
    @ensures: raises HybridSessionError if value is not a valid non-empty string
"""
def validate_string(value: typing.Any, application_code, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise HybridSessionError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} must be a non-empty string.", field_name)



"""
    Function: Validate that a string does not exceed a maximum length.

    @param: str - value to be validated
    @param: int - max_len specifying the maximum allowed characters
    @param: ApplicationCodes - application-level error type to raise if validation fails
    @param: str - field_name identifying the failing field
    @ensures: raises HybridSessionError if value length exceeds max_len
"""
def validate_max_length(value: str, max_len: int, application_code, field_name: str) -> None:
    if len(value) > max_len:
        raise HybridSessionError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} exceeds maximum length ({max_len}).", field_name)



"""
    Function: Validate that a value is a real int (bool excluded).

    @param: typing.Any - value to be validated
    @param: ApplicationCodes - application-level error type to raise on failure
    @param: str - field_name identifying the failing field
"""
def validate_int(value: typing.Any, application_code, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise HybridSessionError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} must be an integer.", field_name)



"""
    Function: Validate that a value is a bool.
"""
def validate_bool(value: typing.Any, application_code, field_name: str) -> None:
    if not isinstance(value, bool):
        raise HybridSessionError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} must be a boolean.", field_name)



"""
    Function: Validate that a string is unpadded Base64URL formatted.

    @param: str - value to be validated
    @param: ApplicationCodes - application-level error type to raise on failure
    @param: str - field_name identifying the failing field
    @ensures: raises HybridSessionError if value is not valid Base64URL
"""
def validate_b64(value: str, application_code, field_name: str) -> None:
    if not isinstance(value, str) or not CONSTANTS._BASE64URL_RX.fullmatch(value):
        raise HybridSessionError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} must be Base64URL.", field_name)



"""
    Ensure all required fields are present in the payload.

    @param payload (dict): Incoming JSON payload.
    @param required_fields (set[str]): Required field names.
    @param error_code (ApplicationCodes): Error code to raise.
    @param field_context (str): Name of the payload being validated.

    @ensures All required fields exist or raises HybridSessionError.
"""
def validate_required_fields(payload: dict, required_fields: set, error_code: str, field_context: str) -> None:

    # Validate parameters
    if not isinstance(payload, dict):
        raise HybridSessionError(ApplicationCodes.INVALID_PACKET_STRUCTURE, HTTPCodes.BAD_REQUEST, "Payload must be a JSON object.", field_context)

    missing = required_fields - set(payload.keys())
    if missing:
        raise HybridSessionError(error_code, HTTPCodes.BAD_REQUEST, f"Missing required fields: {', '.join(sorted(missing))}", field_context)



"""
    Ensure no unknown or unapproved fields exist in payload.

    @param payload (dict): Incoming data.
    @param allowed_fields (set[str]): Allowed field names.
    @param error_code (ApplicationCodes): Error code to raise.
    @param field_context (str): Name of the payload.

    @ensures No unknown fields or raises HybridSessionError.
"""
def validate_no_extra_fields(payload: dict, allowed_fields: set, error_code: str, field_context: str) -> None:
    extra = set(payload.keys()) - allowed_fields
    if extra:
        raise HybridSessionError(error_code, HTTPCodes.BAD_REQUEST, f"Unknown fields in payload: {', '.join(sorted(extra))}", field_context)
