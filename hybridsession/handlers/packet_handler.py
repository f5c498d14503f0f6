#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: packet_handler.py

    Description:
        Defines the typed wire records of the hybrid session protocol
        (SymmetricPacket, WrappedKeyEnvelope, RequestEnvelope and
        ResponseEnvelope) and provides all packet-format validation and
        response construction. Decoding is driven by the version field: each
        supported (v, algorithm) combination maps to one decoder, and anything
        else fails closed with UnsupportedVersionError rather than being
        reinterpreted.
"""


import typing
from dataclasses import dataclass, asdict
from hybridsession.handlers.error_handler import HybridSessionError, ApplicationCodes, HTTPCodes, UnsupportedVersionError
import hybridsession.constants as CONSTANTS
import hybridsession.handlers.sanitization_validation as VALIDATION


####################################################################################################
#                                         Wire Records
####################################################################################################

"""
    AES-256-GCM packet. The GCM tag is the trailing 16 bytes of ciphertext_b64.
"""
@dataclass(frozen=True)
class SymmetricPacket:

    v: int
    sym_alg: str
    nonce_b64: str
    ciphertext_b64: str

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return VALIDATION.encode_dict_to_json_text(self.to_dict())

    @classmethod
    def from_dict(cls, obj: typing.Any) -> "SymmetricPacket":
        return PacketHandler().parse_symmetric_packet(obj)

    @classmethod
    def from_json(cls, text: str) -> "SymmetricPacket":
        return PacketHandler().parse_symmetric_packet(text)


"""
    Result of ensure_session. Local to the initiating side; only wrapped_key_b64 travels.
"""
@dataclass(frozen=True)
class WrappedKeyEnvelope:

    v: int
    alg: str
    sym_alg: str
    wrapped_key_b64: str
    fresh: bool
    created_ms: int

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return VALIDATION.encode_dict_to_json_text(self.to_dict())

    @classmethod
    def from_dict(cls, obj: typing.Any) -> "WrappedKeyEnvelope":
        return PacketHandler().parse_wrapped_key_envelope(obj)


"""
    Client -> server request body. payload is a serialized SymmetricPacket.
"""
@dataclass(frozen=True)
class RequestEnvelope:

    wrapped_key_b64: str
    payload: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, obj: typing.Any) -> "RequestEnvelope":
        return PacketHandler().parse_request_envelope(obj)


"""
    Server -> client response body, either {ok:true, payload} or {ok:false, error}.
"""
@dataclass(frozen=True)
class ResponseEnvelope:

    ok: bool
    payload: typing.Optional[str] = None
    error: typing.Optional[str] = None
    timings: typing.Optional[typing.Dict[str, float]] = None

    def to_dict(self) -> dict:
        out: typing.Dict[str, typing.Any] = {"ok": self.ok}
        if self.ok:
            out["payload"] = self.payload
        else:
            out["error"] = self.error
        if self.timings is not None:
            out["timings"] = dict(self.timings)
        return out

    @classmethod
    def from_dict(cls, obj: typing.Any) -> "ResponseEnvelope":
        return PacketHandler().parse_response_envelope(obj)



####################################################################################################
#                                         Packet Format Handlers
####################################################################################################

"""
    Provides helper methods to validate and decode incoming wire values and to construct
    outgoing ones. Every decoder returns a typed record; every builder returns a dict ready
    for JSON serialization.
"""
class PacketHandler:

    ################################################################################################
    #                                     GENERIC VALIDATION WRAPPERS
    ################################################################################################

    def _coerce_object(self, obj: typing.Any, field_context: str) -> dict:
        if isinstance(obj, (str, bytes, bytearray)):
            return VALIDATION.decode_json_text_to_dict(obj, field_context)
        if not isinstance(obj, dict):
            raise HybridSessionError(ApplicationCodes.INVALID_PACKET_STRUCTURE, HTTPCodes.BAD_REQUEST, f"Invalid {field_context} (expected JSON object).", field_context)
        return obj

    def _validate_exact_fields(self, obj: dict, fields: set, field_context: str) -> None:
        VALIDATION.validate_required_fields(obj, fields, ApplicationCodes.MISSING_FIELDS, field_context)
        VALIDATION.validate_no_extra_fields(obj, fields, ApplicationCodes.UNKNOWN_FIELDS, field_context)

    def _read_version(self, obj: dict, field_context: str) -> int:
        if "v" not in obj:
            raise HybridSessionError(ApplicationCodes.MISSING_FIELDS, HTTPCodes.BAD_REQUEST, f"Missing required field 'v' in {field_context}.", "v")
        v = obj["v"]
        if isinstance(v, bool) or not isinstance(v, int):
            raise UnsupportedVersionError(f"{field_context} version must be an integer", "v")
        return v

    def _read_tag(self, obj: dict, name: str, field_context: str) -> str:
        if name not in obj:
            raise HybridSessionError(ApplicationCodes.MISSING_FIELDS, HTTPCodes.BAD_REQUEST, f"Missing required field '{name}' in {field_context}.", name)
        tag = obj[name]
        if not isinstance(tag, str):
            raise UnsupportedVersionError(f"{field_context} {name} must be a string", name)
        return tag

    def _validate_text_field(self, value: typing.Any, field_name: str) -> None:
        VALIDATION.validate_string(value, ApplicationCodes.INVALID_TYPE, field_name)
        VALIDATION.validate_max_length(value, CONSTANTS._MAX_B64URL_CHARS, ApplicationCodes.INVALID_LENGTH, field_name)


    ################################################################################################
    #                                     SYMMETRIC PACKET
    ################################################################################################

    """
        Decode a SymmetricPacket from a record, dict or JSON text.

        @param obj (SymmetricPacket | dict | str): Packet in any accepted form.
        @return SymmetricPacket: Typed packet.
        @ensures Unknown (v, sym_alg) pairs raise UnsupportedVersionError before any other field is read.
    """
    def parse_symmetric_packet(self, obj: typing.Any) -> SymmetricPacket:
        try:
            if isinstance(obj, SymmetricPacket):
                obj = obj.to_dict()

            packet = self._coerce_object(obj, "symmetric_packet")

            v = self._read_version(packet, "symmetric_packet")
            sym_alg = self._read_tag(packet, "sym_alg", "symmetric_packet")

            decoder = _SYMMETRIC_PACKET_DECODERS.get((v, sym_alg))
            if decoder is None or (v, sym_alg) not in CONSTANTS._SUPPORTED_PACKET_VERSIONS:
                raise UnsupportedVersionError(f"Unsupported packet version {v} / {sym_alg}", "v")

            return decoder(self, packet)

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.INVALID_PACKET_STRUCTURE, HTTPCodes.BAD_REQUEST, "Invalid symmetric packet.", "payload")


    def _decode_symmetric_packet_v1(self, packet: dict) -> SymmetricPacket:

        # Exact schema for version 1
        self._validate_exact_fields(packet, CONSTANTS._SYMMETRIC_PACKET_FIELDS, "symmetric_packet")

        # Binary contents are decoded (and authenticated) by the codec; only shape is checked here
        self._validate_text_field(packet["nonce_b64"], "nonce_b64")
        self._validate_text_field(packet["ciphertext_b64"], "ciphertext_b64")

        return SymmetricPacket(v=packet["v"], sym_alg=packet["sym_alg"], nonce_b64=packet["nonce_b64"], ciphertext_b64=packet["ciphertext_b64"])


    """
        Build a version-1 SymmetricPacket from raw nonce and ciphertext bytes.
    """
    def create_symmetric_packet(self, nonce: bytes, ciphertext_with_tag: bytes) -> SymmetricPacket:
        return SymmetricPacket(
            v=CONSTANTS._WIRE_VERSION,
            sym_alg=CONSTANTS._SYM_ALG,
            nonce_b64=VALIDATION.encode_bytes_to_base64url(nonce),
            ciphertext_b64=VALIDATION.encode_bytes_to_base64url(ciphertext_with_tag),
        )


    ################################################################################################
    #                                     WRAPPED KEY ENVELOPE
    ################################################################################################

    """
        Decode a WrappedKeyEnvelope from a record, dict or JSON text.

        @param obj (WrappedKeyEnvelope | dict | str): Envelope in any accepted form.
        @return WrappedKeyEnvelope: Typed envelope.
        @ensures Unknown (v, alg, sym_alg) triples raise UnsupportedVersionError.
    """
    def parse_wrapped_key_envelope(self, obj: typing.Any) -> WrappedKeyEnvelope:
        try:
            if isinstance(obj, WrappedKeyEnvelope):
                obj = obj.to_dict()

            envelope = self._coerce_object(obj, "wrapped_key_envelope")

            v = self._read_version(envelope, "wrapped_key_envelope")
            alg = self._read_tag(envelope, "alg", "wrapped_key_envelope")
            sym_alg = self._read_tag(envelope, "sym_alg", "wrapped_key_envelope")

            if (v, alg, sym_alg) not in CONSTANTS._SUPPORTED_ENVELOPE_VERSIONS:
                raise UnsupportedVersionError(f"Unsupported envelope version {v} / {alg} / {sym_alg}", "v")

            self._validate_exact_fields(envelope, CONSTANTS._WRAPPED_KEY_ENVELOPE_FIELDS, "wrapped_key_envelope")
            VALIDATION.validate_b64(envelope["wrapped_key_b64"], ApplicationCodes.INVALID_BASE64URL, "wrapped_key_b64")
            VALIDATION.validate_bool(envelope["fresh"], ApplicationCodes.INVALID_TYPE, "fresh")
            VALIDATION.validate_int(envelope["created_ms"], ApplicationCodes.INVALID_TYPE, "created_ms")

            return WrappedKeyEnvelope(v=v, alg=alg, sym_alg=sym_alg, wrapped_key_b64=envelope["wrapped_key_b64"], fresh=envelope["fresh"], created_ms=envelope["created_ms"])

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.INVALID_PACKET_STRUCTURE, HTTPCodes.BAD_REQUEST, "Invalid wrapped key envelope.", "wrapped_key_envelope")


    """
        Build a version-1 WrappedKeyEnvelope.
    """
    def create_wrapped_key_envelope(self, wrapped_key_b64: str, fresh: bool, created_ms: int) -> WrappedKeyEnvelope:
        return WrappedKeyEnvelope(
            v=CONSTANTS._WIRE_VERSION,
            alg=CONSTANTS._ASYM_ALG,
            sym_alg=CONSTANTS._SYM_ALG,
            wrapped_key_b64=wrapped_key_b64,
            fresh=bool(fresh),
            created_ms=int(created_ms),
        )


    ################################################################################################
    #                              REQUEST / RESPONSE ENVELOPES
    ################################################################################################

    """
        Validate a client request body {wrapped_key_b64, payload}.

        @param obj (dict | str): Parsed JSON body or JSON text.
        @return RequestEnvelope: Typed request.
        @ensures Both fields exist, no unknown fields remain, and both are non-empty strings within size limits.
    """
    def parse_request_envelope(self, obj: typing.Any) -> RequestEnvelope:
        try:
            if isinstance(obj, RequestEnvelope):
                obj = obj.to_dict()

            request = self._coerce_object(obj, "request")

            # Ensure all required fields exist
            for field in sorted(CONSTANTS._REQUEST_ENVELOPE_FIELDS):
                if field not in request:
                    raise HybridSessionError(ApplicationCodes.MISSING_FIELDS, HTTPCodes.BAD_REQUEST, "Missing wrapped_key_b64 or payload", field)

            # Raise error for any unknown fields
            VALIDATION.validate_no_extra_fields(request, CONSTANTS._REQUEST_ENVELOPE_FIELDS, ApplicationCodes.UNKNOWN_FIELDS, "request")

            # Validate each field
            if not isinstance(request["wrapped_key_b64"], str) or not isinstance(request["payload"], str):
                raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Missing wrapped_key_b64 or payload", "request")

            self._validate_text_field(request["wrapped_key_b64"], "wrapped_key_b64")
            VALIDATION.validate_string(request["payload"], ApplicationCodes.INVALID_TYPE, "payload")
            VALIDATION.validate_max_length(request["payload"], CONSTANTS._MAX_PAYLOAD_CHARS, ApplicationCodes.INVALID_LENGTH, "payload")

            return RequestEnvelope(wrapped_key_b64=request["wrapped_key_b64"], payload=request["payload"])

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.INVALID_REQUEST, HTTPCodes.BAD_REQUEST, "Invalid request envelope.", "request")


    """
        Build a client request body.
    """
    def create_request_envelope(self, wrapped_key_b64: str, packet: SymmetricPacket) -> RequestEnvelope:
        return RequestEnvelope(wrapped_key_b64=wrapped_key_b64, payload=packet.to_json())


    """
        Validate a server response body.

        @param obj (dict | str): Parsed JSON response or JSON text.
        @return ResponseEnvelope: Typed response.
        @ensures ok is a bool; success carries a payload string, failure an error string.
    """
    def parse_response_envelope(self, obj: typing.Any) -> ResponseEnvelope:
        try:
            response = self._coerce_object(obj, "response")

            if "ok" not in response:
                raise HybridSessionError(ApplicationCodes.MISSING_FIELDS, HTTPCodes.BAD_GATEWAY, "Missing required field 'ok' in response.", "ok")

            VALIDATION.validate_no_extra_fields(response, CONSTANTS._RESPONSE_ALLOWED_FIELDS, ApplicationCodes.UNKNOWN_FIELDS, "response")
            VALIDATION.validate_bool(response["ok"], ApplicationCodes.INVALID_TYPE, "ok")

            timings = response.get("timings")
            if timings is not None and not isinstance(timings, dict):
                raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_GATEWAY, "timings must be an object", "timings")

            if response["ok"]:
                VALIDATION.validate_required_fields(response, CONSTANTS._SUCCESS_RESPONSE_REQUIRED_FIELDS, ApplicationCodes.MISSING_FIELDS, "response")
                VALIDATION.validate_string(response["payload"], ApplicationCodes.INVALID_TYPE, "payload")
                return ResponseEnvelope(ok=True, payload=response["payload"], timings=timings)

            VALIDATION.validate_required_fields(response, CONSTANTS._FAILURE_RESPONSE_REQUIRED_FIELDS, ApplicationCodes.MISSING_FIELDS, "response")
            if not isinstance(response["error"], str):
                raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_GATEWAY, "error must be a string", "error")
            return ResponseEnvelope(ok=False, error=response["error"], timings=timings)

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.INVALID_PACKET_STRUCTURE, HTTPCodes.BAD_GATEWAY, "Invalid response envelope.", "response")


    """
        Build the success response {ok:true, payload, timings}.

        @param packet (SymmetricPacket): Encrypted response packet.
        @param timings (dict | None): Server-side step durations in milliseconds.
        @return dict: JSON-ready success response.
    """
    def create_success_response_packet(self, packet: SymmetricPacket, timings: typing.Optional[dict] = None) -> dict:
        if not isinstance(packet, SymmetricPacket):
            raise HybridSessionError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Response payload must be a SymmetricPacket", "payload")

        return ResponseEnvelope(ok=True, payload=packet.to_json(), timings=timings).to_dict()



# Decoder per supported (v, sym_alg); a new format adds an entry here and to CONSTANTS
_SYMMETRIC_PACKET_DECODERS: typing.Dict[tuple, typing.Callable[[PacketHandler, dict], SymmetricPacket]] = {
    (1, "AES-256-GCM"): PacketHandler._decode_symmetric_packet_v1,
}
