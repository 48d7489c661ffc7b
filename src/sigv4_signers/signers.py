# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import datetime
import hmac
import io
import logging
from collections.abc import Iterable
from copy import deepcopy
from hashlib import sha256
from typing import Required, TypedDict
from urllib.parse import quote, quote_from_bytes, unquote_to_bytes

from ._http import Field, Fields, HTTPRequest
from ._identity import Credentials
from .exceptions import (
    InternalCryptoFailure,
    InvalidRequestError,
    MissingExpectedParameterException,
)
from .interfaces.http import FieldPosition
from .interfaces.identity import CredentialsIdentity as _CredentialsIdentity
from .interfaces.io import Seekable

logger = logging.getLogger(__name__)

SIGV4_ALGORITHM: str = "AWS4-HMAC-SHA256"
SIGV4_TIMESTAMP_FORMAT: str = "%Y%m%dT%H%M%SZ"
SIGV4_KEY_PREFIX: str = "AWS4"
SIGV4_REQUEST_TYPE: str = "aws4_request"
UNSIGNED_PAYLOAD: str = "UNSIGNED-PAYLOAD"
EMPTY_SHA256_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

HOST_FIELD: str = "Host"
DATE_FIELD: str = "X-Amz-Date"
CONTENT_SHA256_FIELD: str = "X-Amz-Content-SHA256"
SECURITY_TOKEN_FIELD: str = "X-Amz-Security-Token"
AUTHORIZATION_FIELD: str = "Authorization"

# The Authorization field carries the signature itself, so it can never be covered
# by it. Leaving it out also makes re-signing an already signed request stable.
HEADERS_EXCLUDED_FROM_SIGNING: tuple[str, ...] = ("authorization",)


class SigV4SigningProperties(TypedDict, total=False):
    region: Required[str]
    service: Required[str]
    date: datetime.datetime | str
    payload_signing_enabled: bool
    uri_encode_path: bool


class SigV4Signer:
    """Request signer for applying the AWS Signature Version 4 algorithm.

    The signer holds no state, so a single instance can be shared between threads.
    A given request must not be signed from several threads at once since
    :py:meth:`sign` writes into its fields.
    """

    def sign(
        self,
        *,
        signing_properties: SigV4SigningProperties,
        request: HTTPRequest,
        identity: Credentials,
    ) -> HTTPRequest:
        """Generate and apply a SigV4 signature to the supplied request.

        ``Host`` (when missing), ``X-Amz-Date``, ``X-Amz-Content-SHA256``,
        ``X-Amz-Security-Token`` (for session credentials) and ``Authorization``
        are written into ``request.fields``, and a token left over from earlier
        session credentials is removed. All of them are computed before the
        request is touched, so a failure leaves its fields exactly as they were.
        A one-shot iterable body is replaced by an equivalent buffer either way.

        :param signing_properties: SigV4SigningProperties to define signing primitives
            such as the target service, region, and date.
        :param request: An HTTPRequest to sign prior to sending to the service.
        :param identity: The credentials to sign with.
        :returns: The same ``request`` object, now signed.
        """
        signed_request = self._signed_copy(
            signing_properties=signing_properties, request=request, identity=identity
        )
        for field in self._changed_fields(original=request, signed=signed_request):
            request.fields.set_field(field)
        for name in self._removed_field_names(original=request, signed=signed_request):
            del request.fields[name]
        return request

    def generate_signing_fields(
        self,
        *,
        signing_properties: SigV4SigningProperties,
        request: HTTPRequest,
        identity: Credentials,
    ) -> Fields:
        """Compute the fields :py:meth:`sign` would add without applying them.

        The request's fields are left untouched. A body given as a one-shot
        iterable is consumed while hashing, so it is replaced by an equivalent
        in-memory buffer. A stale ``X-Amz-Security-Token`` that :py:meth:`sign`
        would remove is not reflected in the result.
        """
        signed_request = self._signed_copy(
            signing_properties=signing_properties, request=request, identity=identity
        )
        return Fields(self._changed_fields(original=request, signed=signed_request))

    def generate_authorization_field(
        self, *, access_key: str, scope: str, signed_headers: list[str], signature: str
    ) -> Field:
        """Generate the `Authorization` field.

        :param access_key:
            Identifier of the key pair the signature was computed with.
        :param scope:
            Credential scope string, defined as:
                <date>/<region>/<service>/aws4_request
        :param signed_headers:
            A list of the field names used in signing.
        :param signature:
            Final hash of the SigV4 signing algorithm generated from the
            canonical request and string to sign.
        """
        auth_str = format_authorization(
            access_key=access_key,
            scope=scope,
            signed_headers=signed_headers,
            signature=signature,
        )
        return Field(name=AUTHORIZATION_FIELD, values=[auth_str])

    def canonical_request(
        self,
        *,
        signing_properties: SigV4SigningProperties,
        request: HTTPRequest,
        identity: Credentials | None = None,
    ) -> str:
        """The canonical request is a standardized string laying out the components used
        in the SigV4 signing algorithm. This is useful to quickly compare inputs to find
        signature mismatches and unintended variances.

        SigV4 defines the canonical request to be:
            <HTTPMethod>\n
            <CanonicalURI>\n
            <CanonicalQueryString>\n
            <CanonicalHeaders>\n
            <SignedHeaders>\n
            <HashedPayload>

        The ``Host``, ``X-Amz-Date`` and ``X-Amz-Content-SHA256`` fields are derived
        on a copy of the request, exactly as :py:meth:`sign` would add them. When
        ``identity`` is given, ``X-Amz-Security-Token`` is set or dropped the same
        way too; without it the request's own token field is used as is.

        :param signing_properties:
            SigV4SigningProperties to define signing primitives such as
            the target service, region, and date.
        :param request:
            An HTTPRequest to use for generating a SigV4 signature.
        :param identity:
            The credentials the request will be signed with.
        """
        self._validate_signing_properties(signing_properties=signing_properties)
        timestamp = self._timestamp(signing_properties=signing_properties)
        prepared_request = self._prepare_request(
            request=request,
            timestamp=timestamp,
            signing_properties=signing_properties,
            identity=identity,
        )
        request.body = prepared_request.body
        return self._format_canonical_request(
            request=prepared_request, signing_properties=signing_properties
        )

    def string_to_sign(
        self,
        *,
        canonical_request: str,
        signing_properties: SigV4SigningProperties,
    ) -> str:
        """The string to sign is the second step of our signing algorithm which
        concatenates the formal identifier of our signing algorithm, the signing
        DateTime, the scope of our credentials, and a hash of our previously generated
        canonical request. This is another checkpoint that can be used to ensure we're
        constructing our signature as intended.

        SigV4 defines the string to sign as:
            Algorithm \n
            RequestDateTime \n
            CredentialScope  \n
            HashedCanonicalRequest

        :param canonical_request:
            String generated from the `canonical_request` method.
        :param signing_properties:
            SigV4SigningProperties to define signing primitives such as
            the target service, region, and date.
        """
        self._validate_signing_properties(signing_properties=signing_properties)
        timestamp = self._timestamp(signing_properties=signing_properties)
        scope = self._scope(timestamp=timestamp, signing_properties=signing_properties)
        return build_string_to_sign(
            algorithm=SIGV4_ALGORITHM,
            timestamp=timestamp,
            scope=scope,
            canonical_request=canonical_request,
        )

    def _signed_copy(
        self,
        *,
        signing_properties: SigV4SigningProperties,
        request: HTTPRequest,
        identity: Credentials,
    ) -> HTTPRequest:
        # Everything below works on a copy so the caller's request is only
        # modified once the signature exists.
        self._validate_identity(identity=identity)
        self._validate_signing_properties(signing_properties=signing_properties)
        timestamp = self._normalize_timestamp(signing_properties=signing_properties)

        new_request = self._prepare_request(
            request=request,
            timestamp=timestamp,
            signing_properties=signing_properties,
            identity=identity,
        )

        # Hashing may have swapped a one-shot body for a buffer. The caller's body
        # is exhausted by then, so it gets the buffer even if signing fails.
        try:
            # Construct core signing components
            canonical_request = self._format_canonical_request(
                request=new_request, signing_properties=signing_properties
            )
            scope = self._scope(
                timestamp=timestamp, signing_properties=signing_properties
            )
            string_to_sign = build_string_to_sign(
                algorithm=SIGV4_ALGORITHM,
                timestamp=timestamp,
                scope=scope,
                canonical_request=canonical_request,
            )
            signing_key = derive_signing_key(
                secret_key=identity.secret_access_key,
                date=timestamp,
                region=signing_properties["region"],
                service=signing_properties["service"],
            )
            signature = calculate_signature(
                signing_key=signing_key, string_to_sign=string_to_sign
            )
        finally:
            request.body = new_request.body

        signed_headers = list(self._normalize_signing_fields(request=new_request))
        logger.debug(
            "Signed %s request to %s with scope %s, signed headers: %s",
            new_request.method.upper(),
            new_request.fields[HOST_FIELD].as_string(),
            scope,
            signed_headers,
        )
        logger.debug("String to sign:\n%s", string_to_sign)

        authorization = self.generate_authorization_field(
            access_key=identity.access_key_id,
            scope=scope,
            signed_headers=signed_headers,
            signature=signature,
        )
        new_request.fields.set_field(authorization)
        return new_request

    def _changed_fields(
        self, *, original: HTTPRequest, signed: HTTPRequest
    ) -> list[Field]:
        return [
            field
            for field in signed.fields
            if original.fields.get(field.name) != field
        ]

    def _removed_field_names(
        self, *, original: HTTPRequest, signed: HTTPRequest
    ) -> list[str]:
        return [
            field.name for field in original.fields if field.name not in signed.fields
        ]

    def _validate_identity(self, *, identity: Credentials) -> None:
        """Perform runtime and expiration checks before attempting signing."""
        if not isinstance(identity, _CredentialsIdentity):  # pyright: ignore
            raise ValueError(
                "Received unexpected value for identity parameter. Expected "
                f"Credentials but received {type(identity)}."
            )
        elif identity.is_expired:
            raise ValueError(
                f"Provided identity expired at {identity.expiration}. Please "
                "refresh the credentials or update the expiration parameter."
            )

    def _validate_signing_properties(
        self, *, signing_properties: SigV4SigningProperties
    ) -> None:
        for name in ("region", "service"):
            value = signing_properties.get(name)
            if not isinstance(value, str) or not value:
                raise MissingExpectedParameterException(
                    f"Signing property {name!r} must be a non-empty string. "
                    f"Current value: {value!r}"
                )

    def _normalize_timestamp(
        self, *, signing_properties: SigV4SigningProperties
    ) -> str:
        if "date" not in signing_properties:
            return format_timestamp(datetime.datetime.now(datetime.UTC))
        return self._timestamp(signing_properties=signing_properties)

    def _timestamp(self, *, signing_properties: SigV4SigningProperties) -> str:
        date = signing_properties.get("date")
        if date is None:
            raise MissingExpectedParameterException(
                "Cannot generate a signature without a valid date "
                f"in your signing_properties. Current value: {date}"
            )
        if isinstance(date, datetime.datetime):
            return format_timestamp(date)
        try:
            datetime.datetime.strptime(date, SIGV4_TIMESTAMP_FORMAT)
        except ValueError as e:
            raise InvalidRequestError(
                f"Signing date {date!r} does not match {SIGV4_TIMESTAMP_FORMAT!r}."
            ) from e
        return date

    def _scope(
        self, *, timestamp: str, signing_properties: SigV4SigningProperties
    ) -> str:
        return credential_scope(
            date=timestamp,
            region=signing_properties["region"],
            service=signing_properties["service"],
        )

    def _prepare_request(
        self,
        *,
        request: HTTPRequest,
        timestamp: str,
        signing_properties: SigV4SigningProperties,
        identity: Credentials | None = None,
    ) -> HTTPRequest:
        new_request = deepcopy(request)
        fields = new_request.fields
        if HOST_FIELD not in fields:
            fields.set_field(
                Field(name=HOST_FIELD, values=[self._host_field_value(new_request)])
            )
        # The date, token and payload hash always describe this signing pass, so a
        # re-signed request never carries values from a previous one.
        fields.set_field(Field(name=DATE_FIELD, values=[timestamp]))
        if identity is not None:
            if identity.session_token is not None:
                fields.set_field(
                    Field(name=SECURITY_TOKEN_FIELD, values=[identity.session_token])
                )
            elif SECURITY_TOKEN_FIELD in fields:
                del fields[SECURITY_TOKEN_FIELD]
        payload_hash = self._compute_payload_hash(
            request=new_request, signing_properties=signing_properties
        )
        fields.set_field(Field(name=CONTENT_SHA256_FIELD, values=[payload_hash]))
        return new_request

    def _host_field_value(self, request: HTTPRequest) -> str:
        destination = request.destination
        if not destination.host:
            raise InvalidRequestError(
                "Cannot derive a Host field: the request destination "
                f"{destination.build()!r} has no host and no Host field was supplied."
            )
        return destination.authority

    def _format_canonical_request(
        self, *, request: HTTPRequest, signing_properties: SigV4SigningProperties
    ) -> str:
        canonical_path = self._format_canonical_path(
            path=request.destination.path, signing_properties=signing_properties
        )
        canonical_query = self._format_canonical_query(query=request.destination.query)
        normalized_fields = self._normalize_signing_fields(request=request)
        canonical_fields = self._format_canonical_fields(fields=normalized_fields)
        canonical_payload = request.fields[CONTENT_SHA256_FIELD].as_string()
        return (
            f"{request.method.upper()}\n"
            f"{canonical_path}\n"
            f"{canonical_query}\n"
            f"{canonical_fields}\n"
            f"{';'.join(normalized_fields)}\n"
            f"{canonical_payload}"
        )

    def _format_canonical_path(
        self, *, path: str | None, signing_properties: SigV4SigningProperties
    ) -> str:
        if not path:
            return "/"
        if not path.startswith("/"):
            path = f"/{path}"

        if signing_properties.get("uri_encode_path", True):
            normalized_path = _remove_dot_segments(path) or "/"
            return quote(string=normalized_path, safe="/")
        else:
            # S3 style: the path is signed as sent, encoded exactly once.
            return quote_from_bytes(unquote_to_bytes(path), safe="/")

    def _format_canonical_query(self, *, query: str | None) -> str:
        if not query:
            return ""

        query_parts: list[tuple[str, str]] = []
        for param in query.split("&"):
            if not param:
                continue
            key, _, value = param.partition("=")
            query_parts.append((_requote(key), _requote(value)))
        # key-value pairs must be in sorted order for their encoded forms.
        return "&".join(f"{key}={value}" for key, value in sorted(query_parts))

    def _normalize_signing_fields(self, *, request: HTTPRequest) -> dict[str, str]:
        # Values are joined raw, without the quoting used when sending the field.
        normalized_fields = {
            field.name.lower(): ",".join(value.strip() for value in field.values)
            for field in request.fields.get_by_type(FieldPosition.HEADER)
            if self._is_signable_header(field.name.lower())
        }
        return dict(sorted(normalized_fields.items()))

    def _is_signable_header(self, field_name: str) -> bool:
        return field_name not in HEADERS_EXCLUDED_FROM_SIGNING

    def _format_canonical_fields(self, *, fields: dict[str, str]) -> str:
        return "".join(
            f"{key}:{' '.join(value.split())}\n" for key, value in fields.items()
        )

    def _should_sha256_sign_payload(
        self,
        *,
        request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> bool:
        # All insecure connections should be signed
        if request.destination.scheme != "https":
            return True

        return signing_properties.get("payload_signing_enabled", True)

    def _compute_payload_hash(
        self, *, request: HTTPRequest, signing_properties: SigV4SigningProperties
    ) -> str:
        if not self._should_sha256_sign_payload(
            request=request, signing_properties=signing_properties
        ):
            return UNSIGNED_PAYLOAD

        body = request.body

        if body is None:
            return EMPTY_SHA256_HASH

        if isinstance(body, bytes | bytearray | memoryview):
            return sha256(body).hexdigest()

        if not isinstance(body, Iterable) or isinstance(body, str):
            raise TypeError(
                "Request bodies must be bytes, a binary stream, or an iterable of "
                f"bytes. Received {type(body)}."
            )

        checksum = sha256()
        if isinstance(body, Seekable):
            position = body.tell()
            for chunk in body:
                checksum.update(chunk)
            body.seek(position)
        else:
            buffer = io.BytesIO()
            for chunk in body:
                buffer.write(chunk)
                checksum.update(chunk)
            buffer.seek(0)
            request.body = buffer
        return checksum.hexdigest()


def format_timestamp(date: datetime.datetime) -> str:
    """Render a datetime as a SigV4 timestamp, e.g. ``20150830T123600Z``.

    Naive datetimes are taken to be UTC. Sub-second precision is dropped.
    """
    if date.tzinfo is None:
        date = date.replace(tzinfo=datetime.UTC)
    return date.astimezone(datetime.UTC).strftime(SIGV4_TIMESTAMP_FORMAT)


def credential_scope(*, date: str, region: str, service: str) -> str:
    # Scope format: <YYYYMMDD>/<Region>/<Service>/aws4_request
    return f"{date[0:8]}/{region}/{service}/{SIGV4_REQUEST_TYPE}"


def build_string_to_sign(
    *, algorithm: str, timestamp: str, scope: str, canonical_request: str
) -> str:
    return (
        f"{algorithm}\n"
        f"{timestamp}\n"
        f"{scope}\n"
        f"{_sha256_hex(canonical_request)}"
    )


def derive_signing_key(
    *, secret_key: str, date: str, region: str, service: str
) -> bytes:
    """Derive the signing key for one scope.

    In SigV4, a signing key is created that is scoped to a specific day, region and
    service. Only the ``YYYYMMDD`` part of ``date`` is used, so a full timestamp can
    be passed as well. The key is never cached, each signature derives it anew.
    """

    # Components of Signing Key Calculation
    #
    # DateKey              = HMAC-SHA256("AWS4"+"<SecretAccessKey>", "<YYYYMMDD>")
    # DateRegionKey        = HMAC-SHA256(<DateKey>, "<region>")
    # DateRegionServiceKey = HMAC-SHA256(<DateRegionKey>, "<service>")
    # SigningKey = HMAC-SHA256(<DateRegionServiceKey>, "aws4_request")
    k_date = _hmac_sha256(
        key=_encode(f"{SIGV4_KEY_PREFIX}{secret_key}"), value=date[0:8]
    )
    k_region = _hmac_sha256(key=k_date, value=region)
    k_service = _hmac_sha256(key=k_region, value=service)
    return _hmac_sha256(key=k_service, value=SIGV4_REQUEST_TYPE)


def calculate_signature(*, signing_key: bytes, string_to_sign: str) -> str:
    return _hmac_sha256(key=signing_key, value=string_to_sign).hex()


def format_authorization(
    *,
    access_key: str,
    scope: str,
    signed_headers: Iterable[str],
    signature: str,
    algorithm: str = SIGV4_ALGORITHM,
) -> str:
    signed_headers_str = ";".join(signed_headers)
    return (
        f"{algorithm} Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers_str}, Signature={signature}"
    )


def _encode(value: str) -> bytes:
    try:
        return value.encode()
    except UnicodeEncodeError as e:
        raise InternalCryptoFailure(f"Cannot encode signing input as UTF-8: {e}") from e


def _sha256_hex(value: str) -> str:
    data = _encode(value)
    try:
        return sha256(data).hexdigest()
    except (TypeError, ValueError) as e:
        raise InternalCryptoFailure(f"SHA-256 computation failed: {e}") from e


def _hmac_sha256(*, key: bytes, value: str) -> bytes:
    msg = _encode(value)
    try:
        return hmac.new(key=key, msg=msg, digestmod=sha256).digest()
    except (TypeError, ValueError) as e:
        raise InternalCryptoFailure(f"HMAC-SHA256 computation failed: {e}") from e


def _requote(value: str) -> str:
    """Decode a raw query component to bytes and percent-encode it again.

    ``+`` is read as a space. Escapes that are not valid UTF-8 keep their bytes.
    """
    return quote_from_bytes(unquote_to_bytes(value.replace("+", " ")), safe="")


def _remove_dot_segments(path: str) -> str:
    """Removes dot segments from a path per :rfc:`3986#section-5.2.4`.

    Empty segments are dropped as well, so runs of slashes collapse to one.
    :param path: The path to modify.
    :returns: The path with dot segments removed.
    """
    output: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        elif segment != "..":
            output.append(segment)
        elif output:
            output.pop()
    normalized = "/".join(output)
    if path.startswith("/"):
        normalized = f"/{normalized}"
    if output and path.endswith(("/", "/.", "/..")):
        normalized = f"{normalized}/"
    return normalized
