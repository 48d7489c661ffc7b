# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

import copy
import logging
import re
import typing
from datetime import UTC, datetime
from io import BytesIO

import pytest
from freezegun import freeze_time
from sigv4_signers import (
    URI,
    Credentials,
    Field,
    Fields,
    HTTPRequest,
    InternalCryptoFailure,
    InvalidRequestError,
    MissingExpectedParameterException,
    SigV4Signer,
    SigV4SigningProperties,
)
from sigv4_signers.signers import EMPTY_SHA256_HASH, UNSIGNED_PAYLOAD

SIGV4_RE = re.compile(
    r"AWS4-HMAC-SHA256 "
    r"Credential=(?P<access_key>\w+)/(?P<date>\d{8})/"
    r"(?P<signing_region>[a-z0-9-]+)/(?P<service>[a-z0-9-]+)/aws4_request, "
    r"SignedHeaders=(?P<signed_headers>[a-z0-9;-]+), "
    r"Signature=(?P<signature>[0-9a-f]{64})$"
)

SIGNED_AT = datetime(2015, 8, 30, 12, 36, 0, tzinfo=UTC)


@pytest.fixture(scope="module")
def aws_identity() -> Credentials:
    return Credentials(
        access_key_id="AKID123456",
        secret_access_key="EXAMPLE1234SECRET",
        session_token="X123456SESSION",
    )


@pytest.fixture(scope="module")
def signing_properties() -> SigV4SigningProperties:
    return SigV4SigningProperties(
        region="us-west-2",
        service="s3",
        date=SIGNED_AT,
    )


@pytest.fixture
def aws_request() -> HTTPRequest:
    return HTTPRequest(
        destination=URI(
            scheme="https",
            host="127.0.0.1",
            port=8000,
            path="/cache/artifact.zip",
        ),
        method="PUT",
        body=BytesIO(b"123456"),
        fields=Fields([Field(name="Content-Type", values=["application/zip"])]),
    )


class TestSigV4Signer:
    SIGV4_SYNC_SIGNER = SigV4Signer()

    def test_sign(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        assert signed_request is aws_request
        assert "authorization" in signed_request.fields
        authorization = signed_request.fields["authorization"].as_string()
        match = SIGV4_RE.match(authorization)
        assert match
        assert match.group("access_key") == "AKID123456"
        assert match.group("date") == "20150830"
        assert match.group("signing_region") == "us-west-2"
        assert match.group("service") == "s3"
        assert match.group("signed_headers") == (
            "content-type;host;x-amz-content-sha256;x-amz-date;x-amz-security-token"
        )

    def test_sign_adds_derived_fields(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        fields = aws_request.fields
        assert fields["host"].as_string() == "127.0.0.1:8000"
        assert fields["x-amz-date"].as_string() == "20150830T123600Z"
        assert fields["x-amz-content-sha256"].as_string() == (
            "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"
        )
        assert fields["x-amz-security-token"].as_string() == "X123456SESSION"
        assert fields["content-type"].as_string() == "application/zip"

    def test_sign_keeps_supplied_host(
        self,
        aws_identity: Credentials,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        request = HTTPRequest.from_url(
            "https://10.0.0.1/bucket", headers={"Host": "cache.example.com"}
        )
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=request,
            identity=aws_identity,
        )
        assert request.fields["host"].as_string() == "cache.example.com"

    def test_sign_is_idempotent(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        first_fields = copy.deepcopy(aws_request.fields)
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        assert aws_request.fields == first_fields

    def test_generate_signing_fields_doesnt_modify_request_fields(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        original_fields = copy.deepcopy(aws_request.fields)
        signing_fields = self.SIGV4_SYNC_SIGNER.generate_signing_fields(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        assert aws_request.fields == original_fields
        assert [field.name for field in signing_fields] == [
            "Host",
            "X-Amz-Date",
            "X-Amz-Security-Token",
            "X-Amz-Content-SHA256",
            "Authorization",
        ]

        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        for field in signing_fields:
            assert signed_request.fields[field.name] == field

    def test_sign_without_session_token(
        self,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        identity = Credentials(
            access_key_id="AKID123456", secret_access_key="EXAMPLE1234SECRET"
        )
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=identity,
        )
        assert "x-amz-security-token" not in aws_request.fields

    def test_resign_replaces_session_token(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        refreshed = Credentials(
            access_key_id="AKID123456",
            secret_access_key="EXAMPLE1234SECRET",
            session_token="REFRESHEDSESSION",
        )
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=refreshed,
        )
        token = aws_request.fields["x-amz-security-token"].as_string()
        assert token == "REFRESHEDSESSION"

    def test_resign_without_session_token_drops_token(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=aws_identity,
        )
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties,
            request=aws_request,
            identity=Credentials(
                access_key_id="AKID123456", secret_access_key="EXAMPLE1234SECRET"
            ),
        )
        assert "x-amz-security-token" not in aws_request.fields
        authorization = aws_request.fields["authorization"].as_string()
        match = SIGV4_RE.match(authorization)
        assert match is not None
        assert match.group("signed_headers") == (
            "content-type;host;x-amz-content-sha256;x-amz-date"
        )

    @typing.no_type_check
    def test_sign_with_invalid_identity(
        self, aws_request: HTTPRequest, signing_properties: SigV4SigningProperties
    ) -> None:
        """Ignore typing as we're testing an invalid input state."""
        identity = object()
        assert not isinstance(identity, Credentials)
        with pytest.raises(ValueError):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=signing_properties,
                request=aws_request,
                identity=identity,
            )

    def test_sign_with_expired_identity(
        self, aws_request: HTTPRequest, signing_properties: SigV4SigningProperties
    ) -> None:
        original_fields = copy.deepcopy(aws_request.fields)
        identity = Credentials(
            access_key_id="AKID123456",
            secret_access_key="EXAMPLE1234SECRET",
            session_token="X123456SESSION",
            expiration=datetime(1970, 1, 1, tzinfo=UTC),
        )
        with pytest.raises(ValueError):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=signing_properties,
                request=aws_request,
                identity=identity,
            )
        assert aws_request.fields == original_fields

    def test_sign_without_host_fails_without_modifying_request(
        self, aws_identity: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        request = HTTPRequest.from_url(
            "/relative/path", headers={"Content-Type": "text/plain"}
        )
        original_fields = copy.deepcopy(request.fields)
        with pytest.raises(InvalidRequestError):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=signing_properties,
                request=request,
                identity=aws_identity,
            )
        assert request.fields == original_fields
        assert "authorization" not in request.fields
        assert "x-amz-date" not in request.fields

    @pytest.mark.parametrize(
        "properties",
        [
            {"region": "", "service": "s3"},
            {"region": "us-east-1", "service": ""},
            {"service": "s3"},
        ],
    )
    @typing.no_type_check
    def test_sign_with_missing_scope_property(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        properties: dict[str, str],
    ) -> None:
        with pytest.raises(MissingExpectedParameterException):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=properties,
                request=aws_request,
                identity=aws_identity,
            )
        assert "authorization" not in aws_request.fields

    def test_sign_with_malformed_date(
        self, aws_identity: Credentials, aws_request: HTTPRequest
    ) -> None:
        with pytest.raises(InvalidRequestError):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=SigV4SigningProperties(
                    region="us-east-1", service="s3", date="2015-08-30"
                ),
                request=aws_request,
                identity=aws_identity,
            )

    @freeze_time("2015-08-30 12:36:00")
    def test_sign_defaults_to_current_time(
        self, aws_identity: Credentials, aws_request: HTTPRequest
    ) -> None:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=SigV4SigningProperties(region="us-east-1", service="s3"),
            request=aws_request,
            identity=aws_identity,
        )
        assert aws_request.fields["x-amz-date"].as_string() == "20150830T123600Z"

    @pytest.mark.parametrize(
        "date",
        [
            datetime(2015, 8, 30, 12, 36, 0, 999999, tzinfo=UTC),
            datetime(2015, 8, 30, 12, 36, 0),
            datetime.fromisoformat("2015-08-30T14:36:00+02:00"),
            "20150830T123600Z",
        ],
    )
    def test_sign_normalizes_date(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        date: datetime | str,
    ) -> None:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=SigV4SigningProperties(
                region="us-east-1", service="s3", date=date
            ),
            request=aws_request,
            identity=aws_identity,
        )
        assert aws_request.fields["x-amz-date"].as_string() == "20150830T123600Z"

    def test_string_to_sign_requires_date(self) -> None:
        with pytest.raises(MissingExpectedParameterException):
            self.SIGV4_SYNC_SIGNER.string_to_sign(
                canonical_request="",
                signing_properties=SigV4SigningProperties(
                    region="us-east-1", service="s3"
                ),
            )

    def test_unencodable_secret_raises_crypto_failure(
        self, aws_request: HTTPRequest, signing_properties: SigV4SigningProperties
    ) -> None:
        identity = Credentials(access_key_id="AKID", secret_access_key="\udcff")
        with pytest.raises(InternalCryptoFailure):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=signing_properties,
                request=aws_request,
                identity=identity,
            )
        assert "authorization" not in aws_request.fields

    def test_sign_logs_without_secrets(
        self,
        aws_identity: Credentials,
        aws_request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="sigv4_signers"):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=signing_properties,
                request=aws_request,
                identity=aws_identity,
            )
        assert "20150830/us-west-2/s3/aws4_request" in caplog.text
        assert aws_identity.secret_access_key not in caplog.text
        assert "X123456SESSION" not in caplog.text


class TestPayloadHashing:
    SIGV4_SYNC_SIGNER = SigV4Signer()

    def _payload_hash(
        self,
        request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
        identity: Credentials,
    ) -> str:
        self.SIGV4_SYNC_SIGNER.sign(
            signing_properties=signing_properties, request=request, identity=identity
        )
        return request.fields["x-amz-content-sha256"].as_string()

    @pytest.mark.parametrize("body", [None, b"", bytearray(), BytesIO(b"")])
    def test_empty_body(
        self,
        body: typing.Any,
        aws_identity: Credentials,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        request = HTTPRequest.from_url("https://example.com/", body=body)
        assert (
            self._payload_hash(request, signing_properties, aws_identity)
            == EMPTY_SHA256_HASH
        )

    @pytest.mark.parametrize(
        "body",
        [
            b"123456",
            bytearray(b"123456"),
            BytesIO(b"123456"),
            [b"123", b"456"],
            iter([b"12", b"34", b"56"]),
        ],
    )
    def test_body_types_hash_identically(
        self,
        body: typing.Any,
        aws_identity: Credentials,
        signing_properties: SigV4SigningProperties,
    ) -> None:
        request = HTTPRequest.from_url("https://example.com/", body=body)
        assert self._payload_hash(request, signing_properties, aws_identity) == (
            "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"
        )

    def test_seekable_body_is_rewound(
        self, aws_identity: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        body = BytesIO(b"123456")
        body.seek(2)
        request = HTTPRequest.from_url("https://example.com/", body=body)
        self._payload_hash(request, signing_properties, aws_identity)
        assert request.body is body
        assert body.tell() == 2

    def test_one_shot_body_is_buffered(
        self, aws_identity: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        request = HTTPRequest.from_url(
            "https://example.com/", body=iter([b"123", b"456"])
        )
        self._payload_hash(request, signing_properties, aws_identity)
        assert isinstance(request.body, BytesIO)
        assert request.body.read() == b"123456"

    def test_one_shot_body_survives_failed_signing(
        self, signing_properties: SigV4SigningProperties
    ) -> None:
        request = HTTPRequest.from_url(
            "https://example.com/", body=(chunk for chunk in [b"a", b"bc"])
        )
        identity = Credentials(access_key_id="AKID", secret_access_key="\ud800")
        with pytest.raises(InternalCryptoFailure):
            self.SIGV4_SYNC_SIGNER.sign(
                signing_properties=signing_properties,
                request=request,
                identity=identity,
            )
        assert len(request.fields) == 0
        assert b"".join(request.body) == b"abc"

    def test_str_body_is_rejected(
        self, aws_identity: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        request = HTTPRequest.from_url("https://example.com/")
        request.body = typing.cast(typing.Any, "not bytes")
        with pytest.raises(TypeError):
            self._payload_hash(request, signing_properties, aws_identity)

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://example.com/", UNSIGNED_PAYLOAD),
            (
                "http://example.com/",
                "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92",
            ),
        ],
    )
    def test_payload_signing_disabled(
        self, url: str, expected: str, aws_identity: Credentials
    ) -> None:
        request = HTTPRequest.from_url(url, body=b"123456")
        properties = SigV4SigningProperties(
            region="us-east-1",
            service="s3",
            date=SIGNED_AT,
            payload_signing_enabled=False,
        )
        assert self._payload_hash(request, properties, aws_identity) == expected

    def test_supplied_content_hash_is_replaced(
        self, aws_identity: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        request = HTTPRequest.from_url(
            "https://example.com/",
            headers={"x-amz-content-sha256": "stale"},
            body=b"123456",
        )
        assert self._payload_hash(request, signing_properties, aws_identity) == (
            "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"
        )
