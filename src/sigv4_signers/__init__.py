# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
"""SigV4 Signers provides stand-alone AWS Signature Version 4 request signing for
use with HTTP tools such as AioHTTP, Curl, Requests, urllib3, etc."""

from __future__ import annotations

from ._http import URI, Field, Fields, HTTPRequest
from ._identity import Credentials
from .exceptions import (
    InternalCryptoFailure,
    InvalidRequestError,
    MissingExpectedParameterException,
    SigningError,
)
from .signers import (
    SigV4Signer,
    SigV4SigningProperties,
    build_string_to_sign,
    calculate_signature,
    credential_scope,
    derive_signing_key,
    format_authorization,
)

__license__ = "Apache-2.0"
__version__ = "0.1.0"

__all__ = (
    "URI",
    "Credentials",
    "Field",
    "Fields",
    "HTTPRequest",
    "InternalCryptoFailure",
    "InvalidRequestError",
    "MissingExpectedParameterException",
    "SigV4Signer",
    "SigV4SigningProperties",
    "SigningError",
    "build_string_to_sign",
    "calculate_signature",
    "credential_scope",
    "derive_signing_key",
    "format_authorization",
)
