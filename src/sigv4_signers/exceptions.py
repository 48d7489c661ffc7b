# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0


class SigningError(Exception):
    """Top-level exception to capture signing-related errors."""


class InvalidRequestError(SigningError, ValueError):
    """The request can't be canonicalized, e.g. it has no host to sign."""


class MissingExpectedParameterException(SigningError, ValueError):
    """Some signing properties are required to be present and non-empty."""


class InternalCryptoFailure(SigningError):
    """A hash or HMAC primitive failed while computing the signature."""
