# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable, Iterator
from enum import Enum
from typing import Protocol, runtime_checkable


class FieldPosition(Enum):
    """The type of a field.

    Defines its placement in a request. Only ``HEADER`` fields take part in signing.
    """

    HEADER = 0
    """Header field, as defined in RFC 9110 Section 6.3."""

    TRAILER = 1
    """Trailer field, as defined in RFC 9110 Section 6.5.

    Trailers are sent after the body and are never covered by the signature.
    """


class Field(Protocol):
    """A name-value pair representing a single field in a request.

    All field names are case insensitive and case-variance must be treated as
    equivalent. Names may be normalized but should be preserved for accuracy during
    transmission.
    """

    name: str
    values: list[str]
    kind: FieldPosition = FieldPosition.HEADER

    def add(self, value: str) -> None:
        """Append a value to a field."""
        ...

    def set(self, values: list[str]) -> None:
        """Overwrite existing field values."""
        ...

    def as_string(self, delimiter: str = ",") -> str:
        """Serialize the ``Field``'s values into a single line string."""
        ...


class Fields(Protocol):
    """Case-insensitive, ordered mapping of request fields keyed by name."""

    # Entries are keyed off the normalized name of a provided Field
    entries: OrderedDict[str, Field]

    def set_field(self, field: Field) -> None:
        """Alias for __setitem__ to utilize the field.name for the entry key."""
        ...

    def __setitem__(self, name: str, field: Field) -> None:
        """Set entry for a Field name."""
        ...

    def __getitem__(self, name: str) -> Field:
        """Retrieve Field entry."""
        ...

    def __delitem__(self, name: str) -> None:
        """Delete entry from collection."""
        ...

    def __contains__(self, name: str) -> bool:
        """Case-insensitive membership test."""
        ...

    def __iter__(self) -> Iterator[Field]:
        """Allow iteration over entries."""
        ...

    def __len__(self) -> int:
        """Get total number of Field entries."""
        ...

    def get_by_type(self, kind: FieldPosition) -> list[Field]:
        """Helper function for retrieving specific types of fields.

        Used to grab all headers or all trailers.
        """
        ...


class Request(Protocol):
    """Protocol-agnostic representation of a signable request."""

    destination: URI
    method: str
    body: bytes | Iterable[bytes] | None
    fields: Fields


@runtime_checkable
class URI(Protocol):
    """Universal Resource Identifier, target location for a :py:class:`Request`."""

    scheme: str
    """For example ``http`` or ``https``."""

    username: str | None
    """Username part of the userinfo URI component."""

    password: str | None
    """Password part of the userinfo URI component."""

    host: str
    """The hostname, for example ``amazonaws.com``."""

    port: int | None
    """An explicit port number."""

    path: str | None
    """Path component of the URI, as transmitted."""

    query: str | None
    """Query component of the URI as string."""

    fragment: str | None
    """Part of the URI syntax, never transmitted or signed."""

    def build(self) -> str:
        """Construct URI string representation.

        Returns a string of the form
        ``{scheme}://{username}:{password}@{host}:{port}{path}?{query}#{fragment}``
        """
        ...

    @property
    def netloc(self) -> str:
        """Construct netloc string in format ``{username}:{password}@{host}:{port}``"""
        ...

    @property
    def authority(self) -> str:
        """The ``{host}:{port}`` value used for the ``Host`` header.

        The port is left out when it is the scheme's default.
        """
        ...
