# private_dns/message.py
# Version: 1.0.0
# DNS wire format encoder/decoder for queries and synthesized responses

"""
DNS Message Codec

Encodes the header, question and answer sections of a DNS message and
decodes the header and question sections of client queries. Answers are
never decoded because the proxy only parses client-authored queries.

Compression pointers are not resolved: a pointer ends the name it appears
in, so names that use compression decode truncated.
"""

import struct
from dataclasses import dataclass, field
from typing import List, Tuple

from private_dns.constants import (
    DNS_HEADER_SIZE,
    DNS_POINTER_MASK,
    MAX_DNS_LABEL_LENGTH,
    MAX_DNS_NAME_LENGTH,
)

HEADER_FORMAT = "!HHHHHH"
QUESTION_TAIL_FORMAT = "!HH"
ANSWER_TAIL_FORMAT = "!HHIH"

# Flag word layout: QR(1) OPCODE(4) AA(1) TC(1) RD(1) RA(1) Z(3) RCODE(4)
FLAG_QR = 0x8000
FLAG_AA = 0x0400
FLAG_TC = 0x0200
FLAG_RD = 0x0100
FLAG_RA = 0x0080
OPCODE_SHIFT = 11
OPCODE_MASK = 0x0F
Z_SHIFT = 4
Z_MASK = 0x07
RCODE_MASK = 0x0F


class MalformedMessageError(ValueError):
    """Raised when bytes cannot be decoded as a DNS message"""

    pass


def make_flags(
    is_response: bool = False,
    opcode: int = 0,
    authoritative: bool = False,
    truncated: bool = False,
    recursion_desired: bool = False,
    recursion_available: bool = False,
    rcode: int = 0,
) -> int:
    """Compose a 16-bit header flag word from its fields"""
    flags = (opcode & OPCODE_MASK) << OPCODE_SHIFT
    flags |= rcode & RCODE_MASK
    if is_response:
        flags |= FLAG_QR
    if authoritative:
        flags |= FLAG_AA
    if truncated:
        flags |= FLAG_TC
    if recursion_desired:
        flags |= FLAG_RD
    if recursion_available:
        flags |= FLAG_RA
    return flags


@dataclass
class DNSQuestion:
    """A single entry of the question section"""

    name: str
    type: int
    cls: int


@dataclass
class DNSAnswer:
    """A resource record with opaque payload data"""

    name: str
    type: int
    cls: int
    ttl: int
    data: bytes = b""


@dataclass
class DNSMessage:
    """DNS message with header, questions and answers"""

    id: int = 0
    flags: int = 0
    authority_count: int = 0
    additional_count: int = 0
    questions: List[DNSQuestion] = field(default_factory=list)
    answers: List[DNSAnswer] = field(default_factory=list)

    @property
    def is_response(self) -> bool:
        return bool(self.flags & FLAG_QR)

    @property
    def opcode(self) -> int:
        return (self.flags >> OPCODE_SHIFT) & OPCODE_MASK

    @property
    def authoritative(self) -> bool:
        return bool(self.flags & FLAG_AA)

    @property
    def truncated(self) -> bool:
        return bool(self.flags & FLAG_TC)

    @property
    def recursion_desired(self) -> bool:
        return bool(self.flags & FLAG_RD)

    @property
    def recursion_available(self) -> bool:
        return bool(self.flags & FLAG_RA)

    @property
    def z(self) -> int:
        return (self.flags >> Z_SHIFT) & Z_MASK

    @property
    def rcode(self) -> int:
        return self.flags & RCODE_MASK

    def to_bytes(self) -> bytes:
        """
        Encode the message in wire format

        Question and answer counts are taken from the list lengths.

        Raises:
            ValueError: If a name exceeds the label or name length limits
            struct.error: If a header or record field is out of range
        """
        parts = [
            struct.pack(
                HEADER_FORMAT,
                self.id,
                self.flags,
                len(self.questions),
                len(self.answers),
                self.authority_count,
                self.additional_count,
            )
        ]

        for question in self.questions:
            parts.append(encode_name(question.name))
            parts.append(struct.pack(QUESTION_TAIL_FORMAT, question.type, question.cls))

        for answer in self.answers:
            parts.append(encode_name(answer.name))
            parts.append(
                struct.pack(
                    ANSWER_TAIL_FORMAT, answer.type, answer.cls, answer.ttl, len(answer.data)
                )
            )
            parts.append(answer.data)

        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "DNSMessage":
        """
        Decode the header and question section of a DNS message

        Args:
            data: Raw datagram payload

        Returns:
            Decoded message; the answer list is always empty

        Raises:
            MalformedMessageError: If the data is empty, shorter than a header,
                or any field would be read past the end of the buffer
        """
        if not data:
            raise MalformedMessageError("DNS message is empty")
        if len(data) < DNS_HEADER_SIZE:
            raise MalformedMessageError(
                f"DNS message too short: {len(data)} bytes (minimum {DNS_HEADER_SIZE})"
            )

        msg_id, flags, qdcount, _ancount, nscount, arcount = struct.unpack_from(
            HEADER_FORMAT, data, 0
        )
        message = cls(
            id=msg_id, flags=flags, authority_count=nscount, additional_count=arcount
        )

        offset = DNS_HEADER_SIZE
        for _ in range(qdcount):
            name, offset = decode_name(data, offset)
            if offset + 4 > len(data):
                raise MalformedMessageError(f"Question for '{name}' truncated before type/class")
            qtype, qclass = struct.unpack_from(QUESTION_TAIL_FORMAT, data, offset)
            offset += 4
            message.questions.append(DNSQuestion(name=name, type=qtype, cls=qclass))

        return message


def encode_name(name: str) -> bytes:
    """Encode a dotted name as length-prefixed labels ending in a zero byte"""
    encoded = bytearray()
    for label in name.split("."):
        if not label:
            continue
        raw = label.encode("ascii", errors="replace")
        if len(raw) > MAX_DNS_LABEL_LENGTH:
            raise ValueError(
                f"DNS label too long: '{label}' is {len(raw)} bytes "
                f"(maximum {MAX_DNS_LABEL_LENGTH})"
            )
        encoded.append(len(raw))
        encoded.extend(raw)
    encoded.append(0)

    if len(encoded) > MAX_DNS_NAME_LENGTH:
        raise ValueError(
            f"DNS name too long: {len(encoded)} bytes (maximum {MAX_DNS_NAME_LENGTH})"
        )
    return bytes(encoded)


def decode_name(data: bytes, offset: int) -> Tuple[str, int]:
    """
    Read a name starting at offset

    Returns:
        Tuple of (dotted name, offset just past the name)
    """
    labels = []
    while True:
        if offset >= len(data):
            raise MalformedMessageError(f"Name runs past end of message at offset {offset}")
        length = data[offset]
        offset += 1

        if length == 0:
            break

        if length & DNS_POINTER_MASK == DNS_POINTER_MASK:
            # Pointer targets are not followed; skip the second pointer byte
            if offset >= len(data):
                raise MalformedMessageError("Compression pointer truncated")
            offset += 1
            break

        if length > MAX_DNS_LABEL_LENGTH:
            raise MalformedMessageError(
                f"Label length {length} at offset {offset - 1} exceeds {MAX_DNS_LABEL_LENGTH} bytes"
            )

        if offset + length > len(data):
            raise MalformedMessageError(
                f"Label length {length} at offset {offset - 1} exceeds message size {len(data)}"
            )
        labels.append(data[offset : offset + length].decode("ascii", errors="replace"))
        offset += length

    return ".".join(labels), offset
