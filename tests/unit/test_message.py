#!/usr/bin/env python3
"""Unit tests for the DNS message codec"""

import struct

import pytest

from private_dns.message import (
    DNSAnswer,
    DNSMessage,
    DNSQuestion,
    MalformedMessageError,
    encode_name,
    make_flags,
)
from test_utils import build_query


class TestDecode:
    """Test decoding of client queries"""

    def test_minimal_query(self):
        """Test decoding a hand-crafted query for example.com"""
        header = bytes([
            0x12, 0x34,  # Transaction ID
            0x01, 0x00,  # Flags: standard query
            0x00, 0x01,  # Questions: 1
            0x00, 0x00,  # Answer RRs: 0
            0x00, 0x00,  # Authority RRs: 0
            0x00, 0x00,  # Additional RRs: 0
        ])
        question = bytes([
            0x07, 0x65, 0x78, 0x61, 0x6d, 0x70, 0x6c, 0x65,  # "example"
            0x03, 0x63, 0x6f, 0x6d,  # "com"
            0x00,  # End of name
            0x00, 0x01,  # Type: A
            0x00, 0x01,  # Class: IN
        ])

        message = DNSMessage.from_bytes(header + question)

        assert message.id == 0x1234
        assert message.flags == 0x0100
        assert message.recursion_desired is True
        assert message.is_response is False
        assert message.questions == [DNSQuestion("example.com", 1, 1)]
        assert message.answers == []

    def test_case_is_preserved(self):
        message = DNSMessage.from_bytes(build_query("WwW.Example.COM"))
        assert message.questions[0].name == "WwW.Example.COM"

    def test_empty_input(self):
        with pytest.raises(MalformedMessageError, match="empty"):
            DNSMessage.from_bytes(b"")

    def test_short_header(self):
        with pytest.raises(MalformedMessageError, match="too short"):
            DNSMessage.from_bytes(b"\x00" * 11)

    def test_header_only_has_no_questions(self):
        message = DNSMessage.from_bytes(struct.pack("!HHHHHH", 7, 0, 0, 0, 0, 0))
        assert message.id == 7
        assert message.questions == []

    def test_label_past_end_of_buffer(self):
        """Test a label length that reads past the end is rejected"""
        data = struct.pack("!HHHHHH", 1, 0, 1, 0, 0, 0) + b"\x0aabc"
        with pytest.raises(MalformedMessageError, match="exceeds"):
            DNSMessage.from_bytes(data)

    def test_missing_terminator(self):
        data = struct.pack("!HHHHHH", 1, 0, 1, 0, 0, 0) + b"\x03abc"
        with pytest.raises(MalformedMessageError):
            DNSMessage.from_bytes(data)

    def test_truncated_type_and_class(self):
        data = build_query("example.com")[:-3]
        with pytest.raises(MalformedMessageError, match="truncated"):
            DNSMessage.from_bytes(data)

    def test_question_count_larger_than_buffer(self):
        """Test an inflated question count fails instead of over-reading"""
        data = bytearray(build_query("example.com"))
        data[4:6] = struct.pack("!H", 5)
        with pytest.raises(MalformedMessageError):
            DNSMessage.from_bytes(bytes(data))

    def test_compression_pointer_truncates_name(self):
        """Test a pointer ends the name without being followed"""
        header = struct.pack("!HHHHHH", 9, 0, 2, 0, 0, 0)
        first = b"\x07example\x03com\x00" + struct.pack("!HH", 1, 1)
        # "www" followed by a pointer to offset 12 ("example.com")
        second = b"\x03www\xc0\x0c" + struct.pack("!HH", 28, 1)

        message = DNSMessage.from_bytes(header + first + second)

        assert message.questions[0] == DNSQuestion("example.com", 1, 1)
        assert message.questions[1] == DNSQuestion("www", 28, 1)

    def test_oversized_label_length_is_malformed(self):
        """Test a length byte above 63 that is not a pointer is rejected"""
        data = struct.pack("!HHHHHH", 1, 0, 1, 0, 0, 0) + bytes([80]) + b"a" * 80 + b"\x00"
        data += struct.pack("!HH", 1, 1)
        with pytest.raises(MalformedMessageError, match="exceeds 63"):
            DNSMessage.from_bytes(data)

    def test_non_ascii_label_bytes_are_replaced(self):
        data = struct.pack("!HHHHHH", 1, 0, 1, 0, 0, 0) + b"\x04caf\xe9\x03com\x00"
        data += struct.pack("!HH", 1, 1)

        message = DNSMessage.from_bytes(data)

        assert message.questions[0].name == "caf\ufffd.com"

    def test_truncated_compression_pointer(self):
        data = struct.pack("!HHHHHH", 1, 0, 1, 0, 0, 0) + b"\x03www\xc0"
        with pytest.raises(MalformedMessageError, match="pointer"):
            DNSMessage.from_bytes(data)

    def test_answer_section_is_not_decoded(self):
        """Test answers in the wire data are ignored on decode"""
        message = DNSMessage(
            id=5,
            questions=[DNSQuestion("example.com", 1, 1)],
            answers=[DNSAnswer("example.com", 1, 1, 60, b"\x01\x02\x03\x04")],
        )
        decoded = DNSMessage.from_bytes(message.to_bytes())
        assert decoded.questions == message.questions
        assert decoded.answers == []


class TestEncode:
    """Test encoding of messages"""

    def test_header_layout(self):
        message = DNSMessage(
            id=0xBEEF,
            flags=0x8180,
            questions=[DNSQuestion("a.example", 1, 1)],
            answers=[DNSAnswer("a.example", 1, 1, 300, b"\x7f\x00\x00\x01")],
        )
        data = message.to_bytes()

        assert struct.unpack("!HHHHHH", data[:12]) == (0xBEEF, 0x8180, 1, 1, 0, 0)

    def test_counts_follow_list_lengths(self):
        """Test counts are derived from the lists, not stored values"""
        message = DNSMessage(questions=[DNSQuestion("a.com", 1, 1), DNSQuestion("b.com", 28, 1)])
        data = message.to_bytes()
        assert struct.unpack("!HH", data[4:8]) == (2, 0)

    def test_answer_layout(self):
        answer = DNSAnswer("x.io", 1, 1, 0x01020304, b"\x0a\x00\x00\x01")
        data = DNSMessage(answers=[answer]).to_bytes()

        body = data[12:]
        assert body == (
            b"\x01x\x02io\x00"
            + struct.pack("!HHIH", 1, 1, 0x01020304, 4)
            + b"\x0a\x00\x00\x01"
        )

    def test_trailing_dot_is_ignored(self):
        assert encode_name("example.com.") == b"\x07example\x03com\x00"

    def test_root_name(self):
        assert encode_name("") == b"\x00"

    def test_label_too_long(self):
        with pytest.raises(ValueError, match="label too long"):
            encode_name("a" * 64 + ".com")

    def test_max_label_length(self):
        encoded = encode_name("a" * 63 + ".com")
        assert encoded[0] == 63

    def test_non_ascii_characters_encode_as_question_mark(self):
        assert encode_name("caf\ufffd.com") == b"\x04caf?\x03com\x00"

    def test_out_of_range_field_raises_struct_error(self):
        message = DNSMessage(id=0x10000, questions=[DNSQuestion("example.com", 1, 1)])
        with pytest.raises(struct.error):
            message.to_bytes()

    def test_name_too_long(self):
        name = ".".join(["a" * 63] * 4)
        with pytest.raises(ValueError, match="name too long"):
            encode_name(name)


class TestRoundTrip:
    """Test questions survive encode then decode"""

    @pytest.mark.parametrize(
        "questions",
        [
            [DNSQuestion("example.com", 1, 1)],
            [DNSQuestion("Mixed.Case.Example.org", 28, 1), DNSQuestion("mail.example.org", 15, 1)],
            [DNSQuestion("a" * 63 + ".b", 255, 3)],
        ],
    )
    def test_questions_round_trip(self, questions):
        message = DNSMessage(id=42, flags=0x0100, questions=questions)
        decoded = DNSMessage.from_bytes(message.to_bytes())

        assert decoded.id == 42
        assert decoded.flags == 0x0100
        assert decoded.questions == questions


class TestFlags:
    """Test flag composition and accessors"""

    def test_standard_response_flags(self):
        flags = make_flags(is_response=True, recursion_desired=True, recursion_available=True)
        assert flags == 0x8180

    def test_accessors(self):
        flags = make_flags(
            is_response=True,
            opcode=2,
            authoritative=True,
            truncated=True,
            recursion_desired=True,
            recursion_available=True,
            rcode=3,
        )
        message = DNSMessage(flags=flags)

        assert message.is_response
        assert message.opcode == 2
        assert message.authoritative
        assert message.truncated
        assert message.recursion_desired
        assert message.recursion_available
        assert message.z == 0
        assert message.rcode == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
