"""Tests for incremental output decoding."""

import codecs

import pytest

from drivervisor.core.decoding import StreamDecoder, detect_encoding


class TestDetectEncoding:
    def test_plain_ascii_is_utf8(self):
        assert detect_encoding(b"listening for requests") == "utf-8"

    def test_utf16le_without_bom(self):
        assert detect_encoding("Press ENTER".encode("utf-16-le")) == "utf-16-le"

    def test_utf16le_bom(self):
        assert detect_encoding(codecs.BOM_UTF16_LE + "hi".encode("utf-16-le")) == "utf-16"

    def test_utf8_bom(self):
        assert detect_encoding(codecs.BOM_UTF8 + b"hi") == "utf-8-sig"

    def test_utf8_multibyte(self):
        assert detect_encoding("Überwachung läuft".encode("utf-8")) == "utf-8"

    def test_empty(self):
        assert detect_encoding(b"") == "utf-8"

    def test_short_utf16le_line_break(self):
        assert detect_encoding("\r\n".encode("utf-16-le")) == "utf-16-le"

    def test_short_ascii_stays_utf8(self):
        assert detect_encoding(b"ok") == "utf-8"
        assert detect_encoding(b"ok\r\n") == "utf-8"


class TestStreamDecoder:
    def test_fixed_encoding(self):
        decoder = StreamDecoder("utf-16-le")
        assert decoder.detected == "utf-16-le"
        assert decoder.decode("ready".encode("utf-16-le")) == "ready"

    def test_utf8_sequence_split_across_chunks(self):
        decoder = StreamDecoder("utf-8")
        data = "café".encode("utf-8")

        assert decoder.decode(data[:-1]) == "caf"
        assert decoder.decode(data[-1:]) == "é"

    def test_utf16_code_unit_split_across_chunks(self):
        decoder = StreamDecoder()
        data = "Press ENTER to exit.".encode("utf-16-le")

        text = decoder.decode(data[:7]) + decoder.decode(data[7:])

        assert text == "Press ENTER to exit."
        assert decoder.detected == "utf-16-le"

    def test_auto_waits_for_enough_bytes(self):
        decoder = StreamDecoder()

        assert decoder.decode(b"ok") == ""
        assert decoder.detected is None
        assert decoder.decode(b" then") == "ok then"
        assert decoder.detected == "utf-8"

    def test_auto_short_utf16le_first_chunk(self):
        decoder = StreamDecoder()

        text = decoder.decode("A\r\n".encode("utf-16-le"))
        text += decoder.decode("Press ENTER to exit.".encode("utf-16-le"))

        assert decoder.detected == "utf-16-le"
        assert text == "A\r\nPress ENTER to exit."

    def test_auto_final_flushes_short_input(self):
        decoder = StreamDecoder()

        assert decoder.decode(b"ok", final=True) == "ok"

    def test_auto_strips_bom(self):
        decoder = StreamDecoder()

        assert decoder.decode(codecs.BOM_UTF16_LE + "up".encode("utf-16-le")) == "up"

    def test_invalid_bytes_replaced(self):
        decoder = StreamDecoder("utf-8")

        assert decoder.decode(b"ready \xff\n", final=True) == "ready �\n"

    def test_unknown_encoding(self):
        with pytest.raises(LookupError):
            StreamDecoder("not-a-codec")
