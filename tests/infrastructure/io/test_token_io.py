import io
import unittest
from unittest import TestCase

import numpy as np

from nnetcore.domain._errors import MalformedStreamError
from nnetcore.infrastructure.io._token_io import (
    at_eof,
    expect_token,
    peek_token,
    read_float,
    read_int,
    read_matrix,
    read_token,
    read_vector,
    write_float,
    write_int,
    write_matrix,
    write_token,
    write_vector,
)


def _rewind(buf: io.BytesIO) -> io.BytesIO:
    return io.BytesIO(buf.getvalue())


class TestTextEncoding(TestCase):
    def test_scalars_are_space_separated_words(self):
        buf = io.BytesIO()
        write_token(buf, False, "<Nnet>")
        write_int(buf, False, 42)
        write_float(buf, False, 0.25)
        self.assertEqual(buf.getvalue(), b"<Nnet> 42 0.25 ")

        s = _rewind(buf)
        self.assertEqual(read_token(s, False), "<Nnet>")
        self.assertEqual(read_int(s, False), 42)
        self.assertAlmostEqual(read_float(s, False), 0.25)
        self.assertTrue(at_eof(s))

    def test_vector_layout(self):
        buf = io.BytesIO()
        write_vector(buf, False, np.array([1.0, -2.5], dtype=np.float32))
        self.assertEqual(buf.getvalue(), b" [ 1 -2.5 ]\n")
        np.testing.assert_array_equal(read_vector(_rewind(buf), False), [1.0, -2.5])

    def test_empty_vector(self):
        buf = io.BytesIO()
        write_vector(buf, False, np.zeros((0,), dtype=np.float32))
        self.assertEqual(buf.getvalue(), b" [ ]\n")
        self.assertEqual(read_vector(_rewind(buf), False).shape, (0,))

    def test_matrix_layout(self):
        m = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]], dtype=np.float32)
        buf = io.BytesIO()
        write_matrix(buf, False, m)
        self.assertEqual(buf.getvalue(), b" [ \n  1 2\n  3 4\n  5 6 ]\n")

        s = _rewind(buf)
        np.testing.assert_array_equal(read_matrix(s, False), m)
        self.assertTrue(at_eof(s))

    def test_single_row_matrix(self):
        m = np.array([[0.5, -0.5, 1.5]], dtype=np.float32)
        buf = io.BytesIO()
        write_matrix(buf, False, m)
        np.testing.assert_array_equal(read_matrix(_rewind(buf), False), m)

    def test_empty_matrix(self):
        buf = io.BytesIO()
        write_matrix(buf, False, np.zeros((0, 0), dtype=np.float32))
        self.assertEqual(buf.getvalue(), b" [ ]\n")
        self.assertEqual(read_matrix(_rewind(buf), False).shape, (0, 0))

    def test_matrix_followed_by_token(self):
        buf = io.BytesIO()
        write_matrix(buf, False, np.eye(2, dtype=np.float32))
        write_token(buf, False, "</Nnet>")
        s = _rewind(buf)
        read_matrix(s, False)
        self.assertEqual(read_token(s, False), "</Nnet>")

    def test_ragged_matrix_rejected(self):
        s = io.BytesIO(b" [ \n  1 2\n  3 ]\n")
        with self.assertRaises(MalformedStreamError):
            read_matrix(s, False)

    def test_bad_number_rejected(self):
        with self.assertRaises(MalformedStreamError):
            read_int(io.BytesIO(b"abc "), False)
        with self.assertRaises(MalformedStreamError):
            read_float(io.BytesIO(b"x1 "), False)

    def test_invalid_token_rejected(self):
        with self.assertRaises(ValueError):
            write_token(io.BytesIO(), False, "two words")
        with self.assertRaises(ValueError):
            write_token(io.BytesIO(), False, "")


class TestBinaryEncoding(TestCase):
    def test_int_and_float_have_size_prefix(self):
        buf = io.BytesIO()
        write_int(buf, True, 7)
        write_float(buf, True, 1.5)
        raw = buf.getvalue()
        self.assertEqual(len(raw), 10)
        self.assertEqual(raw[0:1], b"\x04")
        self.assertEqual(raw[5:6], b"\x04")

        s = _rewind(buf)
        self.assertEqual(read_int(s, True), 7)
        self.assertEqual(read_float(s, True), 1.5)

    def test_vector_and_matrix(self):
        rng = np.random.default_rng(0)
        v = rng.standard_normal(5).astype(np.float32)
        m = rng.standard_normal((3, 4)).astype(np.float32)
        buf = io.BytesIO()
        write_vector(buf, True, v)
        write_matrix(buf, True, m)
        self.assertTrue(buf.getvalue().startswith(b"FV "))

        s = _rewind(buf)
        np.testing.assert_array_equal(read_vector(s, True), v)
        out = read_matrix(s, True)
        np.testing.assert_array_equal(out, m)
        self.assertTrue(out.flags.writeable)

    def test_truncated_payload_raises(self):
        buf = io.BytesIO()
        write_matrix(buf, True, np.ones((4, 4), dtype=np.float32))
        s = io.BytesIO(buf.getvalue()[:-3])
        with self.assertRaises(MalformedStreamError):
            read_matrix(s, True)

    def test_wrong_size_prefix_raises(self):
        with self.assertRaises(MalformedStreamError):
            read_int(io.BytesIO(b"\x08" + b"\x00" * 8), True)


class TestTokenHelpers(TestCase):
    def test_peek_does_not_consume(self):
        s = io.BytesIO(b"<A> <B> ")
        self.assertEqual(peek_token(s, False), "<A>")
        self.assertEqual(read_token(s, False), "<A>")
        self.assertEqual(peek_token(s, False), "<B>")
        read_token(s, False)
        self.assertIsNone(peek_token(s, False))

    def test_expect_token_mismatch(self):
        with self.assertRaises(MalformedStreamError):
            expect_token(io.BytesIO(b"<A> "), False, "<B>")

    def test_read_past_end_raises(self):
        with self.assertRaises(MalformedStreamError):
            read_token(io.BytesIO(b"   \n"), False)

    def test_non_ascii_token_raises(self):
        with self.assertRaises(MalformedStreamError):
            read_token(io.BytesIO(b"\xff\xfe "), False)


if __name__ == "__main__":
    unittest.main()
