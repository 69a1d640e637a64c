import io
import os
import tempfile
import unittest
from unittest import TestCase

import numpy as np

from nnetcore.domain._errors import (
    DimensionMismatchError,
    MalformedStreamError,
    ParameterExplosionError,
    UnknownComponentError,
)
from nnetcore.domain._train_options import NnetTrainOptions
from nnetcore.infrastructure.components import (
    AffineTransform,
    BLstmProjectedStreams,
    Dropout,
    LstmProjectedStreams,
    Sigmoid,
    Softmax,
)
from nnetcore.infrastructure.io._token_io import BINARY_HEADER
from nnetcore.infrastructure.nnet import Nnet

_PROTO = """<NnetProto>
<AffineTransform> <InputDim> 10 <OutputDim> 8 <ParamStddev> 0.1 <BiasMean> 0.0 <BiasRange> 0.5

<Sigmoid> <InputDim> 8 <OutputDim> 8
<Dropout> <InputDim> 8 <OutputDim> 8 <DropoutRetention> 0.9
<AffineTransform> <InputDim> 8 <OutputDim> 3
<Softmax> <InputDim> 3 <OutputDim> 3
</NnetProto>
"""


def _proto_nnet(seed: int = 0) -> Nnet:
    np.random.seed(seed)
    return Nnet.from_proto(io.StringIO(_PROTO))


def _round_trip(nnet: Nnet, binary: bool) -> Nnet:
    buf = io.BytesIO()
    nnet.write(buf, binary)
    out = Nnet()
    out.read(io.BytesIO(buf.getvalue()), binary)
    return out


class TestPrototypeInit(TestCase):
    def test_builds_components_in_order(self):
        nnet = _proto_nnet()
        self.assertEqual(
            [type(c) for c in nnet],
            [AffineTransform, Sigmoid, Dropout, AffineTransform, Softmax],
        )
        self.assertEqual((nnet.input_dim(), nnet.output_dim()), (10, 3))
        self.assertAlmostEqual(nnet[2].get_dropout_retention(), 0.9)

    def test_options_are_applied(self):
        nnet = _proto_nnet()
        w = nnet[0].get_linearity()
        self.assertLess(float(np.std(w)), 0.2)
        b = nnet[0].get_bias()
        self.assertTrue(np.all(np.abs(b) <= 0.25))

    def test_seeded_init_is_reproducible(self):
        np.testing.assert_array_equal(_proto_nnet(7).get_params(), _proto_nnet(7).get_params())

    def test_init_from_path(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nnet.proto")
            with open(path, "w") as f:
                f.write(_PROTO)
            nnet = Nnet.from_proto(path)
        self.assertEqual(nnet.num_components(), 5)

    def test_init_from_lines(self):
        nnet = Nnet()
        nnet.init(["<Sigmoid> <InputDim> 4 <OutputDim> 4", "<Tanh> <InputDim> 4 <OutputDim> 4"])
        self.assertEqual(nnet.num_components(), 2)

    def test_init_appends(self):
        nnet = _proto_nnet()
        nnet.init(["<Sigmoid> <InputDim> 3 <OutputDim> 3\n"])
        self.assertEqual(nnet.num_components(), 6)

    def test_incompatible_prototype(self):
        with self.assertRaises(DimensionMismatchError):
            Nnet.from_proto(
                ["<Sigmoid> <InputDim> 4 <OutputDim> 4\n", "<Sigmoid> <InputDim> 5 <OutputDim> 5\n"]
            )

    def test_unknown_component(self):
        with self.assertRaises(UnknownComponentError):
            Nnet.from_proto(["<Convolutional> <InputDim> 4 <OutputDim> 4\n"])

    def test_prototype_lines_are_logged(self):
        with self.assertLogs("nnetcore.infrastructure.nnet._nnet", level="DEBUG") as logs:
            _proto_nnet()
        self.assertTrue(any("<Sigmoid> <InputDim> 8" in m for m in logs.output))


class TestStreamRoundTrip(TestCase):
    def test_binary_round_trip_is_exact(self):
        nnet = _proto_nnet()
        out = _round_trip(nnet, True)
        self.assertEqual([type(c) for c in out], [type(c) for c in nnet])
        np.testing.assert_array_equal(out.get_params(), nnet.get_params())

    def test_text_round_trip(self):
        nnet = _proto_nnet()
        out = _round_trip(nnet, False)
        np.testing.assert_allclose(out.get_params(), nnet.get_params(), rtol=1e-6)
        nnet.set_dropout_retention(1.0)
        out.set_dropout_retention(1.0)
        x = np.random.default_rng(0).standard_normal((4, 10)).astype(np.float32)
        np.testing.assert_allclose(out.feedforward(x), nnet.feedforward(x), rtol=1e-5)

    def test_text_layout(self):
        nnet = Nnet([Sigmoid(2, 2)])
        buf = io.BytesIO()
        nnet.write(buf, False)
        self.assertEqual(buf.getvalue(), b"<Nnet> \n<Sigmoid> 2 2 \n</Nnet> \n")

    def test_recurrent_round_trip(self):
        np.random.seed(1)
        nnet = Nnet.from_proto(
            [
                "<LstmProjectedStreams> <InputDim> 4 <OutputDim> 3 <CellDim> 5\n",
                "<BLstmProjectedStreams> <InputDim> 3 <OutputDim> 4 <CellDim> 2\n",
            ]
        )
        for binary in (True, False):
            out = _round_trip(nnet, binary)
            self.assertIsInstance(out[0], LstmProjectedStreams)
            self.assertIsInstance(out[1], BLstmProjectedStreams)
            np.testing.assert_allclose(out.get_params(), nnet.get_params(), rtol=1e-6)

    def test_read_resets_learn_rate(self):
        nnet = _proto_nnet()
        nnet.set_train_options(NnetTrainOptions(learn_rate=0.5, momentum=0.9))
        out = Nnet(train_options=NnetTrainOptions(learn_rate=0.5, momentum=0.9))
        buf = io.BytesIO()
        nnet.write(buf, True)
        out.read(io.BytesIO(buf.getvalue()), True)
        self.assertEqual(out.train_options.learn_rate, 0.0)
        self.assertAlmostEqual(out.train_options.momentum, 0.9)
        self.assertEqual(out[0].opts.learn_rate, 0.0)

    def test_read_replaces_existing_components(self):
        target = _proto_nnet()
        out = _round_trip(Nnet([Sigmoid(2, 2)]), True)
        buf = io.BytesIO()
        out.write(buf, True)
        target.read(io.BytesIO(buf.getvalue()), True)
        self.assertEqual(target.num_components(), 1)

    def test_empty_network(self):
        out = _round_trip(Nnet(), False)
        self.assertEqual(out.num_components(), 0)
        x = np.arange(6, dtype=np.float32).reshape(2, 3)
        np.testing.assert_array_equal(out.propagate(x), x)
        self.assertIn("num-components 0", out.info())

    def test_read_detects_width_mismatch(self):
        text = b"<Nnet> <Sigmoid> 3 3 <Sigmoid> 4 4 </Nnet> "
        with self.assertRaises(DimensionMismatchError):
            Nnet().read(io.BytesIO(text), False)

    def test_truncated_stream(self):
        buf = io.BytesIO()
        _proto_nnet().write(buf, True)
        with self.assertRaises(MalformedStreamError):
            Nnet().read(io.BytesIO(buf.getvalue()[:-40]), True)

    def test_missing_terminator(self):
        with self.assertRaises(MalformedStreamError):
            Nnet().read(io.BytesIO(b"<Nnet> <Sigmoid> 3 3 "), False)

    def test_write_checks_first(self):
        nnet = Nnet([AffineTransform(2, 2)])
        nnet[0].bias[0] = np.nan
        buf = io.BytesIO()
        with self.assertRaises(ParameterExplosionError):
            nnet.write(buf, True)
        self.assertEqual(buf.getvalue(), b"")


class TestFiles(TestCase):
    def test_binary_file_has_header(self):
        nnet = _proto_nnet()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "final.nnet")
            nnet.write_file(path)
            with open(path, "rb") as f:
                self.assertEqual(f.read(2), BINARY_HEADER)
            out = Nnet.from_file(path)
        np.testing.assert_array_equal(out.get_params(), nnet.get_params())

    def test_text_file(self):
        nnet = _proto_nnet()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "sub", "final.txt")
            nnet.write_file(path, binary=False)
            with open(path, "rb") as f:
                self.assertTrue(f.read().startswith(b"<Nnet>"))
            out = Nnet()
            out.read_file(path)
        np.testing.assert_allclose(out.get_params(), nnet.get_params(), rtol=1e-6)

    def test_empty_network_file_warns(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "empty.nnet")
            Nnet().write_file(path)
            with self.assertLogs("nnetcore.infrastructure.nnet._nnet", level="WARNING") as logs:
                out = Nnet.from_file(path)
        self.assertEqual(out.num_components(), 0)
        self.assertTrue(any("empty" in m for m in logs.output))

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(OSError):
                Nnet.from_file(os.path.join(tmp, "nope.nnet"))


if __name__ == "__main__":
    unittest.main()
