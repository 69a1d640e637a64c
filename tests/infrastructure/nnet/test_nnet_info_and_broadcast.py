import unittest
from unittest import TestCase, mock

import numpy as np

from nnetcore.infrastructure.components import (
    AffineTransform,
    BLstmProjectedStreams,
    Dropout,
    LstmProjectedStreams,
    ParallelComponent,
    Sigmoid,
)
from nnetcore.infrastructure.nnet import Nnet


def _affine(input_dim: int, output_dim: int) -> AffineTransform:
    comp = AffineTransform(input_dim, output_dim)
    comp.set_linearity(np.full((output_dim, input_dim), 0.1, np.float32))
    return comp


class TestBroadcast(TestCase):
    def test_dropout_retention_reaches_every_dropout(self):
        nnet = Nnet([_affine(4, 4), Dropout(4, 4), Sigmoid(4, 4), Dropout(4, 4)])
        with self.assertLogs("nnetcore.infrastructure.nnet._nnet", level="INFO") as logs:
            nnet.set_dropout_retention(0.8)
        self.assertAlmostEqual(nnet[1].get_dropout_retention(), 0.8)
        self.assertAlmostEqual(nnet[3].get_dropout_retention(), 0.8)
        self.assertEqual(len(logs.output), 2)
        self.assertIn("component 1 from 0.5 to 0.8", logs.output[0])

    def test_dropout_retention_without_dropout_is_noop(self):
        nnet = Nnet([_affine(4, 4)])
        nnet.set_dropout_retention(0.3)

    def test_invalid_retention_propagates(self):
        nnet = Nnet([Dropout(4, 4)])
        with self.assertRaises(ValueError):
            nnet.set_dropout_retention(0.0)

    def test_reset_lstm_streams_reaches_recurrent_components_only(self):
        lstm = LstmProjectedStreams(4, 4)
        nnet = Nnet([_affine(4, 4), lstm, BLstmProjectedStreams(4, 4)])
        with mock.patch.object(LstmProjectedStreams, "reset_streams", autospec=True) as reset:
            nnet.reset_lstm_streams([1, 0, 1])
        reset.assert_called_once_with(lstm, [1, 0, 1])

    def test_reset_lstm_streams_sets_stream_count(self):
        nnet = Nnet([LstmProjectedStreams(4, 2)])
        nnet.reset_lstm_streams([1, 1, 1])
        self.assertEqual(nnet[0].nstream, 3)
        self.assertEqual(nnet.propagate(np.zeros((6, 4), np.float32)).shape, (6, 2))

    def test_set_seq_lengths(self):
        nnet = Nnet([BLstmProjectedStreams(3, 4), Sigmoid(4, 4)])
        nnet.set_seq_lengths([2, 1])
        self.assertEqual(nnet[0].sequence_lengths, [2, 1])
        self.assertEqual(nnet.propagate(np.ones((4, 3), np.float32)).shape, (4, 4))


class TestInfo(TestCase):
    def test_summary(self):
        nnet = Nnet([_affine(10, 5), Sigmoid(5, 5)])
        lines = nnet.info().splitlines()
        self.assertEqual(lines[0], "num-components 2")
        self.assertEqual(lines[1], "input-dim 10")
        self.assertEqual(lines[2], "output-dim 5")
        self.assertEqual(lines[3], "number-of-parameters 5.5e-05 millions")
        self.assertTrue(lines[4].startswith("component 1 : <AffineTransform>, input-dim 10, output-dim 5, "))
        self.assertIn("component 2 : <Sigmoid>, input-dim 5, output-dim 5, ", nnet.info())

    def test_empty_summary(self):
        info = Nnet().info()
        self.assertEqual(info, "num-components 0\nnumber-of-parameters 0 millions\n")

    def test_info_gradient(self):
        s = Nnet([_affine(3, 2), Sigmoid(2, 2)]).info_gradient()
        self.assertIn("### Gradient stats :", s)
        self.assertIn("Component 1 : <AffineTransform>, ", s)
        self.assertIn("Component 2 : <Sigmoid>, ", s)

    def test_info_propagate_and_backpropagate(self):
        nnet = Nnet([_affine(3, 2), Sigmoid(2, 2)])
        before = nnet.info_propagate()
        self.assertIn("[0] output of <Input> ( empty )", before)

        nnet.propagate(np.ones((4, 3), np.float32))
        nnet.backpropagate(np.ones((4, 2), np.float32))
        fwd = nnet.info_propagate()
        self.assertIn("### Forward propagation buffer content :", fwd)
        self.assertIn("[1] output of <AffineTransform> ( min", fwd)
        self.assertIn("[2] output of <Sigmoid> ( min", fwd)
        bwd = nnet.info_backpropagate()
        self.assertIn("### Backward propagation buffer content :", bwd)
        self.assertIn("[0] diff of <Input> ( min", bwd)
        self.assertIn("[2] diff-output of <Sigmoid> ( min", bwd)

    def test_nested_networks_are_reported(self):
        inner = Nnet([_affine(2, 2)])
        nnet = Nnet([ParallelComponent.from_nnets([inner, Nnet([Sigmoid(1, 1)])])])
        nnet.propagate(np.ones((2, 3), np.float32))
        self.assertIn("nested_propagate #1", nnet.info_propagate())
        self.assertIn("nested_network #2", nnet.info())


if __name__ == "__main__":
    unittest.main()
