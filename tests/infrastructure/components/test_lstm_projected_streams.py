import io
import unittest
from unittest import TestCase

import numpy as np

from nnetcore.domain._component import ISequenceLengthAware, IStreamResettable
from nnetcore.domain._errors import MalformedStreamError
from nnetcore.domain._train_options import NnetTrainOptions
from nnetcore.infrastructure.components import (
    BLstmProjectedStreams,
    LstmProjectedStreams,
    init_component,
    read_component,
)

D, C, P = 3, 4, 2
T, S = 4, 2


def _lstm(seed: int = 0) -> LstmProjectedStreams:
    np.random.seed(seed)
    return init_component(
        f"<LstmProjectedStreams> <InputDim> {D} <OutputDim> {P} "
        f"<CellDim> {C} <ParamScale> 0.5\n"
    )


def _blstm(seed: int = 0) -> BLstmProjectedStreams:
    np.random.seed(seed)
    return init_component(
        f"<BLstmProjectedStreams> <InputDim> {D} <OutputDim> {2 * P} "
        f"<CellDim> {C} <ParamScale> 0.5\n"
    )


def _numeric_grad(f, v: np.ndarray, eps: float = 1e-2) -> np.ndarray:
    """Central differences of scalar `f` with respect to every entry of `v`."""
    g = np.zeros(v.shape, dtype=np.float64)
    flat = v.reshape(-1)
    for k in range(flat.size):
        orig = flat[k]
        flat[k] = orig + eps
        up = f()
        flat[k] = orig - eps
        down = f()
        flat[k] = orig
        g.reshape(-1)[k] = (up - down) / (2 * eps)
    return g


class TestLstmProjectedStreams(TestCase):
    def _forward(self, comp: LstmProjectedStreams, x: np.ndarray) -> np.ndarray:
        comp.reset_streams([1] * S)
        return comp.propagate(x)

    def test_shapes_and_param_count(self):
        comp = _lstm()
        self.assertIsInstance(comp, IStreamResettable)
        self.assertEqual(comp.cell_dim, C)
        self.assertEqual(comp.num_params, 4 * C * D + 4 * C * P + 4 * C + 3 * C + P * C)
        comp.reset_streams([0] * S)
        y = comp.propagate(np.zeros((T * S, D), np.float32))
        self.assertEqual(y.shape, (T * S, P))

    def test_input_gradient_matches_finite_differences(self):
        comp = _lstm()
        comp.reset_streams([1] * S)
        rng = np.random.default_rng(0)
        x = rng.standard_normal((T * S, D)).astype(np.float32)
        w = rng.standard_normal((T * S, P)).astype(np.float32)

        y = self._forward(comp, x)
        dx = comp.backpropagate(x, y, w)

        numeric = _numeric_grad(lambda: float(np.sum(self._forward(comp, x) * w)), x)
        np.testing.assert_allclose(dx, numeric, rtol=2e-2, atol=2e-3)

    def test_parameter_gradient_matches_finite_differences(self):
        comp = _lstm()
        comp.set_train_options(NnetTrainOptions(learn_rate=0.0))
        comp.reset_streams([1] * S)
        rng = np.random.default_rng(1)
        x = rng.standard_normal((T * S, D)).astype(np.float32)
        w = rng.standard_normal((T * S, P)).astype(np.float32)

        y = self._forward(comp, x)
        comp.backpropagate(x, y, w)
        comp.update(x, w)
        analytic = comp.get_gradient()

        params = comp.get_params()

        def loss() -> float:
            comp.set_params(params)
            return float(np.sum(self._forward(comp, x) * w))

        numeric = _numeric_grad(loss, params)
        np.testing.assert_allclose(analytic, numeric, rtol=2e-2, atol=2e-3)

    def test_state_is_carried_between_chunks(self):
        comp = _lstm()
        comp.reset_streams([1])
        x = np.random.default_rng(2).standard_normal((6, D)).astype(np.float32)
        whole = comp.propagate(x)

        comp.reset_streams([1])
        first = comp.propagate(x[:3])
        second = comp.propagate(x[3:])
        np.testing.assert_allclose(np.vstack([first, second]), whole, rtol=1e-5, atol=1e-6)

    def test_reset_streams_zeroes_flagged_streams(self):
        comp = _lstm()
        comp.reset_streams([0, 0])
        comp.propagate(np.ones((T * S, D), np.float32))
        self.assertTrue(np.any(comp.prev_r[1] != 0.0))

        comp.reset_streams([0, 1])
        self.assertTrue(np.any(comp.prev_r[0] != 0.0))
        np.testing.assert_array_equal(comp.prev_r[1], 0.0)
        np.testing.assert_array_equal(comp.prev_c[1], 0.0)

    def test_reset_streams_changes_stream_count(self):
        comp = _lstm()
        comp.reset_streams([0, 0, 0])
        self.assertEqual(comp.nstream, 3)
        self.assertEqual(comp.prev_r.shape, (3, P))
        with self.assertRaises(ValueError):
            comp.reset_streams([])

    def test_rows_must_divide_by_streams(self):
        comp = _lstm()
        comp.reset_streams([0, 0])
        with self.assertRaises(ValueError):
            comp.propagate(np.zeros((3, D), np.float32))

    def test_update_changes_parameters(self):
        comp = _lstm()
        comp.set_train_options(NnetTrainOptions(learn_rate=0.1))
        comp.reset_streams([1] * S)
        x = np.random.default_rng(3).standard_normal((T * S, D)).astype(np.float32)
        y = comp.propagate(x)
        before = comp.get_params()
        comp.backpropagate(x, y, np.ones_like(y))
        comp.update(x, np.ones_like(y))
        self.assertFalse(np.allclose(before, comp.get_params()))

    def test_missing_cell_dim(self):
        with self.assertRaises(MalformedStreamError):
            init_component("<LstmProjectedStreams> <InputDim> 3 <OutputDim> 2\n")

    def test_serialization_round_trip(self):
        comp = _lstm()
        comp.clip_gradient = 5.0
        x = np.random.default_rng(4).standard_normal((T, D)).astype(np.float32)
        for binary in (True, False):
            buf = io.BytesIO()
            comp.write(buf, binary)
            out = read_component(io.BytesIO(buf.getvalue()), binary)
            self.assertEqual(out.cell_dim, C)
            self.assertEqual(out.clip_gradient, 5.0)
            np.testing.assert_allclose(out.get_params(), comp.get_params(), rtol=1e-6)
            comp.reset_streams([1])
            out.reset_streams([1])
            np.testing.assert_allclose(out.propagate(x), comp.propagate(x), rtol=1e-5, atol=1e-6)

    def test_info(self):
        s = _lstm().info()
        self.assertIn(f"cell-dim {C}", s)
        self.assertIn("w_gifo_x", s)
        self.assertIn("w_gifo_x_corr", _lstm().info_gradient())


class TestBLstmProjectedStreams(TestCase):
    def _forward(self, comp: BLstmProjectedStreams, x: np.ndarray) -> np.ndarray:
        return comp.propagate(x)

    def test_output_width_must_be_even(self):
        with self.assertRaises(ValueError):
            BLstmProjectedStreams(3, 5)

    def test_shapes(self):
        comp = _blstm()
        self.assertIsInstance(comp, ISequenceLengthAware)
        self.assertEqual(comp.proj_dim, P)
        comp.set_seq_lengths([T] * S)
        y = comp.propagate(np.zeros((T * S, D), np.float32))
        self.assertEqual(y.shape, (T * S, 2 * P))

    def test_padded_frames_produce_zero_output(self):
        comp = _blstm()
        comp.set_seq_lengths([T, 2])
        x = np.random.default_rng(5).standard_normal((T * S, D)).astype(np.float32)
        y = comp.propagate(x).reshape(T, S, 2 * P)
        np.testing.assert_array_equal(y[2:, 1], 0.0)
        self.assertTrue(np.any(y[:2, 1] != 0.0))

    def test_input_gradient_matches_finite_differences(self):
        comp = _blstm()
        comp.set_seq_lengths([T, 3])
        rng = np.random.default_rng(6)
        x = rng.standard_normal((T * S, D)).astype(np.float32)
        w = rng.standard_normal((T * S, 2 * P)).astype(np.float32)

        y = comp.propagate(x)
        dx = comp.backpropagate(x, y, w)

        numeric = _numeric_grad(lambda: float(np.sum(comp.propagate(x) * w)), x)
        np.testing.assert_allclose(dx, numeric, rtol=2e-2, atol=2e-3)

    def test_invalid_sequence_lengths(self):
        comp = _blstm()
        with self.assertRaises(ValueError):
            comp.set_seq_lengths([])
        with self.assertRaises(ValueError):
            comp.set_seq_lengths([2, -1])

    def test_serialization_round_trip(self):
        comp = _blstm()
        buf = io.BytesIO()
        comp.write(buf, True)
        out = read_component(io.BytesIO(buf.getvalue()), True)
        np.testing.assert_array_equal(out.get_params(), comp.get_params())
        self.assertIn("f_w_gifo_x", out.info())
        self.assertIn("b_w_gifo_x", out.info())


if __name__ == "__main__":
    unittest.main()
