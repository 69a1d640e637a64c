import unittest
from unittest import TestCase

import numpy as np

from nnetcore.infrastructure.utils._moment_statistics import moment_statistics


class TestMomentStatistics(TestCase):
    def test_empty(self):
        self.assertEqual(moment_statistics(np.zeros((0, 0))), " ( empty ) ")

    def test_constant_array(self):
        s = moment_statistics(np.full((2, 3), 2.0, dtype=np.float32))
        self.assertIn("min 2,", s)
        self.assertIn("max 2,", s)
        self.assertIn("mean 2,", s)
        self.assertIn("stddev 0,", s)
        self.assertIn("skewness 0,", s)
        self.assertIn("kurtosis 0 )", s)

    def test_symmetric_values(self):
        s = moment_statistics(np.array([-1.0, 1.0]))
        self.assertIn("mean 0,", s)
        self.assertIn("stddev 1,", s)
        self.assertIn("skewness 0,", s)
        # two-point distribution: kurtosis 1, excess -2
        self.assertIn("kurtosis -2 )", s)

    def test_padding(self):
        s = moment_statistics(np.arange(4.0))
        self.assertTrue(s.startswith(" ( "))
        self.assertTrue(s.endswith(" ) "))


if __name__ == "__main__":
    unittest.main()
