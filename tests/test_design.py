import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from contrastflux.design.contrast import ContrastDefinition, apply_contrast
from contrastflux.design.contrastbuilder import ContrastRegistry
from contrastflux.design.designmatrixbuilder import DesignMatrixBuilder
from contrastflux.utils.exceptions import ConfigurationError, IntegrityError


@pytest.fixture
def four_group_obs():
    groups = ["A", "A", "B", "B", "C", "C", "D", "D"]
    return pd.DataFrame({"GROUP": groups, "BATCH": ["x", "y"] * 4},
                        index=[f"S{i}" for i in range(len(groups))])


class TestDesignMatrixBuilder:
    def test_one_column_per_level(self, four_group_obs):
        builder = DesignMatrixBuilder(four_group_obs, "GROUP")
        X, info = builder.build()
        assert X.shape == (8, 4)
        assert builder.levels == ["A", "B", "C", "D"]
        assert list(info.column_names) == ["A", "B", "C", "D"]
        assert_array_equal(X.sum(axis=1), np.ones(8))
        assert_array_equal(X[:, 0], [1, 1, 0, 0, 0, 0, 0, 0])

    def test_only_levels_of_the_subset(self, four_group_obs):
        sub = four_group_obs[four_group_obs["GROUP"].isin(["B", "D"])]
        builder = DesignMatrixBuilder(sub, "GROUP")
        X, _ = builder.build()
        assert builder.levels == ["B", "D"]
        assert builder.describe() == "~ 0 + GROUP (B, D)"

    def test_no_residual_df(self):
        obs = pd.DataFrame({"GROUP": ["A", "B"]}, index=["S1", "S2"])
        with pytest.raises(IntegrityError, match="residual df"):
            DesignMatrixBuilder(obs, "GROUP", contrast_name="c1").build()

    def test_missing_factor(self, four_group_obs):
        with pytest.raises(ConfigurationError, match="design factor"):
            DesignMatrixBuilder(four_group_obs, "TREATMENT").build()


class TestContrastVector:
    def _info(self, obs):
        return DesignMatrixBuilder(obs, "GROUP").build()[1]

    def test_simple_difference(self, four_group_obs):
        c = ContrastDefinition(name="BvsA", formula="B - A").contrast_vector(self._info(four_group_obs))
        assert_allclose(c, [-1, 1, 0, 0])

    def test_interaction_is_single_vector(self, four_group_obs):
        c = ContrastDefinition(name="int", formula="(A - B) - (C - D)").contrast_vector(self._info(four_group_obs))
        assert_allclose(c, [1, -1, -1, 1])

    def test_interaction_equals_sequential_differences(self, four_group_obs):
        info = self._info(four_group_obs)
        rng = np.random.default_rng(3)
        coefs = rng.normal(size=(25, 4))
        fit = {"coefficients": coefs, "xtx_inv": np.eye(4) / 2}

        c = ContrastDefinition(name="int", formula="(A - B) - (C - D)").contrast_vector(info)
        effect, stdev = apply_contrast(fit, c)
        sequential = (coefs[:, 0] - coefs[:, 1]) - (coefs[:, 2] - coefs[:, 3])
        assert_allclose(effect, sequential, atol=1e-12)
        assert_allclose(stdev, np.sqrt(4 / 2))

    def test_coefficient_mapping(self, four_group_obs):
        d = ContrastDefinition(name="m", coefficients={"C": 1, "A": -1})
        assert_allclose(d.contrast_vector(self._info(four_group_obs)), [-1, 0, 1, 0])
        assert d.formula_string() == "C - A"

    def test_positional_length_mismatch(self, four_group_obs):
        d = ContrastDefinition(name="bad", coefficients=[1, -1])
        with pytest.raises(ConfigurationError, match="coefficient vector length"):
            d.contrast_vector(self._info(four_group_obs))

    def test_unknown_level(self, four_group_obs):
        d = ContrastDefinition(name="bad", formula="E - A")
        with pytest.raises(ConfigurationError, match=r"\[bad\]"):
            d.contrast_vector(self._info(four_group_obs))

    def test_formula_xor_coefficients(self):
        with pytest.raises(ConfigurationError):
            ContrastDefinition(name="x", formula="A - B", coefficients={"A": 1})
        with pytest.raises(ConfigurationError):
            ContrastDefinition(name="x")


class TestSampleSelection:
    def test_mapping_predicate(self, four_group_obs):
        d = ContrastDefinition(name="x", formula="B - A", subset={"GROUP": ["A", "B"], "BATCH": "x"})
        assert d.select_samples(four_group_obs).sum() == 2

    def test_callable_predicate(self, four_group_obs):
        d = ContrastDefinition(name="x", formula="B - A", subset=lambda obs: obs["GROUP"] != "D")
        assert d.select_samples(four_group_obs).sum() == 6

    def test_unknown_column(self, four_group_obs):
        d = ContrastDefinition(name="x", formula="B - A", subset={"DOSE": 1})
        with pytest.raises(ConfigurationError, match="sample predicate"):
            d.select_samples(four_group_obs)


class TestContrastRegistry:
    def test_from_config_and_validate(self, four_group_obs):
        reg = ContrastRegistry.from_config([
            {"name": "BvsA", "formula": "B - A"},
            {"name": "int", "formula": "(A - B) - (C - D)"},
        ])
        assert reg.names == ["BvsA", "int"]
        reg.validate(four_group_obs)

    def test_duplicate_name(self):
        reg = ContrastRegistry([ContrastDefinition(name="c", formula="B - A")])
        with pytest.raises(ConfigurationError, match="duplicate"):
            reg.add(ContrastDefinition(name="c", formula="C - A"))

    def test_predicate_matching_nothing(self, four_group_obs):
        reg = ContrastRegistry([ContrastDefinition(name="empty", formula="B - A", subset={"GROUP": "Z"})])
        with pytest.raises(ConfigurationError) as err:
            reg.validate(four_group_obs)
        assert err.value.contrast == "empty"
        assert err.value.rule == "sample predicate"

    def test_empty_config(self):
        with pytest.raises(ConfigurationError):
            ContrastRegistry.from_config([])
