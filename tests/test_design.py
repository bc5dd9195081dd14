"""Tests for design-matrix construction and re-encoding."""

import numpy as np
import pandas as pd
import pytest

from claim_glm import PoissonGLMFitter
from claim_glm.design import INTERCEPT_NAME, build_design, log_exposure
from claim_glm.exceptions import InvalidInputError


@pytest.fixture()
def frame():
    return pd.DataFrame(
        {
            "area": ["B", "A", "C", "A", "B", "C"],
            "fuel": ["petrol", "diesel", "petrol", "petrol", "diesel", "petrol"],
            "power": [4.0, 5.0, 6.0, 7.0, 4.0, 9.0],
        }
    )


class TestBuildDesign:
    def test_intercept_first(self, frame):
        design = build_design(frame)
        assert design.column_names[0] == INTERCEPT_NAME
        np.testing.assert_array_equal(design.matrix[:, 0], np.ones(6))
        assert design.intercept is True

    def test_treatment_coding_drops_sorted_first_level(self, frame):
        design = build_design(frame, columns=["area"])
        assert design.column_names == (INTERCEPT_NAME, "area[B]", "area[C]")
        np.testing.assert_array_equal(design.matrix[:, 1], [1, 0, 0, 0, 1, 0])
        np.testing.assert_array_equal(design.matrix[:, 2], [0, 0, 1, 0, 0, 1])
        assert design.reference_levels == {"area": "A"}

    def test_caller_chosen_reference(self, frame):
        design = build_design(frame, columns=["area"], reference={"area": "C"})
        assert design.column_names == (INTERCEPT_NAME, "area[A]", "area[B]")

    def test_unknown_reference(self, frame):
        with pytest.raises(InvalidInputError, match="Reference level"):
            build_design(frame, columns=["area"], reference={"area": "Z"})

    def test_categorical_dtype_order(self, frame):
        frame["area"] = pd.Categorical(frame["area"], categories=["C", "B", "A"])
        design = build_design(frame, columns=["area"])
        assert design.column_names == (INTERCEPT_NAME, "area[B]", "area[A]")

    def test_numeric_passthrough(self, frame):
        design = build_design(frame, columns=["power"])
        np.testing.assert_array_equal(design.matrix[:, 1], frame["power"].to_numpy())

    def test_forced_categorical(self, frame):
        design = build_design(frame, columns=["power"], categorical=["power"])
        assert design.column_names[1:] == ("power[5.0]", "power[6.0]", "power[7.0]", "power[9.0]")

    def test_no_intercept(self, frame):
        design = build_design(frame, columns=["power"], intercept=False)
        assert design.column_names == ("power",)
        assert design.intercept is False

    def test_interaction_columns(self, frame):
        design = build_design(frame, columns=["area", "power"], interactions=["area:power"])
        assert design.column_names[-2:] == ("area[B]:power", "area[C]:power")
        np.testing.assert_array_equal(
            design.matrix[:, -2], design.matrix[:, 1] * frame["power"].to_numpy()
        )

    def test_interaction_of_two_factors(self, frame):
        design = build_design(frame, columns=["area", "fuel"], interactions=[("area", "fuel")])
        assert design.column_names[-2:] == ("area[B]:fuel[petrol]", "area[C]:fuel[petrol]")

    def test_interactions_are_not_pruned(self, frame):
        # area C only occurs with petrol, so area[C]:fuel[petrol] equals
        # area[C]; it is still built.
        design = build_design(frame, columns=["area", "fuel"], interactions=["area:fuel"])
        c = design.column_names.index("area[C]")
        cp = design.column_names.index("area[C]:fuel[petrol]")
        np.testing.assert_array_equal(design.matrix[:, c], design.matrix[:, cp])

    def test_bad_interaction_definition(self, frame):
        with pytest.raises(InvalidInputError, match="exactly two"):
            build_design(frame, interactions=["area:fuel:power"])

    def test_unknown_column(self, frame):
        with pytest.raises(InvalidInputError, match="not found"):
            build_design(frame, columns=["area", "age"])

    def test_missing_categorical_value(self, frame):
        frame.loc[2, "area"] = None
        with pytest.raises(InvalidInputError, match="missing"):
            build_design(frame, columns=["area"])

    def test_non_finite_numeric(self, frame):
        frame.loc[0, "power"] = np.nan
        with pytest.raises(InvalidInputError, match="NaN"):
            build_design(frame, columns=["power"])

    def test_matrix_is_read_only(self, frame):
        design = build_design(frame)
        with pytest.raises(ValueError):
            design.matrix[0, 0] = 2.0

    def test_rejects_non_frame(self):
        with pytest.raises(TypeError, match="DataFrame"):
            build_design({"area": ["A"]})

    def test_to_frame(self, frame):
        design = build_design(frame, columns=["area", "power"])
        df = design.to_frame()
        assert list(df.columns) == list(design.column_names)
        assert df.shape == design.shape


class TestTransform:
    def test_reproduces_training_encoding(self, frame):
        design = build_design(frame, columns=["area", "power"], interactions=["area:power"])
        again = design.transform(frame)
        np.testing.assert_array_equal(again.matrix, design.matrix)
        assert again.column_names == design.column_names

    def test_holdout_with_subset_of_levels(self, frame):
        design = build_design(frame, columns=["area", "fuel"])
        holdout = pd.DataFrame({"area": ["C", "C"], "fuel": ["diesel", "petrol"]})
        new = design.transform(holdout)
        assert new.shape == (2, len(design.column_names))
        np.testing.assert_array_equal(new.matrix[:, design.column_names.index("area[C]")], [1, 1])

    def test_unseen_level(self, frame):
        design = build_design(frame, columns=["area"])
        with pytest.raises(InvalidInputError, match="not seen"):
            design.transform(pd.DataFrame({"area": ["A", "D"]}))

    def test_missing_column(self, frame):
        design = build_design(frame, columns=["area", "power"])
        with pytest.raises(InvalidInputError, match="missing predictor"):
            design.transform(frame[["area"]])


class TestLogExposure:
    def test_values(self):
        np.testing.assert_allclose(log_exposure([1.0, np.e, 0.5]), [0.0, 1.0, np.log(0.5)])

    def test_series(self):
        np.testing.assert_allclose(log_exposure(pd.Series([1.0, 2.0])), np.log([1.0, 2.0]))

    @pytest.mark.parametrize("bad", [[1.0, 0.0], [1.0, -2.0], [np.nan]])
    def test_rejects_non_positive(self, bad):
        with pytest.raises(InvalidInputError, match="strictly positive"):
            log_exposure(bad)


class TestDesignWithFitter:
    def test_unobserved_interaction_cells_aliased(self, claims_data):
        data = claims_data.copy()
        # Diesel vehicles only in area A: the area B/C diesel cells are empty.
        data["fuel"] = np.where(
            (data["area"] == "A") & (np.arange(len(data)) % 2 == 0), "diesel", "petrol"
        )
        design = build_design(data, columns=["area", "fuel"], interactions=["area:fuel"])
        model = PoissonGLMFitter().fit(
            design, data["claims"], offset=log_exposure(data["exposure"])
        )
        assert set(model.aliased_names) == {"area[B]:fuel[petrol]", "area[C]:fuel[petrol]"}
