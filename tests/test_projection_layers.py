"""Tests for the MOVESLite modeling and projection layers.

Tests cover:
- Transformation detection from model formulas
- Scenario building (interpolation, benchmarks, context rows)
- Back-transform simulation
- Model fitting and prediction
- Formula diagnostics and best-formula search
- End-to-end projection
- Key invariants (benchmarks reproduce baseline, lower <= emissions <= upper)
"""

import warnings

import numpy as np
import pandas as pd
import pytest

warnings.filterwarnings("ignore")

_NOISE = np.array([1.01, 0.99, 1.02, 0.98, 1.005, 0.995, 1.015, 0.985, 1.0, 1.01, 0.99, 1.02])


def _baseline(start=2015, end=2020, geoid="36109"):
    """Yearly activity with linear VMT growth and emissions ~ VMT^0.9."""
    years = np.arange(start, end + 1)
    n = len(years)
    vmt = 1.0e9 + 5.0e7 * (years - start)
    vehicles = 4.0e5 + 1.0e4 * (years - start) ** 1.5
    starts = 2.0e6 + 3.0e4 * np.sqrt(years - start)
    sourcehours = vmt / 30.0
    emissions = 2.0e-3 * vmt ** 0.9 * _NOISE[:n]
    return pd.DataFrame({
        "geoid": geoid,
        "year": years,
        "emissions": emissions,
        "vmt": vmt,
        "vehicles": vehicles,
        "starts": starts,
        "sourcehours": sourcehours,
    })


# ── Transformation detection ──────────────────────────────────────────────────

class TestTransformationDetector:
    """Outcome transforms are read from the formula's left-hand side."""

    @pytest.mark.parametrize("formula, kind, inverse", [
        ("log(emissions) ~ vmt + year", "log", "exp(y)"),
        ("log10(emissions) ~ vmt", "log10", "10^y"),
        ("sqrt(emissions) ~ vmt", "sqrt", "y^2"),
        ("emissions ~ vmt", "identity", "y"),
    ])
    def test_known_transforms(self, formula, kind, inverse):
        from moveslite.transform import detect
        desc = detect(formula)
        assert desc.kind.value == kind
        assert desc.inverse_expr == inverse

    def test_log10_not_read_as_log(self):
        from moveslite.transform import Transformation, detect
        assert detect("log10(emissions) ~ vmt").kind is Transformation.LOG10

    def test_numpy_prefix(self):
        from moveslite.transform import Transformation, detect
        assert detect("np.log(emissions) ~ vmt").kind is Transformation.LOG

    def test_unknown_wrapper_is_identity(self):
        from moveslite.transform import detect
        desc = detect("boxcox(emissions) ~ vmt")
        assert desc.is_identity
        assert desc.inverse_expr == "y"

    def test_from_fitted_model(self):
        from moveslite.model import fit
        from moveslite.transform import detect
        model = fit("log(emissions) ~ log(vmt)", _baseline())
        assert detect(model).kind.value == "log"

    def test_inverse_functions(self):
        from moveslite.transform import Transformation
        assert Transformation.LOG.inverse(0.0) == pytest.approx(1.0)
        assert Transformation.LOG10.inverse(2.0) == pytest.approx(100.0)
        assert Transformation.SQRT.inverse(3.0) == pytest.approx(9.0)
        assert Transformation.IDENTITY.inverse(7.5) == pytest.approx(7.5)


# ── Scenario builder ──────────────────────────────────────────────────────────

class TestScenarioBuilder:
    """Custom, benchmark and context rows."""

    def test_benchmarks_reproduce_baseline(self):
        from moveslite.scenarios import build_scenario
        base = _baseline()
        table = build_scenario(base, {"year": 2023})
        bench = table[table["type"] == "benchmark"].reset_index(drop=True)
        assert bench["year"].tolist() == base["year"].tolist()
        for col in ["emissions", "vmt", "vehicles", "starts", "sourcehours"]:
            np.testing.assert_array_equal(bench[col].to_numpy(), base[col].to_numpy())

    def test_excluded_columns_dropped(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": 2023}, exclude=["geoid", "emissions"])
        assert "geoid" not in table.columns
        assert "emissions" not in table.columns
        assert list(table.columns[:2]) == ["year", "type"]

    def test_interpolation_within_bracket(self):
        from moveslite.scenarios import build_scenario
        base = _baseline()
        table = build_scenario(base, {"year": [2016.5, 2018.25]}, include_context=False)
        custom = table[table["type"] == "custom"]
        for _, row in custom.iterrows():
            lo = base[base["year"] <= row["year"]].iloc[-1]
            hi = base[base["year"] >= row["year"]].iloc[0]
            for col in ["vmt", "vehicles", "starts"]:
                assert min(lo[col], hi[col]) <= row[col] <= max(lo[col], hi[col])

    def test_linear_interpolation_midpoint(self):
        from moveslite.scenarios import build_scenario
        base = _baseline()
        table = build_scenario(base, {"year": 2017.5})
        row = table[table["type"] == "custom"].iloc[0]
        expected = (base.loc[base["year"] == 2017, "vmt"].iloc[0]
                    + base.loc[base["year"] == 2018, "vmt"].iloc[0]) / 2
        assert row["vmt"] == pytest.approx(expected)

    def test_flat_extrapolation(self):
        from moveslite.scenarios import build_scenario
        base = _baseline()
        table = build_scenario(base, {"year": [2010, 2030]})
        custom = table[table["type"] == "custom"].set_index("year")
        first, last = base.iloc[0], base.iloc[-1]
        for col in ["vmt", "vehicles", "starts", "sourcehours"]:
            assert custom.loc[2010, col] == pytest.approx(first[col])
            assert custom.loc[2030, col] == pytest.approx(last[col])

    def test_supplied_values_kept(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2023, 2024], "vmt": [2.0e9, 2.1e9]})
        custom = table[table["type"] == "custom"]
        assert custom["vmt"].tolist() == [2.0e9, 2.1e9]
        # Unsupplied predictors still filled
        assert custom["vehicles"].notna().all()

    def test_scalar_broadcast(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2021, 2022, 2023], "vmt": 3.0e9})
        custom = table[table["type"] == "custom"]
        assert custom["vmt"].tolist() == [3.0e9] * 3

    def test_custom_rows_sorted_and_distinct(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2024, 2022, 2024]})
        assert table[table["type"] == "custom"]["year"].tolist() == [2022, 2024]

    def test_row_order(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2017, 2018]})
        assert table["type"].tolist() == (
            ["custom"] * 2 + ["benchmark"] * 6 + ["pre_benchmark", "post_benchmark"]
        )

    def test_row_tags_are_known(self):
        from moveslite.scenarios import ROW_TYPES, build_scenario
        table = build_scenario(_baseline(), {"year": [2017, 2018]})
        assert set(table["type"]) == set(ROW_TYPES)

    def test_missing_baseline_value_bridged(self):
        from moveslite.scenarios import build_scenario
        base = _baseline()
        base.loc[base["year"] == 2017, "vmt"] = np.nan
        table = build_scenario(base, {"year": [2016.5, 2017.5]}, include_context=False)
        custom = table[table["type"] == "custom"]
        # vmt is linear in year, so bridging 2016..2018 recovers it exactly
        np.testing.assert_allclose(custom["vmt"], [1.075e9, 1.125e9])
        bench = table[table["type"] == "benchmark"].set_index("year")
        assert np.isnan(bench.loc[2017, "vmt"])

    def test_context_rows_inside_range(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2017, 2018]})
        pre = table[table["type"] == "pre_benchmark"]
        post = table[table["type"] == "post_benchmark"]
        assert pre["year"].tolist() == [2016]
        assert post["year"].tolist() == [2019]

    def test_no_context_beyond_range(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": 2023})
        assert set(table["type"]) == {"custom", "benchmark"}

    def test_no_context_before_range(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": 2010})
        assert set(table["type"]) == {"custom", "benchmark"}

    def test_context_disabled(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2017, 2018]}, include_context=False)
        assert set(table["type"]) == {"custom", "benchmark"}

    def test_context_span_past_end(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), {"year": [2018, 2025]})
        assert table[table["type"] == "pre_benchmark"]["year"].tolist() == [2017]
        assert table[table["type"] == "post_benchmark"].empty

    def test_dataframe_input(self):
        from moveslite.scenarios import build_scenario
        table = build_scenario(_baseline(), pd.DataFrame({"year": [2021], "vmt": [2.5e9]}))
        assert table.iloc[0]["vmt"] == 2.5e9

    def test_duplicate_baseline_years_averaged(self):
        from moveslite.scenarios import build_scenario
        base = pd.concat([_baseline(), _baseline()], ignore_index=True)
        table = build_scenario(base, {"year": 2023})
        assert (table["type"] == "benchmark").sum() == 6

    def test_missing_stratify_variable(self):
        from moveslite.errors import ConfigurationError
        from moveslite.scenarios import build_scenario
        with pytest.raises(ConfigurationError, match="year"):
            build_scenario(_baseline(), {"vmt": 2.0e9})

    def test_single_year_baseline(self):
        from moveslite.errors import DataError
        from moveslite.scenarios import build_scenario
        with pytest.raises(DataError, match="two distinct"):
            build_scenario(_baseline(2020, 2020), {"year": 2023})

    def test_unknown_scenario_predictor(self):
        from moveslite.errors import DataError
        from moveslite.scenarios import build_scenario
        with pytest.raises(DataError, match="population"):
            build_scenario(_baseline(), {"year": 2023, "population": 1.0})

    def test_mismatched_lengths(self):
        from moveslite.errors import ConfigurationError
        from moveslite.scenarios import build_scenario
        with pytest.raises(ConfigurationError):
            build_scenario(_baseline(), {"year": [2021, 2022, 2023], "vmt": [1.0, 2.0]})


# ── Back-transform simulation ─────────────────────────────────────────────────

class TestBackTransform:
    """Simulated back-transformation of transformed-scale predictions."""

    def test_identity_recovers_estimate(self):
        from moveslite.simulation import backtransform
        out = backtransform(100.0, 5.0, "y", 30, draws=10000, seed=1)
        assert out["emissions"] == pytest.approx(100.0, rel=0.01)
        assert out["lower"] < out["emissions"] < out["upper"]

    def test_log_mean_exceeds_exp_of_mean(self):
        from moveslite.simulation import backtransform
        out = backtransform(10.0, 0.1, "exp(y)", 30, draws=100000, seed=1)
        assert out["emissions"] > np.exp(10.0)

    def test_keys(self):
        from moveslite.simulation import backtransform
        out = backtransform(1.0, 0.1, "exp(y)", 10, seed=0)
        assert set(out) == {"emissions", "se", "lower", "upper"}

    def test_seeded_is_reproducible(self):
        from moveslite.simulation import backtransform
        a = backtransform(2.0, 0.3, "10^y", 12, seed=7)
        b = backtransform(2.0, 0.3, "10^y", 12, seed=7)
        assert a == b

    def test_interval_narrows_with_confidence(self):
        from moveslite.simulation import backtransform
        wide = backtransform(5.0, 0.2, "y^2", 20, confidence_level=0.99, draws=5000, seed=3)
        narrow = backtransform(5.0, 0.2, "y^2", 20, confidence_level=0.50, draws=5000, seed=3)
        assert (narrow["upper"] - narrow["lower"]) < (wide["upper"] - wide["lower"])

    def test_accepts_transformation(self):
        from moveslite.simulation import backtransform
        from moveslite.transform import Transformation, detect
        a = backtransform(1.0, 0.1, Transformation.LOG, 10, seed=5)
        b = backtransform(1.0, 0.1, detect("log(emissions) ~ vmt"), 10, seed=5)
        assert a == b

    def test_zero_standard_error(self):
        from moveslite.simulation import backtransform
        out = backtransform(2.0, 0.0, "exp(y)", 10, seed=1)
        assert out["emissions"] == pytest.approx(np.exp(2.0))
        assert out["se"] == pytest.approx(0.0)

    def test_unknown_inverse(self):
        from moveslite.errors import ConfigurationError
        from moveslite.simulation import backtransform
        with pytest.raises(ConfigurationError, match="backtransform"):
            backtransform(1.0, 0.1, "cosh(y)", 10)

    def test_bad_confidence_level(self):
        from moveslite.errors import ConfigurationError
        from moveslite.simulation import backtransform
        with pytest.raises(ConfigurationError):
            backtransform(1.0, 0.1, "y", 10, confidence_level=1.5)


# ── Model fitting ─────────────────────────────────────────────────────────────

class TestModel:
    """OLS fitting and prediction."""

    def test_fit_log_model(self):
        from moveslite.model import fit
        model = fit("log(emissions) ~ log(vmt)", _baseline())
        assert model.outcome == "log(emissions)"
        assert model.outcome_vars == ("emissions",)
        assert model.predictors == ("vmt",)
        assert model.df_resid == 4
        # emissions ~ vmt^0.9
        assert model.params.iloc[1] == pytest.approx(0.9, abs=0.2)

    def test_fit_poly(self):
        from moveslite.model import fit
        model = fit("log(emissions) ~ poly(log(vmt), 2)", _baseline(2009, 2020))
        assert len(model.params) == 3

    def test_make_formula(self):
        from moveslite.model import make_formula
        assert make_formula(["vmt", "starts"]) == "log(emissions) ~ vmt + starts + year"
        assert make_formula(["vmt"], transform="identity", include_year=False) == "emissions ~ vmt"
        assert make_formula(["vmt"], degree=2, log_predictors=True) == (
            "log(emissions) ~ poly(log(vmt), 2) + year"
        )

    def test_make_formula_unknown_transform(self):
        from moveslite.errors import ConfigurationError
        from moveslite.model import make_formula
        with pytest.raises(ConfigurationError) as info:
            make_formula(["vmt"], transform="boxcox")
        assert info.value.stage == "fit"
        assert info.value.value == "boxcox"

    def test_estimate_unknown_transform(self):
        import moveslite
        from moveslite.errors import ConfigurationError
        with pytest.raises(ConfigurationError, match="boxcox"):
            moveslite.estimate(_baseline(), vars=["vmt"], transform="boxcox")

    def test_make_formula_needs_predictor(self):
        from moveslite.errors import ConfigurationError
        from moveslite.model import make_formula
        with pytest.raises(ConfigurationError):
            make_formula([], include_year=False)

    def test_singular_design(self):
        from moveslite.errors import ModelFitError
        from moveslite.model import fit
        base = _baseline()
        base["vmt2"] = base["vmt"] * 2
        with pytest.raises(ModelFitError, match="Singular"):
            fit("emissions ~ vmt + vmt2", base)

    def test_unknown_column(self):
        from moveslite.errors import ModelFitError
        from moveslite.model import fit
        with pytest.raises(ModelFitError, match=r"\[fit\]"):
            fit("emissions ~ population", _baseline())

    def test_malformed_formula(self):
        from moveslite.errors import ModelFitError
        from moveslite.model import fit
        with pytest.raises(ModelFitError):
            fit("emissions vmt", _baseline())

    def test_no_residual_df(self):
        from moveslite.errors import ModelFitError
        from moveslite.model import fit
        with pytest.raises(ModelFitError):
            fit("emissions ~ vmt", _baseline(2019, 2020))

    def test_predict(self):
        from moveslite.model import fit, predict
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        pred = predict(model, base)
        assert len(pred.estimate) == len(base)
        assert np.all(pred.se > 0)
        np.testing.assert_allclose(np.exp(pred.estimate), base["emissions"], rtol=0.05)

    def test_predict_missing_column(self):
        from moveslite.errors import DataError
        from moveslite.model import fit, predict
        model = fit("log(emissions) ~ log(vmt)", _baseline())
        with pytest.raises(DataError, match="vmt"):
            predict(model, pd.DataFrame({"year": [2021]}))

    def test_predict_missing_value(self):
        from moveslite.errors import DataError
        from moveslite.model import fit, predict
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        newdata = base.copy()
        newdata.loc[2, "vmt"] = np.nan
        with pytest.raises(DataError) as info:
            predict(model, newdata)
        assert info.value.stage == "predict"
        assert info.value.value == "vmt"

    def test_predict_undefined_rows(self):
        from moveslite.errors import DataError
        from moveslite.model import fit, predict
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        newdata = base.copy()
        newdata.loc[2, "vmt"] = -1.0
        with pytest.raises(DataError, match="undefined"):
            predict(model, newdata)


# ── Diagnostics ───────────────────────────────────────────────────────────────

class TestDiagnostics:
    """Formula sweeps keep the formulas that fit."""

    def test_diagnose_drops_failures(self):
        from moveslite.diagnostics import diagnose
        table = diagnose(_baseline(), [
            "log(emissions) ~ log(vmt)",
            "emissions ~ vmt",
            "emissions ~ population",
        ])
        assert len(table) == 2
        assert table["ok"].all()
        assert table["adj_r_squared"].is_monotonic_decreasing

    def test_diagnose_keep_failures(self):
        from moveslite.diagnostics import diagnose
        table = diagnose(_baseline(), ["emissions ~ vmt", "emissions ~ population"], keep_failures=True)
        assert len(table) == 2
        failed = table[~table["ok"]]
        assert failed["formula"].tolist() == ["emissions ~ population"]
        assert "fit" in failed["error"].iloc[0]

    def test_candidate_formulas(self):
        from moveslite.diagnostics import candidate_formulas
        formulas = candidate_formulas(["vmt"], max_degree=2)
        assert formulas == [
            "log(emissions) ~ log(vmt) + year",
            "log(emissions) ~ poly(log(vmt), 2) + year",
            "emissions ~ log(vmt) + year",
            "emissions ~ poly(log(vmt), 2) + year",
        ]

    def test_estimate_best(self):
        import moveslite
        from moveslite.diagnostics import candidate_formulas
        base = _baseline(2009, 2020)
        model = moveslite.estimate(base, vars=["vehicles"], best=True, max_degree=2)
        assert model.formula in candidate_formulas(["vehicles"], max_degree=2)

    def test_estimate_best_none_fit(self):
        import moveslite
        from moveslite.errors import ModelFitError
        with pytest.raises(ModelFitError):
            moveslite.estimate(_baseline(2018, 2020), best=True)

    def test_estimate_default_formula(self):
        import moveslite
        model = moveslite.estimate(_baseline(2009, 2020), vars=["vehicles"])
        assert model.formula == "log(emissions) ~ vehicles + year"


# ── Projection ────────────────────────────────────────────────────────────────

class TestProjection:
    """End-to-end projection."""

    def test_end_to_end(self):
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        out = project(model, base, {"year": 2023}, include_context=True, seed=42)

        assert list(out.columns[:6]) == ["year", "type", "emissions", "se", "lower", "upper"]
        assert (out["type"] == "custom").sum() == 1
        assert out.loc[out["type"] == "custom", "year"].tolist() == [2023]
        assert out.loc[out["type"] == "benchmark", "year"].tolist() == list(range(2015, 2021))
        assert not out["type"].isin(["pre_benchmark", "post_benchmark"]).any()
        assert (out["lower"] <= out["emissions"]).all()
        assert (out["emissions"] <= out["upper"]).all()

    def test_custom_uses_flat_extrapolated_vmt(self):
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        out = project(model, base, {"year": 2023}, seed=1)
        custom = out[out["type"] == "custom"].iloc[0]
        last = out[(out["type"] == "benchmark") & (out["year"] == 2020)].iloc[0]
        assert custom["vmt"] == pytest.approx(base["vmt"].iloc[-1])
        assert custom["emissions"] == pytest.approx(last["emissions"], rel=0.01)

    def test_outcome_not_in_output(self):
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        out = project(model, base, {"year": 2023}, seed=1)
        # "emissions" is the projected estimate, not the baseline observation
        assert list(out.columns).count("emissions") == 1
        assert "geoid" not in out.columns

    def test_idempotent_with_seed(self):
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        a = project(model, base, {"year": [2017, 2023]}, seed=11)
        b = project(model, base, {"year": [2017, 2023]}, seed=11)
        pd.testing.assert_frame_equal(a, b)

    def test_identity_uses_t_interval(self):
        from scipy import stats
        from moveslite.model import fit, predict
        from moveslite.projection import project
        base = _baseline()
        model = fit("emissions ~ vmt", base)
        out = project(model, base, {"year": 2023}, confidence_level=0.9)
        pred = predict(model, out)
        q = stats.t.ppf(0.95, model.df_resid)
        np.testing.assert_allclose(out["emissions"], pred.estimate)
        np.testing.assert_allclose(out["upper"] - out["emissions"], q * pred.se)
        np.testing.assert_allclose(out["emissions"] - out["lower"], q * pred.se)

    def test_higher_vmt_more_emissions(self):
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        out = project(model, base, {"year": [2023, 2024], "vmt": [1.5e9, 3.0e9]}, seed=3)
        custom = out[out["type"] == "custom"].set_index("year")
        assert custom.loc[2024, "emissions"] > custom.loc[2023, "emissions"]

    def test_missing_predictor_surfaces(self):
        from moveslite.errors import DataError
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        with pytest.raises(DataError, match="predict"):
            project(model, base.drop(columns=["vmt"]), {"year": 2023})

    def test_missing_baseline_value_raises(self):
        from moveslite.errors import DataError
        from moveslite.model import fit
        from moveslite.projection import project
        base = _baseline()
        model = fit("log(emissions) ~ log(vmt)", base)
        gappy = base.copy()
        gappy.loc[2, "vmt"] = np.nan
        with pytest.raises(DataError) as info:
            project(model, gappy, {"year": 2023}, seed=1)
        assert info.value.stage == "predict"
        assert info.value.value == "vmt"

    def test_rows_stay_aligned_with_years(self):
        from moveslite.model import fit, predict
        from moveslite.projection import project
        base = _baseline()
        model = fit("emissions ~ vmt", base)
        out = project(model, base, {"year": 2023})
        bench = out[out["type"] == "benchmark"].reset_index(drop=True)
        np.testing.assert_allclose(bench["emissions"], predict(model, base).estimate)

    def test_api_project_options(self):
        import moveslite
        base = _baseline()
        model = moveslite.estimate(base, formula="log(emissions) ~ log(vmt)")
        out = moveslite.project(model, base, {"year": [2017, 2018]}, context=False, ci=0.8, seed=2)
        assert set(out["type"]) == {"custom", "benchmark"}
