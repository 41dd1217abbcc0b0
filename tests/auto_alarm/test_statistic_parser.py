import pytest

from auto_alarm.engine.statistics.parser import is_extended_statistic, parse_statistic

DEFAULT = "Average"


def test_standard_statistics_are_canonicalized() -> None:
    assert parse_statistic("maximum", DEFAULT) == "Maximum"
    assert parse_statistic("SAMPLECOUNT", DEFAULT) == "SampleCount"
    assert parse_statistic(" sum ", DEFAULT) == "Sum"
    assert parse_statistic("iqm", DEFAULT) == "IQM"


def test_single_value_tokens_are_lower_cased() -> None:
    assert parse_statistic("P90", DEFAULT) == "p90"
    assert parse_statistic("tm99", DEFAULT) == "tm99"
    assert parse_statistic("WM1", DEFAULT) == "wm1"


def test_range_tokens_upper_case_prefix_and_keep_interior() -> None:
    assert parse_statistic("tm(10%:90%)", DEFAULT) == "TM(10%:90%)"
    assert parse_statistic("pr(:300)", DEFAULT) == "PR(:300)"
    assert parse_statistic("Wm(5.5%:)", DEFAULT) == "WM(5.5%:)"
    assert parse_statistic("TC(0.25:12)", DEFAULT) == "TC(0.25:12)"


def test_zero_percent_bound_is_accepted() -> None:
    assert parse_statistic("TM(0%:90%)", DEFAULT) == "TM(0%:90%)"


@pytest.mark.parametrize(
    "token",
    [
        "p0",
        "p101",
        "p05",
        "TM(10%)",
        "TM(-10%:90%)",
        "TM(10%:90)",
        "TM(10%:100%)",
        "TM(10.25%:90%)",
        "TM(:)",
        "PR(0:0)",
        "XX(10%:90%)",
        "median",
        "",
    ],
)
def test_rejected_tokens_return_default(token: str) -> None:
    assert parse_statistic(token, DEFAULT) == DEFAULT


def test_non_string_returns_default() -> None:
    assert parse_statistic(None, DEFAULT) == DEFAULT
    assert parse_statistic(90, "p50") == "p50"


def test_extended_statistic_detection() -> None:
    assert not is_extended_statistic("Average")
    assert not is_extended_statistic("SampleCount")
    assert is_extended_statistic("p90")
    assert is_extended_statistic("IQM")
    assert is_extended_statistic("TM(10%:90%)")
