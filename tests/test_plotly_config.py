import math

from chart_analyst.plotly_config import chart_to_plotly
from chart_analyst.schemas import ChartSpec


def test_pie_uses_given_colors():
    fig = chart_to_plotly(ChartSpec(title="Share", type="pie", labels=["a", "b"], values=[1, 2], colors=["#111", "#222"]))
    trace = fig["data"][0]
    assert trace["type"] == "pie"
    assert trace["labels"] == ["a", "b"]
    assert trace["values"] == [1.0, 2.0]
    assert trace["marker"]["colors"] == ["#111", "#222"]
    assert fig["layout"]["title"]["text"] == "Share"


def test_length_mismatch_and_short_colors_do_not_crash():
    chart = ChartSpec(type="bar", labels=["a", "b", "c"], values=[1, math.nan], colors=["#111"])
    trace = chart_to_plotly(chart)["data"][0]
    assert trace["x"] == ["a", "b"]
    assert trace["y"] == [1.0, None]
    assert trace["marker"]["color"] == ["#4ea1ff", "#4ea1ff"]


def test_unknown_type_renders_as_bar():
    trace = chart_to_plotly(ChartSpec(type="radar", labels=["a"], values=[3]))["data"][0]
    assert trace["type"] == "bar"


def test_line_trace():
    trace = chart_to_plotly(ChartSpec(type="line", labels=["x"], values=[1], colors=["#abc"]))["data"][0]
    assert trace["mode"] == "lines+markers"
    assert trace["line"]["color"] == "#abc"
