import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pytest  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from ch_analytics.analysis import FunnelResult  # noqa: E402
from ch_analytics.visualization import compare_funnels, visualize_funnel  # noqa: E402


STEPS = ['app_opened', 'add_to_cart', 'purchase']


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def test_visualize_funnel_returns_figure():
    funnel = FunnelResult.from_level_counts(STEPS, {1: 30, 2: 15, 3: 5})

    fig = visualize_funnel(funnel, title="Покупка")

    assert isinstance(fig, Figure)
    ax = fig.axes[0]
    assert [bar.get_height() for bar in ax.patches] == [50, 20, 5]
    assert ax.get_title() == "Покупка"
    assert [label.get_text() for label in ax.get_xticklabels()] == STEPS


def test_visualize_funnel_show(monkeypatch):
    shown = []
    monkeypatch.setattr(plt, "show", lambda: shown.append(True))
    fig = visualize_funnel(FunnelResult.from_level_counts(STEPS, {1: 1}), show=True)
    assert shown == [True]
    assert fig.number not in plt.get_fignums()


def test_figure_stays_open_without_show():
    fig = visualize_funnel(FunnelResult.from_level_counts(STEPS, {1: 1}))
    assert fig.number in plt.get_fignums()


def test_compare_funnels_show_closes_figure(monkeypatch):
    monkeypatch.setattr(plt, "show", lambda: None)
    funnels = [FunnelResult.from_level_counts(STEPS, {1: 2, 3: 1}), FunnelResult.from_level_counts(STEPS, {2: 4})]

    fig = compare_funnels(funnels, labels=["A", "B"], show=True)

    assert fig.number not in plt.get_fignums()


def test_visualize_empty_funnel_warns():
    with pytest.warns(UserWarning):
        assert visualize_funnel(FunnelResult()) is None


def test_compare_funnels_mapping():
    funnels = {
        'ios': FunnelResult.from_level_counts(STEPS, {1: 10, 3: 10}),
        'android': FunnelResult.from_level_counts(STEPS, {1: 50, 2: 40, 3: 10}),
    }

    fig = compare_funnels(funnels, title="По платформам")

    assert isinstance(fig, Figure)
    users_ax = fig.axes[0]
    legend_labels = [text.get_text() for text in users_ax.get_legend().get_texts()]
    assert legend_labels == ["ios (конв: 50.0%)", "android (конв: 10.0%)"]


def test_compare_funnels_label_mismatch():
    funnels = [FunnelResult.from_level_counts(STEPS, {1: 1})]
    with pytest.raises(ValueError):
        compare_funnels(funnels, labels=['a', 'b'])


def test_compare_funnels_skips_empty():
    funnels = [FunnelResult(), FunnelResult.from_level_counts(STEPS, {3: 2})]
    with pytest.warns(UserWarning):
        fig = compare_funnels(funnels, labels=['empty', 'full'])
    assert isinstance(fig, Figure)


def test_compare_nothing():
    with pytest.warns(UserWarning):
        assert compare_funnels([FunnelResult()], labels=['empty']) is None
