from tissueseg.legend import build_legend, palette_legend
from tissueseg.palette import CONFIDENCE_PALETTE, TISSUE_PALETTE


def test_observed_only():
    legend = palette_legend({2, 0}, TISSUE_PALETTE)
    assert list(legend) == ['Skin', 'Epithelising']
    assert legend['Skin'] == TISSUE_PALETTE.rgba(0)
    assert 'Healthy Granulation' not in legend


def test_size_matches_indices():
    indices = [9, 0, 4, 4, 0]
    legend = palette_legend(indices, CONFIDENCE_PALETTE)
    assert len(legend) == 3
    assert list(legend) == ['91%-100%', '51%-60%', '1%-10%']
    assert palette_legend([], TISSUE_PALETTE) == {}


def test_duplicate_labels(caplog):
    legend = build_legend({3, 1}, lambda i: 'same', lambda i: i * 10)
    assert legend == {'same': 30}  # Higher index wins
    assert 'more than one index' in caplog.text
