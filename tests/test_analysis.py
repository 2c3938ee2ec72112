import numpy as np

from tissueseg.analysis import analyze_composition
from tissueseg.decoder import decode
from tissueseg.palette import TISSUE_PALETTE
from tissueseg.segmentation import ScoreTensor


def test_example(example_scores):
    output = analyze_composition(decode(ScoreTensor(example_scores)))
    assert set(output['tissues']) == {'Skin', 'Epithelising'}
    assert output['tissues']['Skin'] == {'index': 0, 'fraction': 0.5, 'region_count': 1}
    assert output['tissues']['Epithelising']['fraction'] == 0.5
    assert output['mean_confidence_bucket'] == 3.5


def test_regions():
    # Two separate patches of slough on skin
    scores = np.zeros((6, 4, 7), dtype=np.float32)
    scores[:, :, 0] = 0.6
    scores[0:2, 0:2, 6] = 0.95
    scores[4:6, 2:4, 6] = 0.95
    output = analyze_composition(decode(ScoreTensor(scores)), TISSUE_PALETTE)
    assert output['tissues']['Slough']['region_count'] == 2
    assert np.isclose(output['tissues']['Slough']['fraction'], 8 / 24)
    assert output['tissues']['Skin']['region_count'] == 1
