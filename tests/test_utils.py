import numpy as np
import pytest

from motifhmm.exceptions import InvalidNucleotideCodeError
from motifhmm.utils import (
    SUPPORT,
    decode,
    emission_lookup,
    encode,
    iupac_char,
    iupac_support,
    normalize_rows,
    parallel_map,
    reverse_complement,
    validate_seq,
)


def test_encode_decode():
    x = encode("ACGTNryu")
    assert x.dtype == np.int64
    assert list(x[:4]) == [0, 1, 2, 3]
    assert decode(x) == "acgtnryt"
    validate_seq(x)


def test_encode_invalid_code():
    with pytest.raises(InvalidNucleotideCodeError):
        encode("acgx")


def test_iupac_support_and_char():
    assert iupac_support("r") == [0, 2]
    assert iupac_support("N") == [0, 1, 2, 3]
    assert iupac_char([0, 2]) == "r"
    assert iupac_char([1]) == "c"
    with pytest.raises(InvalidNucleotideCodeError):
        iupac_support("z")


def test_support_table():
    assert SUPPORT.shape == (15, 4)
    assert SUPPORT[:4].sum() == 4
    assert SUPPORT[encode("n")[0]].all()


def test_reverse_complement():
    assert reverse_complement("aacgr") == "ycgtt"


def test_normalize_rows_is_idempotent():
    m = np.array([[1.0, 3.0], [0.0, 0.0], [-1e-12, 2.0]])
    normalize_rows(m)
    np.testing.assert_allclose(m, [[0.25, 0.75], [0.0, 0.0], [0.0, 1.0]])
    once = m.copy()
    normalize_rows(m)
    np.testing.assert_array_equal(m, once)


def test_emission_lookup_degenerate_symbols():
    E = np.array([[0.0, 0.0, 0.0, 0.0], [0.1, 0.2, 0.3, 0.4]])
    E_ext = emission_lookup(E)
    assert E_ext[0].tolist() == [1.0] * 15
    np.testing.assert_allclose(E_ext[1, encode("r")[0]], 0.4)
    np.testing.assert_allclose(E_ext[1, encode("n")[0]], 1.0)


def test_parallel_map_keeps_order():
    assert parallel_map(lambda v: v * v, range(10), n_jobs=2) == [v * v for v in range(10)]
