import numpy as np

from motifhmm import Collection, ProfileHMM
from motifhmm.report import occurrence_counts, occurrence_table, summary, viterbi_paths


def test_summary(two_motif_model):
    table = summary(two_motif_model)
    assert list(table.columns) == ["group", "name", "consensus", "length", "information_content"]
    assert table["consensus"].tolist() == ["aacg", "ttgca"]
    assert table["length"].tolist() == [4, 5]
    assert np.all(table["information_content"] > 0)


def test_viterbi_paths(motif_model):
    collection = Collection.from_strings(["ggacgtgg", "tttt"], ["acgt"])
    table = viterbi_paths(motif_model, collection)
    assert len(table) == 3
    assert table["groups"].tolist() == ["..AAAA..", "....", "AAAA"]
    assert table["set"].tolist() == ["signal", "signal", "control"]
    assert table.loc[0, "states"] == "1,1,2,3,4,5,1,1"


def test_occurrence_table(motif_model):
    collection = Collection.from_strings(["ggacgtggacgtt", "tttt"])
    table = occurrence_table(motif_model, collection)
    assert list(table.columns) == ["contrast", "set", "sequence", "motif", "start", "end", "site", "posterior"]
    assert table["start"].tolist() == [2, 8]
    assert table["end"].tolist() == [6, 12]
    assert table["site"].tolist() == ["acgt", "acgt"]
    assert np.all((table["posterior"] > 0.5) & (table["posterior"] <= 1.0))


def test_occurrence_counts(motif_model):
    collection = Collection.from_strings(["ggacgtggacgtt", "tttt"], ["cccc"])
    table = occurrence_counts(motif_model, collection)
    assert table["present"].tolist() == [1, 0]
    assert table["occurrences"].tolist() == [2, 0]
    assert table["sequences"].tolist() == [2, 1]


def test_empty_model_reports():
    collection = Collection.from_strings(["acgt"])
    assert summary(ProfileHMM()).empty
    assert occurrence_table(ProfileHMM(), collection).empty
