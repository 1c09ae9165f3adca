"""Discriminative discovery of a motif enriched in signal over control sequences."""

import argparse
import logging

from motifhmm import HMMOptions, ProfileHMM, TerminationOptions, datagen_contrast, save_model, train
from motifhmm.report import occurrence_counts, occurrence_table, summary
from motifhmm.utils import setup_logging

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--motif", default="tgasyca")
    parser.add_argument("--seed-motif", default="tgannca")
    parser.add_argument("--pad", type=int, default=0, help="Ns added on both sides of the seed")
    parser.add_argument("--n-seqs", type=int, default=100)
    parser.add_argument("--length", type=int, default=200)
    parser.add_argument("--objective", default="mi")
    parser.add_argument("--max-iter", type=int, default=50)
    parser.add_argument("--output", default=None)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    setup_logging(args.verbose)

    collection, _ = datagen_contrast(args.motif, n_seqs=args.n_seqs, length=args.length, control_rate=0.1)
    options = HMMOptions(
        objectives=[args.objective],
        pad_left=args.pad,
        pad_right=args.pad,
        termination=TerminationOptions(max_iter=args.max_iter),
    )
    model = ProfileHMM()
    model.add_seed(args.seed_motif, options, collection)

    result = train(model, collection, options)
    logger.info(f"Stopped after {result.iterations} iterations ({result.reason}), score {result.score:.4f}")

    print(summary(result.model).to_string(index=False))
    print(occurrence_counts(result.model, collection).to_string(index=False))
    print(occurrence_table(result.model, collection).head(20).to_string(index=False))
    if args.output is not None:
        save_model(result.model, args.output, exec_info=[f"objective {args.objective}"])


if __name__ == "__main__":
    main()
