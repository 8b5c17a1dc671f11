import argparse
import random

from warc_tools.config import PRESETS, resolve_chars_path
from warc_tools.records import iter_records, open_stream
from warc_tools.script_classifier import ScriptClassifier

# Eyeball check for the threshold: print the estimated ratio of a few random
# records next to the start of their text.


def main():
    parser = argparse.ArgumentParser(description="Show target-script ratios for a random sample of records")
    parser.add_argument("--input", type=str, required=True, help="WARC file (.warc or .warc.gz)")
    parser.add_argument("--chars", type=str, default=None)
    parser.add_argument("--preset", choices=sorted(PRESETS), default="ids")
    parser.add_argument("--k", type=int, default=20, help="Number of records to show")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    preset = PRESETS[args.preset]
    classifier = ScriptClassifier.from_file(
        resolve_chars_path(args.chars),
        threshold=preset["threshold"],
        sample_size=preset["sample_size"],
        sampling=preset["sampling"],
        rng=random.Random(args.seed),
    )

    docs = []
    with open_stream(args.input) as stream:
        for rec in iter_records(stream):
            text = rec.text_body()
            if text:
                docs.append((rec.record_id, text))

    random.seed(args.seed)
    sample_docs = random.sample(docs, k=min(args.k, len(docs)))

    match_count = 0
    for i, (record_id, text) in enumerate(sample_docs):
        result = classifier.classify(text)
        if result.matched:
            match_count += 1

        print(f"\n--- DOC {i} {record_id} ---")
        print(f"ratio={result.ratio:.3f} samples={result.samples} regime={result.regime} matched={result.matched}")
        print(text[:400])

    print("\nTotal sampled:", len(sample_docs))
    print("Match fraction:", match_count / max(1, len(sample_docs)))


if __name__ == "__main__":
    main()
