"""Command-line interface for the reverse-image matching pipeline."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from .config import Settings
from .errors import InvalidQueryImage, SearchUnavailable
from .extract.normalize import DECODE_ERRORS, normalize_image
from .features.perceptual import compute_fingerprint
from .io.models import EnrichedCandidate, PipelineResult
from .io.outputs import write_results, write_results_table
from .pipeline import ReverseImagePipeline

EXIT_SEARCH_UNAVAILABLE = 2
EXIT_INVALID_IMAGE = 3


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the reverse-image pipeline."""
    parser = argparse.ArgumentParser(
        description="Search the web for images similar to a query image and flag likely misuse."
    )
    parser.add_argument("--image", required=True, help="Path to the query image.")
    parser.add_argument(
        "--query",
        required=False,
        default=None,
        help="Text query sent to the image-search provider.",
    )
    parser.add_argument(
        "--out",
        required=False,
        default="out",
        help="Directory path where results.json and results.parquet are written.",
    )
    parser.add_argument(
        "--embedding-weight",
        type=float,
        default=None,
        help="Weight of the embedding term in the combined score (0-1).",
    )
    parser.add_argument("--top-k", type=int, default=None, help="Matches eligible for enrichment.")
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Combined similarity required before a match page is classified.",
    )
    parser.add_argument(
        "--no-embedding",
        action="store_true",
        help="Disable the visual embedding backend and score on perceptual hashes only.",
    )
    parser.add_argument("--progress", action="store_true", help="Show a progress bar while scoring.")
    parser.add_argument(
        "--fingerprint-only",
        action="store_true",
        help="Print the perceptual fingerprint of the query image and exit.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default WARNING).")
    return parser.parse_args(list(argv) if argv is not None else None)


def read_image(path: Path) -> bytes:
    """Return the raw bytes stored at *path*."""
    if not path.exists():
        raise FileNotFoundError(f"Image file does not exist: {path}")
    return path.read_bytes()


def _print_summary(result: PipelineResult, limit: int = 10) -> None:
    print(f"Query: {result.query}")
    print(f"Candidates found: {result.candidates_found}")
    print(f"Scored: {len(result.matches)}")
    print(f"Likely infringing: {len(result.infringing)}")
    for index, match in enumerate(result.matches[:limit], start=1):
        candidate = match.candidate
        similarity = match.similarity
        phash = f"{similarity.perceptual:.3f}" if similarity.perceptual is not None else "n/a"
        clip = f"{similarity.embedding:.3f}" if similarity.embedding is not None else "n/a"
        fragment = ""
        if isinstance(match, EnrichedCandidate):
            flag = " INFRINGING" if match.likely_infringing else ""
            fragment = f" [{match.classification.label.value} {match.classification.score:.2f}{flag}]"
        print(
            f"  {index}. {similarity.combined:.3f} (phash={phash}, clip={clip})"
            f" {candidate.link or candidate.image_url or ''}{fragment}"
        )


def main(argv: Iterable[str] | None = None) -> int:
    """Entry point for the CLI."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    image_bytes = read_image(Path(args.image))

    if args.fingerprint_only:
        try:
            fingerprint = compute_fingerprint(normalize_image(image_bytes))
        except DECODE_ERRORS as exc:
            print(f"[error] query image could not be decoded ({exc})")
            return EXIT_INVALID_IMAGE
        print(fingerprint.hash)
        return 0

    if not args.query:
        print("[error] --query is required unless --fingerprint-only is given")
        return 1

    settings = Settings.from_env()
    if args.no_embedding:
        settings = settings.model_copy(update={"enable_embedding": False})
    pipeline = ReverseImagePipeline.from_settings(settings)

    try:
        result = pipeline.run(
            image_bytes,
            args.query,
            embedding_weight=args.embedding_weight,
            top_k=args.top_k,
            enrichment_threshold=args.threshold,
            show_progress=args.progress,
        )
    except InvalidQueryImage as exc:
        print(f"[error] {exc}")
        return EXIT_INVALID_IMAGE
    except SearchUnavailable as exc:
        print(f"[error] search unavailable: {exc}")
        return EXIT_SEARCH_UNAVAILABLE

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    json_path = write_results(out_dir / "results.json", result)
    print(f"[results] wrote {json_path}")
    table_path = write_results_table(out_dir / "results.parquet", result.matches)
    if table_path is not None:
        print(f"[results] wrote {len(result.matches)} rows to {table_path}")

    _print_summary(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
