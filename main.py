"""
Command-line interface for the word arithmetic engine.

    wordmath compute king - man --top-k 5
    wordmath embed apple elma --format yaml
    wordmath cache-stats
    wordmath languages
    wordmath health
"""
import argparse
import json
import sys
import time
from typing import Any, Dict, List, Optional

import yaml

from config_manager import ConfigManager
from exceptions import InvalidInput, WordMathError
from language_utils import get_supported_languages
from logger_config import configure_logging, get_logger
from vector_operations import SUPPORTED_OPERATIONS
from word_arithmetic import create_service

logger = get_logger("wordmath.cli", "system")

EXIT_OK = 0
EXIT_INVALID_INPUT = 1
EXIT_ERROR = 2


# ---------------------------------------------------------------------------
# Global helper for JSON serialisation of numpy types
# ---------------------------------------------------------------------------
def _json_safe(obj):
    """Convert NumPy scalar/array to native types for json.dumps."""
    import numpy as _np
    if isinstance(obj, _np.floating):
        return float(obj)
    if isinstance(obj, _np.integer):
        return int(obj)
    if isinstance(obj, _np.ndarray):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _serialize(payload: Dict[str, Any], fmt: str) -> str:
    if fmt == "yaml":
        return yaml.safe_dump(json.loads(json.dumps(payload, default=_json_safe)),
                              allow_unicode=True, sort_keys=False)
    return json.dumps(payload, ensure_ascii=False, indent=2, default=_json_safe)


def _safe_div(num: float, denom: float) -> float:
    return float(num) / float(denom) if denom else 0.0


def format_operation_result(result: Dict[str, Any]) -> str:
    """Human-readable rendering of an OperationResult dictionary."""
    lines = [f"{result['operation']}  ({result['word1_language']}, {result['word2_language']})", ""]
    if not result["results"]:
        lines.append("  no matching words")
    for rank, item in enumerate(result["results"], start=1):
        lines.append(f"  {rank}. {item['word']:<20} {item['similarity']:.4f}  [{item['language']}]")
    preview = ", ".join(f"{x:.4f}" for x in result["combined_vector_preview"])
    lines.append("")
    lines.append(f"Vector preview: [{preview}]")
    lines.append(f"Processing time: {result['processing_time'] * 1000:.1f} ms")
    return "\n".join(lines)


def format_cache_stats(stats: Optional[Dict[str, Any]], *, format: str = "text") -> str:
    """Pretty-format cache *stats* in **text**, **json**, **yaml** or **markdown**."""
    stats = stats or {}
    fmt = format.lower()

    if fmt in ("json", "yaml"):
        return _serialize(stats, fmt)

    size = stats.get("size", 0)
    hit_rate = stats.get("hit_rate", 0.0) * 100
    hits = stats.get("hits", 0)
    misses = stats.get("misses", 0)

    store_line = ""
    if "store_size" in stats:
        store_line = f"{stats['store_size']} vectors ({stats.get('store_backend', 'memory')} backend)"

    if fmt == "text":
        text = (
            "EMBEDDING CACHE STATISTICS\n"
            f"  Entries: {size}\n"
            f"  {hits} hits, {misses} misses (Hit rate: {hit_rate:.2f}%)\n"
        )
        if store_line:
            text += f"  Durable store: {store_line}\n"
        return text

    if fmt == "markdown":
        text = (
            "# Embedding Cache Statistics\n\n"
            f"- **Entries:** {size}\n"
            f"- **Hits / misses:** {hits} / {misses} (**{hit_rate:.2f}% hit rate**)\n"
        )
        if store_line:
            text += f"- **Durable store:** {store_line}\n"
        return text

    raise ValueError(f"Unknown format '{format}' for cache stats")


def interpret_cache_stats(stats: Optional[Dict[str, Any]]) -> str:
    """Return a short interpretation of the cache hit rate."""
    stats = stats or {}
    lookups = stats.get("hits", 0) + stats.get("misses", 0)
    hit_rate = stats.get("hit_rate", _safe_div(stats.get("hits", 0), lookups))

    if lookups == 0:
        return "No cache lookups yet."
    if hit_rate >= 0.8:
        return "Cache is serving most lookups; external calls are rare."
    if hit_rate >= 0.5:
        return "Cache hit rate is moderate; repeated words are being reused."
    return "Warning: cache hit rate is low, most words need an external call."


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------
def _run_compute(args: argparse.Namespace, config: ConfigManager) -> int:
    deadline = time.monotonic() + args.deadline if args.deadline else None
    with create_service(config, show_progress=args.progress) as service:
        result = service.compute_operation(args.word1, args.word2, args.operation,
                                           top_k=args.top_k, deadline=deadline)
    payload = result.to_dict()

    if args.format == "text":
        print(format_operation_result(payload))
    else:
        print(_serialize(payload, args.format))

    if result.synthetic_words:
        print(f"Warning: low-quality result, synthetic vectors used for "
              f"{', '.join(result.synthetic_words)}", file=sys.stderr)
    if result.degraded_vocabulary_words:
        print(f"Warning: {len(result.degraded_vocabulary_words)} vocabulary words have no real "
              f"embedding yet, rankings may be unreliable", file=sys.stderr)
    return EXIT_OK


def _run_embed(args: argparse.Namespace, config: ConfigManager) -> int:
    with create_service(config) as service:
        summary = service.embed_words(args.words)

    if args.format == "text":
        for word, info in summary["embeddings"].items():
            print(f"{word:<20} {info['language']:<3} dim={info['dimension']} source={info['source']}")
    else:
        print(_serialize(summary, args.format))

    if summary["degraded_words"] or summary["synthetic_words"]:
        affected = summary["degraded_words"] + summary["synthetic_words"]
        print(f"Warning: low-quality embeddings for {', '.join(affected)}", file=sys.stderr)
    return EXIT_OK


def _run_cache_stats(args: argparse.Namespace, config: ConfigManager) -> int:
    # The in-memory cache starts empty in every process; only the durable store
    # carries vectors over from earlier runs
    with create_service(config) as service:
        stats = service.acquirer.cache.stats()
        stats["store_backend"] = config.get("store.backend", "memory")
        stats["store_size"] = len(service.acquirer.store) if service.acquirer.store is not None else 0
    print(format_cache_stats(stats, format=args.format))
    if args.format == "text":
        print(interpret_cache_stats(stats))
    return EXIT_OK


def _run_languages(args: argparse.Namespace, config: ConfigManager) -> int:
    languages = get_supported_languages()
    if args.format == "text":
        for entry in languages:
            print(f"{entry['priority']}. {entry['code']}  {entry['name']}")
    else:
        print(_serialize({"languages": languages}, args.format))
    return EXIT_OK


def _run_health(args: argparse.Namespace, config: ConfigManager) -> int:
    with create_service(config) as service:
        report = service.health()
    report["timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

    if args.format == "text":
        print(f"HEALTH: {report['status'].upper()}")
        print(f"  provider: {report['provider']} (configured: {report['provider_configured']})")
        print(f"  tiers: {' -> '.join(report['tiers'])}")
        if not report["provider_configured"]:
            print("  note: no embedding provider configured, results will be synthetic")
    else:
        print(_serialize(report, args.format))
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------
def _add_global_flags(p: argparse.ArgumentParser) -> None:
    """Attach global CLI flags to parser *p*."""
    p.add_argument("--config", "-c", type=str, help="Path to configuration file (default: ~/.wordmath/config.json)")
    p.add_argument("--log-dir", type=str, help="Write per-category JSON log files to this directory")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    p.add_argument("--quiet", "-q", action="store_true", help="Only log errors")


def _add_format_flag(p: argparse.ArgumentParser) -> None:
    p.add_argument("--format", "-f", choices=["json", "text", "yaml"], default="json", help="Output format")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wordmath",
        description="Semantic word arithmetic: combine two words and find the closest vocabulary words",
    )
    _add_global_flags(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    compute = subparsers.add_parser("compute", help="Compute WORD1 (+|-) WORD2")
    compute.add_argument("word1")
    compute.add_argument("operation", help=f"One of: {' '.join(SUPPORTED_OPERATIONS)}")
    compute.add_argument("word2")
    compute.add_argument("--top-k", "-k", type=int, default=None, help="Number of results to return")
    compute.add_argument("--deadline", type=float, default=None, help="Give up after this many seconds")
    compute.add_argument("--progress", action="store_true", help="Show vocabulary embedding progress")
    _add_format_flag(compute)
    compute.set_defaults(handler=_run_compute)

    embed = subparsers.add_parser("embed", help="Embed one or more words and summarise the vectors")
    embed.add_argument("words", nargs="+")
    _add_format_flag(embed)
    embed.set_defaults(handler=_run_embed)

    cache_stats = subparsers.add_parser(
        "cache-stats",
        help="Show cache statistics and the durable store size (the in-memory cache is per process)",
    )
    _add_format_flag(cache_stats)
    cache_stats.set_defaults(handler=_run_cache_stats)

    languages = subparsers.add_parser("languages", help="List language hints in detection priority order")
    _add_format_flag(languages)
    languages.set_defaults(handler=_run_languages)

    health = subparsers.add_parser("health", help="Report provider, tiers and budget state")
    _add_format_flag(health)
    health.set_defaults(handler=_run_health)

    return parser


def _setup_logging(args: argparse.Namespace, config: ConfigManager) -> None:
    if args.verbose:
        level = "DEBUG"
    elif args.quiet:
        level = "ERROR"
    else:
        level = config.get("logging.level", "INFO")
    log_dir = args.log_dir or config.get("logging.directory")
    configure_logging(log_dir=log_dir, level=level, enable_json=config.get("logging.json", True))


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    config = ConfigManager(args.config)
    _setup_logging(args, config)

    try:
        return args.handler(args, config)
    except InvalidInput as e:
        logger.error(f"Invalid input: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except WordMathError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    sys.exit(main())
