#!/usr/bin/env python3
"""
Keyword Gap Runner

Runs a keyword gap analysis from exported DataForSEO ranked_keywords/live
responses saved as JSON files, one per domain.

Usage:
    python scripts/run_gap_analysis.py example.com exports/example.json \
        --competitor rival.com=exports/rival.json \
        --competitor other.com=exports/other.json

    # With options:
    python scripts/run_gap_analysis.py example.com exports/example.json \
        --competitor rival.com=exports/rival.json \
        --view shared --sort search_volume --top 50 --refresh

Cache behaviour follows the CACHE_* environment variables (see
searchscout.utils.config.Settings).
"""

import asyncio
import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from searchscout.analysis import (
    KeywordAggregator,
    ParseOutcome,
    RankedKeywordsFetcher,
    SortColumn,
    SortDirection,
    SourceFetchError,
    SourceHandle,
    ViewMode,
    sort_keywords,
)
from searchscout.cache import create_persistent_cache
from searchscout.utils.config import get_settings
from searchscout.utils.domain import validate_domain

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class ExportedResponses:
    """Transport that answers ranked keyword requests from JSON exports."""

    def __init__(self, files: Dict[str, Path]):
        self.files = files

    async def post(self, endpoint: str, data: List[Dict[str, Any]]) -> Dict[str, Any]:
        domain = data[0]["target"]
        path = self.files.get(domain)
        if path is None:
            raise SourceFetchError(f"No export for {domain}", source_id=domain)
        logger.debug(f"Reading {endpoint} export for {domain} from {path}")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)


def parse_competitor(value: str):
    domain, sep, path = value.partition("=")
    if not sep or not path:
        raise argparse.ArgumentTypeError(f"Expected DOMAIN=PATH, got {value!r}")
    return validate_domain(domain), Path(path)


async def run_gap_analysis(
    domain: str,
    subject_file: Path,
    competitors: List[tuple],
    view: ViewMode,
    sort_column: SortColumn,
    direction: SortDirection,
    top: int,
    refresh: bool,
):
    """Run the analysis and print the requested view."""
    domain = validate_domain(domain)
    files = {domain: subject_file, **dict(competitors)}
    sources = [SourceHandle(id=d) for d, _ in competitors]

    cache = create_persistent_cache(settings)
    fetcher = RankedKeywordsFetcher(ExportedResponses(files).post, cache)
    aggregator = KeywordAggregator(cache, fetcher, fetch_timeout=settings.SOURCE_FETCH_TIMEOUT)

    if refresh:
        aggregator.clear_cache(domain, sources)
        for source in sources:
            fetcher.clear_cache(source.id)
        fetcher.clear_cache(domain)

    subject = await fetcher.fetch(domain)
    subject_keywords = subject.records if isinstance(subject, ParseOutcome) else subject
    logger.info(f"{domain} ranks for {len(subject_keywords)} keywords")

    result = await aggregator.analyze(domain, subject_keywords, sources)

    for diagnostic in result.diagnostics:
        logger.warning(f"[{diagnostic.source_id}] {diagnostic.kind}: {diagnostic.message}")

    rows = sort_keywords(result.view(view), sort_column, direction)[:top]

    print(f"\n{domain} vs {', '.join(result.analyzed_sources) or 'no sources'}")
    print(
        f"{result.total_keywords} keywords: {len(result.opportunities)} opportunities, "
        f"{len(result.shared)} shared, {len(result.unique_to_subject)} unique\n"
    )
    for kw in rows:
        score = kw.opportunity_score if kw.opportunity_score is not None else "-"
        position = kw.subject_ranking.position if kw.subject_ranking else "-"
        print(
            f"{kw.keyword:<50} vol={kw.search_volume:<8} kd={kw.difficulty:<4} "
            f"pos={position:<4} sources={kw.source_count:<3} score={score}"
        )

    return result


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Find keyword gaps against competitors from exported ranked keyword data"
    )
    parser.add_argument(
        "domain",
        help="Domain to analyze (e.g., example.com)"
    )
    parser.add_argument(
        "subject_file",
        type=Path,
        help="ranked_keywords/live JSON export for the domain"
    )
    parser.add_argument(
        "--competitor",
        action="append",
        default=[],
        type=parse_competitor,
        metavar="DOMAIN=PATH",
        help="Competitor domain and its export (repeatable)"
    )
    parser.add_argument(
        "--view",
        default=ViewMode.OPPORTUNITIES.value,
        choices=[m.value for m in ViewMode],
        help="Which keywords to list (default: opportunities)"
    )
    parser.add_argument(
        "--sort",
        default=SortColumn.OPPORTUNITY_SCORE.column,
        choices=[c.column for c in SortColumn],
        help="Sort column (default: opportunity_score)"
    )
    parser.add_argument(
        "--asc",
        action="store_true",
        help="Sort ascending instead of descending"
    )
    parser.add_argument(
        "--top",
        type=int,
        default=25,
        help="Number of rows to print (default: 25)"
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Ignore cached keywords and analyses"
    )

    args = parser.parse_args()

    asyncio.run(run_gap_analysis(
        domain=args.domain,
        subject_file=args.subject_file,
        competitors=args.competitor,
        view=ViewMode(args.view),
        sort_column=SortColumn.from_name(args.sort),
        direction=SortDirection.ASC if args.asc else SortDirection.DESC,
        top=args.top,
        refresh=args.refresh,
    ))


if __name__ == "__main__":
    main()
