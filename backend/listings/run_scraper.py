import argparse
import asyncio
import csv
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from backend.listings.errors import ScrapeError
from backend.listings.scraper import ScrapeOutcome, scrape_many

CSV_FIELDS = [
    "address",
    "listPrice",
    "daysOnMarket",
    "bedrooms",
    "bathrooms",
    "propertyType",
    "squareFeet",
    "yearBuilt",
    "priceReduced",
    "originalPrice",
    "estimatedValue",
    "source",
    "sourceUrl",
    "scrapedAt",
]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Extract listing details from Zillow / Redfin URLs")
    p.add_argument("urls", nargs="*", help="Listing URLs. May be combined with --urls-file")
    p.add_argument("--urls-file", help="Text file with one URL per line, or CSV with a 'url' column")
    p.add_argument("--concurrency", type=int, default=3)
    p.add_argument("--output", help="Optional path to save results as .json or .csv")
    p.add_argument("--print-details", action="store_true", help="Print each result to stdout")
    p.add_argument("--verbose", action="store_true", help="Enable verbose logging for the listings scraper")
    return p.parse_args(argv)


def load_urls(path: str) -> List[str]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"URLs file not found: {path}")
    with open(path, newline="", encoding="utf-8") as f:
        if path.suffix.lower() == ".csv":
            reader = csv.DictReader(f)
            col = next((c for c in (reader.fieldnames or []) if c.strip().lower() == "url"), None)
            if col is None:
                raise ValueError(f"{path}: CSV needs a 'url' column")
            urls = [(row.get(col) or "").strip() for row in reader]
        else:
            urls = [line.strip() for line in f]
    return [u for u in urls if u and not u.startswith("#")]


def format_result(url: str, outcome: ScrapeOutcome) -> str:
    if isinstance(outcome, ScrapeError):
        return f"- ✖ {url} | {outcome.code}"
    price = f"${outcome.list_price:,}" if outcome.list_price else "N/A"
    beds = f"{outcome.bedrooms:g} bd" if outcome.bedrooms else "--"
    baths = f"{outcome.bathrooms:g} ba" if outcome.bathrooms else "--"
    sqft = f"{outcome.square_feet:,} sqft" if outcome.square_feet else "--"
    flag = " | needs manual completion" if outcome.needs_manual_completion else ""
    return f"- {outcome.address} | {price} | {beds} / {baths} | {sqft} | {outcome.source_url}{flag}"


def write_output(out_path: str, results: Sequence) -> int:
    """Write envelopes (.json) or successful rows (.csv). Returns rows written."""
    lower = out_path.lower()
    if lower.endswith(".json"):
        rows = [dict(outcome.to_dict(), url=url) for url, outcome in results]
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False, default=str)
        return len(rows)
    if lower.endswith(".csv"):
        records = [o for _, o in results if not isinstance(o, ScrapeError)]
        with open(out_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            for r in records:
                data = r.model_dump(mode="json", by_alias=True)
                writer.writerow({k: data.get(k) for k in CSV_FIELDS})
        return len(records)
    raise ValueError(f"Unknown output format for '{out_path}'. Use .json or .csv")


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger("listings").setLevel(logging.DEBUG)

    urls = list(args.urls)
    if args.urls_file:
        urls.extend(load_urls(args.urls_file))
        print(f"📍 Loaded {len(urls)} URLs")
    if not urls:
        print("No URLs given. Pass them as arguments or with --urls-file.")
        return 1

    results = await scrape_many(urls, concurrency=args.concurrency)
    ok = sum(1 for _, o in results if not isinstance(o, ScrapeError))

    if args.print_details:
        for url, outcome in results:
            print(format_result(url, outcome))

    if args.output:
        n = write_output(args.output, results)
        print(f"Saved {n} result(s) to {args.output}")

    print(f"\nScraped {ok}/{len(results)} listing(s).")
    return 0 if ok else 1


def cli() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
