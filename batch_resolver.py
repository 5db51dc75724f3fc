"""
Resolve screenshots for a batch of apps

Reads app ids from a CSV file and/or the command line, runs each one through
the lookup and the screenshot resolution chain, and appends one JSON line per
app to the results file.

CSV Format:
- app_id: iTunes track id or bundle id (required)
- country: Store country code (optional, defaults to --country)

Example CSV:
app_id,country
6446901002,us
com.burbn.barcelona,gb
"""

import argparse
import asyncio
import csv
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from errors import NotFoundError, ScreenshotResolverError
from page_extractor import fill_missing_platforms
from screenshot_chain import MAX_RETRIES, ScreenshotChain, get_default_chain
from store_client import fetch_app_record

RESULTS_FILE = os.getenv("RESULTS_FILE", "results.jsonl")


def read_csv_apps(csv_path: str, default_country: str = "us") -> List[Dict[str, str]]:
    """
    Read apps from CSV file

    Args:
        csv_path: Path to CSV file
        default_country: Country used when a row has none

    Returns:
        List of dictionaries with keys: app_id, country
    """
    apps = []

    with open(csv_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)

        if not reader.fieldnames or 'app_id' not in reader.fieldnames:
            found = ', '.join(reader.fieldnames or [])
            raise ValueError(f"CSV must contain column: app_id. Found: {found}")

        for row_num, row in enumerate(reader, start=2):  # Start at 2 (1 is header)
            app_id = (row.get('app_id') or '').strip()
            country = (row.get('country') or '').strip().lower() or default_country

            if not app_id:
                logging.warning(f"Row {row_num}: Missing app_id, skipping")
                continue

            apps.append({'app_id': app_id, 'country': country})

    logging.info(f"Read {len(apps)} apps from CSV file: {csv_path}")
    return apps


def append_result(result_data: Dict[str, Any], results_file: str = RESULTS_FILE):
    with open(results_file, "a") as f:
        f.write(json.dumps(result_data) + "\n")


async def resolve_app(
    app: Dict[str, str],
    chain: ScreenshotChain,
    force_refresh: bool = False,
    skip_validation: bool = False,
    max_retries: int = MAX_RETRIES,
    fill_missing: bool = False,
    lookup=fetch_app_record,
) -> Dict[str, Any]:
    """Look one app up and resolve its screenshots; failures become a status, never an exception"""
    app_id, country = app['app_id'], app['country']
    result_data: Dict[str, Any] = {
        'app_id': app_id,
        'country': country,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }

    try:
        record = await lookup(app_id, country)
    except NotFoundError as e:
        logging.warning(f"✗ {app_id} ({country}): not found")
        result_data.update({'status': 'NOT_FOUND', 'error': e.message})
        return result_data
    except ScreenshotResolverError as e:
        logging.error(f"✗ {app_id} ({country}): lookup failed: {e.message}")
        result_data.update({'status': 'ERROR', 'error': e.message})
        return result_data

    subject_id = str(record.id or app_id)
    if fill_missing:
        record = await fill_missing_platforms(record, subject_id, country)

    result = await chain.resolve(
        record,
        subject_id,
        country,
        force_refresh=force_refresh,
        skip_validation=skip_validation,
        max_retries=max_retries,
    )
    result_data.update(result.to_dict())
    result_data['title'] = record.title
    result_data['status'] = 'FALLBACK' if result.warning else 'SUCCESS'
    logging.info(
        f"✓ {app_id} ({country}): {result_data['status']} via {result.source} - "
        f"{len(result.screenshots)} phone, {len(result.tablet_screenshots)} tablet, "
        f"{len(result.tv_screenshots)} tv"
    )
    return result_data


async def process_apps(
    apps: List[Dict[str, str]],
    chain: Optional[ScreenshotChain] = None,
    results_file: str = RESULTS_FILE,
    **options,
) -> List[Dict[str, Any]]:
    """
    Resolve every app in order and append each result as it completes

    Args:
        apps: List of {'app_id', 'country'} dictionaries
        chain: Resolution chain (the process-wide default when omitted)
        results_file: JSON-lines file results are appended to
        **options: force_refresh / skip_validation / max_retries / fill_missing / lookup, passed to resolve_app

    Returns:
        The result dictionaries, in input order
    """
    if not apps:
        logging.info("No apps to process.")
        return []

    chain = chain or get_default_chain()
    results = []
    for index, app in enumerate(apps, start=1):
        logging.info(f"[{index}/{len(apps)}] Resolving screenshots for {app['app_id']} ({app['country']})")
        try:
            result_data = await resolve_app(app, chain, **options)
        except Exception as e:
            logging.exception(f"✗ Error processing app '{app['app_id']}': {e}")
            result_data = {'app_id': app['app_id'], 'country': app['country'], 'status': 'ERROR', 'error': str(e)}
        append_result(result_data, results_file)
        results.append(result_data)

    succeeded = sum(1 for r in results if r.get('status') == 'SUCCESS')
    logging.info(f"Completed {len(results)} apps: {succeeded} resolved, {len(results) - succeeded} with fallback or errors")
    return results


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Resolve App Store screenshots for a batch of apps.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
CSV Format:
  - app_id: iTunes track id or bundle id (required)
  - country: Store country code (optional)

Example CSV:
  app_id,country
  6446901002,us
  com.burbn.barcelona,gb

Examples:
  screenshot-resolver apps.csv --output results.jsonl
  screenshot-resolver --app-id 6446901002 --app-id 284882215 --force-refresh
        """
    )
    parser.add_argument(
        "csv_file",
        type=str,
        nargs="?",
        help="Path to CSV file containing apps to resolve"
    )
    parser.add_argument(
        "--app-id",
        action="append",
        default=[],
        dest="app_ids",
        help="App id to resolve (can be repeated)"
    )
    parser.add_argument(
        "--country",
        default="us",
        help="Default store country code (default: us)"
    )
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Ignore lookup screenshots and scrape the product page"
    )
    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Accept candidates without validating them against the live store"
    )
    parser.add_argument(
        "--fill-missing",
        action="store_true",
        help="Scrape the product page for platforms the lookup returned no screenshots for"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=MAX_RETRIES,
        help=f"Scrape attempts before falling back (default: {MAX_RETRIES})"
    )
    parser.add_argument(
        "--output",
        default=RESULTS_FILE,
        help=f"JSON-lines file results are appended to (default: {RESULTS_FILE})"
    )

    args = parser.parse_args(argv)

    # Load environment variables
    load_dotenv()

    # Configure logging
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if not args.csv_file and not args.app_ids:
        parser.error("provide a CSV file and/or at least one --app-id")

    apps: List[Dict[str, str]] = []
    if args.csv_file:
        if not os.path.exists(args.csv_file):
            logging.error(f"CSV file not found: {args.csv_file}")
            return
        try:
            apps.extend(read_csv_apps(args.csv_file, args.country))
        except ValueError as e:
            logging.error(str(e))
            return
    apps.extend({'app_id': app_id.strip(), 'country': args.country} for app_id in args.app_ids if app_id.strip())

    asyncio.run(process_apps(
        apps,
        results_file=args.output,
        force_refresh=args.force_refresh,
        skip_validation=args.skip_validation,
        fill_missing=args.fill_missing,
        max_retries=args.max_retries,
    ))


if __name__ == "__main__":
    main()
