#!/usr/bin/env python3
"""
Database CLI for Accessible Places
Commands for initializing, importing, reviewing and checking the DuckDB database
"""
import argparse
import json
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from accessible_places import config, geo, utils
from accessible_places.database import DatabaseManager, LocationQueries, Location, Author
from accessible_places.database.migrate import LocationImporter, rebuild_aggregates
from accessible_places.gamification import get_experience_service
from accessible_places.reviews import ReviewAggregator
from accessible_places.transformers import build_feature_index, rating_tier

logger = logging.getLogger("accessible_places.cli")


def _db_path(args) -> Path:
    return Path(args.db) if args.db else config.DEFAULT_DB_PATH


def _require_db(args) -> bool:
    if not _db_path(args).exists():
        print(f"❌ Database not found: {_db_path(args)}")
        print("   Run 'db_cli.py init' first")
        return False
    return True


def cmd_init(args):
    """Initialize database schema"""
    db_path = _db_path(args)
    print(f"🗄️  Initializing database: {db_path}")

    with DatabaseManager(db_path) as db:
        db.initialize_schema()
        stats = db.get_table_stats()

    print("✅ Database initialized!")
    print(f"   Current stats: {stats}")
    return 0


def cmd_import(args):
    """Import exported location or review documents"""
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"❌ Input file not found: {input_path}")
        return 1
    if not _require_db(args):
        return 1

    with DatabaseManager(_db_path(args)) as db:
        results = LocationImporter(db).import_file(input_path, kind=args.kind)
        print(f"✅ Imported {results['imported']:,} {args.kind} ({results['skipped']} skipped)")
        if "without_coordinates" in results:
            print(f"   Without usable coordinates: {results['without_coordinates']}")

        has_reviews = args.kind == "reviews" or db.get_table_stats()["reviews"] > 0
        if has_reviews and not args.no_rebuild:
            fixed = rebuild_aggregates(db)
            print(f"   Rebuilt aggregates for {len(fixed)} location(s)")

    return 0


def cmd_add_location(args):
    """Create a location or update its details (ratings are kept)"""
    if not _require_db(args):
        return 1

    location = Location(
        location_id=args.id,
        name=args.name,
        address=args.address or "",
        place_type=args.type,
        latitude=args.lat,
        longitude=args.lng,
        location_raw=args.location,
        accessibility_features=[f.strip() for f in (args.features or "").split(",") if f.strip()],
    )
    with DatabaseManager(_db_path(args)) as db:
        db.upsert_location(location)

    print(f"✅ Location saved: {location.location_id}")
    return 0


def cmd_review(args):
    """Submit a review for a location"""
    if not _require_db(args):
        return 1

    feature_ratings = {}
    for item in args.feature or []:
        key, _, value = item.partition("=")
        try:
            feature_ratings[key.strip()] = float(value)
        except ValueError:
            print(f"❌ Invalid feature rating: {item} (expected key=value)")
            return 1

    author = Author(user_id=args.user, display_name=args.name, photo_ref=args.photo)
    payload = {"rating": args.rating, "comment": args.comment, "feature_ratings": feature_ratings}

    with DatabaseManager(_db_path(args)) as db:
        aggregator = ReviewAggregator(db, get_experience_service(db))
        try:
            review = aggregator.submit(args.location_id, author, payload)
        except utils.ValidationError as e:
            print(f"❌ Invalid review: {e}")
            return 1
        except utils.LocationNotFound as e:
            print(f"❌ {e}")
            return 1
        except utils.TransactionConflict as e:
            print(f"❌ Could not save review, please try again: {e}")
            return 1

        location = db.get_location(args.location_id)

    print(f"✅ Review saved: {review.review_id}")
    print(f"   Location rating: {location['rating']:.2f} ({location['review_count']} reviews)")
    return 0


def cmd_show(args):
    """Show a location with coordinates, badge and feature ratings"""
    if not _require_db(args):
        return 1

    with DatabaseManager(_db_path(args), read_only=True) as db:
        location = db.get_location(args.location_id)
        if location is None:
            print(f"❌ Location not found: {args.location_id}")
            return 1
        reviews = db.get_reviews(args.location_id, limit=args.reviews)

    coords = geo.extract_coordinates(location)
    print(f"\n📍 {location['name']} ({location['location_id']})")
    print(f"   Address: {location['address'] or '-'}")
    if coords:
        print(f"   Coordinates: {coords['latitude']:.6f}, {coords['longitude']:.6f}")
        print(f"   Map: {geo.maps_url(location)}")
    else:
        print("   Coordinates: not available")
    print(f"   Rating: {location['rating']:.1f} [{rating_tier(location['rating'])}] "
          f"- {location['review_count']} reviews")

    index = build_feature_index(location)
    if index:
        print("\n♿ Accessibility features:")
        for row in index:
            average = f"{row['average']:.1f}" if row["average"] is not None else "N/A"
            print(f"   {row['label']}: {average} ({row['bucket']})")

    if reviews:
        print("\n💬 Latest reviews:")
        for review in reviews:
            print(f"   {review['author_name']} - {review['rating']:.1f} - {review['comment'] or ''}")
    return 0


def cmd_stats(args):
    """Show database statistics"""
    if not _require_db(args):
        return 1

    with DatabaseManager(_db_path(args), read_only=True) as db:
        queries = LocationQueries(db)

        print("📊 Table Statistics:")
        for table, count in db.get_table_stats().items():
            print(f"   {table}: {count:,}")

        overview = queries.get_overview_stats()
        print("\n📈 Overview:")
        print(f"   Locations: {overview['total_locations']:,} ({overview['reviewed_locations']:,} reviewed)")
        print(f"   Reviews: {overview['total_reviews']:,} by {overview['total_authors']:,} authors")
        print(f"   Average Rating: {overview['avg_rating']:.2f}")

        top = queries.top_rated(limit=args.top)
        if not top.empty:
            print("\n🏆 Top rated:")
            print(top.to_string(index=False))
    return 0


def cmd_verify(args):
    """Check stored aggregates against the reviews"""
    if not _require_db(args):
        return 1

    with DatabaseManager(_db_path(args), read_only=not args.fix) as db:
        drifted = LocationQueries(db).find_inconsistent_locations()
        if not drifted:
            print("✅ All location aggregates match their reviews")
            return 0

        print(f"⚠️  {len(drifted)} location(s) out of sync:")
        for entry in drifted:
            print(json.dumps(entry, ensure_ascii=False, default=str))

        if args.fix:
            fixed = rebuild_aggregates(db)
            print(f"✅ Rebuilt {len(fixed)} location(s)")
            return 0
    return 1


def main():
    parser = argparse.ArgumentParser(
        description="Accessible Places Database CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Initialize database
  python db_cli.py init

  # Import exported documents
  python db_cli.py import data/exports/locations.json
  python db_cli.py import data/exports/reviews.ndjson --kind reviews

  # Add a location and review it
  python db_cli.py add-location loc1 "Biblioteca Mário de Andrade" --location "23.5S, 46.6W"
  python db_cli.py review loc1 --user u1 --rating 4.5 --feature wheelchair=5 --feature ramp=4

  # Inspect
  python db_cli.py show loc1
  python db_cli.py stats
  python db_cli.py verify --fix
        """
    )

    parser.add_argument("--db", help=f"Database path (default: {config.DEFAULT_DB_PATH})")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init", help="Initialize database schema")

    import_parser = subparsers.add_parser("import", help="Import exported documents (JSON or NDJSON)")
    import_parser.add_argument("input", help="Export file")
    import_parser.add_argument("--kind", choices=["locations", "reviews"], default="locations")
    import_parser.add_argument("--no-rebuild", action="store_true", help="Don't rebuild aggregates from stored reviews after importing")

    add_parser = subparsers.add_parser("add-location", help="Create a location or update its details")
    add_parser.add_argument("id", help="Location ID")
    add_parser.add_argument("name", help="Location name")
    add_parser.add_argument("--address")
    add_parser.add_argument("--type", help="Place type (restaurant, school, ...)")
    add_parser.add_argument("--lat", type=float, help="Latitude")
    add_parser.add_argument("--lng", type=float, help="Longitude")
    add_parser.add_argument("--location", help="Legacy location string, e.g. '23.5S, 46.6W'")
    add_parser.add_argument("--features", help="Comma-separated accessibility feature keys")

    review_parser = subparsers.add_parser("review", help="Submit a review")
    review_parser.add_argument("location_id")
    review_parser.add_argument("--user", required=True, help="Author user ID")
    review_parser.add_argument("--name", help="Author display name")
    review_parser.add_argument("--photo", help="Author photo reference")
    review_parser.add_argument("--rating", type=float, required=True)
    review_parser.add_argument("--comment")
    review_parser.add_argument("--feature", action="append", help="Feature rating as key=value (repeatable)")

    show_parser = subparsers.add_parser("show", help="Show a location")
    show_parser.add_argument("location_id")
    show_parser.add_argument("--reviews", type=int, default=3, help="Number of reviews to show")

    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.add_argument("--top", type=int, default=5, help="Number of top rated locations")

    verify_parser = subparsers.add_parser("verify", help="Check aggregates against reviews")
    verify_parser.add_argument("--fix", action="store_true", help="Rewrite drifted aggregates")

    args = parser.parse_args()

    utils.setup_logging(debug=args.debug)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "init": cmd_init,
        "import": cmd_import,
        "add-location": cmd_add_location,
        "review": cmd_review,
        "show": cmd_show,
        "stats": cmd_stats,
        "verify": cmd_verify,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main() or 0)
