"""CLI script to load questions into the backend DB.

Usage:
    python scripts/import_questions.py FILE [FILE ...] [--dry-run]
    python scripts/import_questions.py --seed [--force]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `compliance` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from compliance.database import engine, create_db_and_tables
from compliance import services
from compliance.utils.question_seed import QuestionSeeder


def main(paths, seed: bool = False, force: bool = False, dry_run: bool = False) -> int:
    """Import each JSON/CSV file in `paths`, or seed the default bank.

    Results are printed to stdout for a quick CLI feedback loop. Returns
    the process exit code.
    """
    create_db_and_tables()
    with Session(engine) as session:
        if seed:
            seeder = QuestionSeeder(session)
            print(seeder.force_seed() if force else seeder.reconcile())
            return 0
        svc = services.ImportService(session)
        failed = 0
        total_created = 0
        for p in paths:
            f = pathlib.Path(p)
            try:
                result = svc.import_file(f.read_bytes(), f.name, dry_run=dry_run)
            except (OSError, ValueError) as e:
                print(f'Error importing {f}: {e}')
                failed += 1
                continue
            total_created += result['created']
            print(f"Imported {f}: created {result['created']}, skipped {result['skipped']}, "
                  f"errors {len(result['errors'])}")
            for err in result['errors']:
                print(f"  item {err['index']}: {err['error']}")
        print(f'Total created questions: {total_created}' + (' (dry run)' if dry_run else ''))
        return 1 if failed else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('files', nargs='*', help='JSON or CSV question files')
    parser.add_argument('--seed', action='store_true', help='Reconcile the default question bank')
    parser.add_argument('--force', action='store_true', help='With --seed: delete all questions first')
    parser.add_argument('--dry-run', action='store_true', help='Validate files without writing')
    args = parser.parse_args()
    if not args.files and not args.seed:
        parser.error('give at least one file or --seed')
    sys.exit(main(args.files, seed=args.seed, force=args.force, dry_run=args.dry_run))
