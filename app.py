"""Command line entry point for the AutoRental marketplace.

    # Create the tables and load demo data
    python app.py --init-db
    python app.py --seed

    # Start the development server
    python app.py

The same maintenance tasks are available as ``flask --app app <command>``.
"""

import argparse

from autorental import create_app
from autorental.commands import (archive_expired_promotions, init_db, seed_demo_data,
                                 send_booking_reminders)


app = create_app()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Car rental marketplace")
    parser.add_argument('--init-db', action='store_true', help='Initialise the database')
    parser.add_argument('--seed', action='store_true', help='Load demo data')
    parser.add_argument('--archive-promotions', action='store_true',
                        help='Archive expired or used-up promotions')
    parser.add_argument('--send-reminders', action='store_true',
                        help='Remind customers of pickups due in about 24 hours')
    args = parser.parse_args()
    if args.init_db or args.seed or args.archive_promotions or args.send_reminders:
        with app.app_context():
            if args.init_db:
                init_db()
            if args.seed:
                seed_demo_data()
            if args.archive_promotions:
                print(f'Archived {archive_expired_promotions()} promotion(s).')
            if args.send_reminders:
                print(f'Sent {send_booking_reminders()} reminder(s).')
    else:
        app.run(debug=True)
