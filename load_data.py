#!/usr/bin/env python3
"""
Roster loader for CyberHunt
Registers participants from a CSV file (username,password,group_code) into the SQLite store
"""

import argparse
import csv
import os
import sqlite3
import sys

from models.storage import create_storage
from models.users import register_user
from models.groups import GROUP_CODES

REQUIRED_COLUMNS = ('username', 'password', 'group_code')


def clean_value(value):
    """Clean CSV values"""
    if value is None:
        return None

    # Remove BOM if present
    if value.startswith('﻿'):
        value = value[1:]

    value = value.strip()
    if not value or value.upper() == 'N/A':
        return None
    return value


def load_roster(storage, rows):
    """Register every valid row; returns counts of created and skipped rows"""
    created = 0
    skipped = 0
    for line_number, row in enumerate(rows, start=2):
        username = clean_value(row.get('username'))
        password = clean_value(row.get('password'))
        group_code = clean_value(row.get('group_code'))

        if not username and not password and not group_code:
            continue

        if group_code not in GROUP_CODES:
            print(f"Warning: line {line_number}: invalid group '{group_code}', skipping...")
            skipped += 1
            continue

        try:
            register_user(storage, username, password, group_code)
            created += 1
        except ValueError as e:
            print(f"Warning: line {line_number}: {e}, skipping...")
            skipped += 1

    return {'created': created, 'skipped': skipped}


def read_roster(path):
    with open(path, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        fieldnames = [clean_value(name) for name in (reader.fieldnames or [])]
        missing = [column for column in REQUIRED_COLUMNS if column not in fieldnames]
        if missing:
            raise ValueError(f"Roster is missing columns: {', '.join(missing)}")
        reader.fieldnames = fieldnames
        return list(reader)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Register CyberHunt participants from a CSV roster')
    parser.add_argument('roster', help='CSV file with username,password,group_code columns')
    parser.add_argument('--database', help='SQLite database path (defaults to HUNT_DATABASE)')
    args = parser.parse_args(argv)

    print("CyberHunt Roster Loader")
    print("=======================")

    if not os.path.exists(args.roster):
        print(f"Error: {args.roster} not found!")
        return 1

    try:
        rows = read_roster(args.roster)
        storage = create_storage('sqlite', args.database)
        result = load_roster(storage, rows)
    except (OSError, ValueError, sqlite3.Error) as e:
        print(f"Error during roster loading: {e}")
        return 1

    print(f"Registered {result['created']} participants, skipped {result['skipped']}")
    print(f"Database: {storage.database}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
