#!/usr/bin/env python3
"""
claimsyncctl - claimsync Operator CLI

Query and operate a claimsync service via its API.
"""
import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

import requests


class ClaimSyncCLI:
    """claimsync API client."""

    def __init__(self, api_url: str, token: str, session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip('/')
        self.token = token
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json'
        })

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make GET request to API."""
        url = f"{self.api_url}{path}"
        response = self.session.get(url, params=params)
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make POST request to API."""
        url = f"{self.api_url}{path}"
        response = self.session.post(url, json=data)
        response.raise_for_status()
        return response.json()

    def summary(self) -> None:
        """Display entry counts by state."""
        data = self._get('/v1/summary')

        print("Entry Summary")
        print("=" * 50)
        for state, count in data.get('entries', {}).items():
            print(f"  {state}: {count}")
        print()
        print(f"Scheduler: {data.get('scheduler_state', 'unknown')}")
        print(f"Max attempts: {data.get('max_attempts', 'unknown')}")

    def entry_show(self, address: str) -> None:
        """Show an entry."""
        data = self._get(f'/v1/entries/{address}')

        print(f"Entry: {address}")
        print("=" * 80)
        print(json.dumps(data, indent=2))

    def entries_stuck(self, limit: int = 100) -> int:
        """
        List entries that exhausted their attempts.

        Returns:
            Number of stuck entries listed
        """
        data = self._get('/v1/entries/stuck', params={'limit': limit})
        entries = data.get('entries', [])

        if not entries:
            print("No stuck entries.")
            return 0

        print(f"Stuck Entries (attempts > {data.get('max_attempts')})")
        print("=" * 80)

        for entry in entries:
            print(f"Address: {entry.get('address')}")
            print(f"  Attempts: {entry.get('attempt_count')}")
            print(f"  Last attempt: {entry.get('last_attempt_at')}")
            print()

        return len(entries)

    def entry_resolve(self, address: str) -> None:
        """Trigger one resolution attempt for an entry."""
        data = self._post(f'/v1/entries/{address}/resolve')

        if data.get('resolved'):
            print(f"Resolved {address} -> {data.get('claim_id')}")
        else:
            print(f"Attempt for {address} failed at {data.get('stage')}: {data.get('error')}")

    def addresses_register(self, addresses: List[str]) -> None:
        """Register discovered addresses."""
        data = self._post('/v1/addresses', {'addresses': addresses})

        print(f"Registered {data.get('registered', 0)} new of {data.get('received', 0)} address(es)")

    def claim_show(self, claim_id: str) -> None:
        """Show a claim."""
        data = self._get(f'/v1/claims/{claim_id}')
        print(json.dumps(data, indent=2))

    def claim_submit(self, path: str) -> None:
        """Submit a claim from a JSON file."""
        with open(path, 'r') as f:
            claim = json.load(f)

        data = self._post('/v1/claims', claim)
        print(f"Stored claim {data.get('claim_id')} at {data.get('address')}")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='claimsync Operator CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--api-url',
        default=os.environ.get('CLAIMSYNC_API_URL', 'http://localhost:8000'),
        help='API URL (default: $CLAIMSYNC_API_URL or http://localhost:8000)'
    )

    parser.add_argument(
        '--token',
        default=os.environ.get('CLAIMSYNC_API_TOKEN'),
        help='API authentication token (default: $CLAIMSYNC_API_TOKEN)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    subparsers.add_parser('summary', help='Display entry counts by state')

    entry_show_parser = subparsers.add_parser('entry-show', help='Show an entry')
    entry_show_parser.add_argument('address', help='Content address')

    stuck_parser = subparsers.add_parser('entries-stuck', help='List entries that exhausted their attempts')
    stuck_parser.add_argument('--limit', type=int, default=100, help='Number of entries to show (default: 100)')
    stuck_parser.add_argument('--fail-if-any', action='store_true', help='Exit 2 when stuck entries exist')

    resolve_parser = subparsers.add_parser('entry-resolve', help='Run one resolution attempt for an entry')
    resolve_parser.add_argument('address', help='Content address')

    register_parser = subparsers.add_parser('addresses-register', help='Register discovered addresses')
    register_parser.add_argument('addresses', nargs='+', help='Content addresses')

    claim_show_parser = subparsers.add_parser('claim-show', help='Show a claim by id')
    claim_show_parser.add_argument('claim_id', help='Claim ID')

    claim_submit_parser = subparsers.add_parser('claim-submit', help='Submit a signed claim from a JSON file')
    claim_submit_parser.add_argument('path', help='Path to claim JSON')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if not args.token:
        print("Error: CLAIMSYNC_API_TOKEN not set", file=sys.stderr)
        print("Set via --token or CLAIMSYNC_API_TOKEN environment variable", file=sys.stderr)
        sys.exit(1)

    cli = ClaimSyncCLI(args.api_url, args.token)

    try:
        if args.command == 'summary':
            cli.summary()
        elif args.command == 'entry-show':
            cli.entry_show(args.address)
        elif args.command == 'entries-stuck':
            stuck = cli.entries_stuck(limit=args.limit)
            if stuck and args.fail_if_any:
                sys.exit(2)
        elif args.command == 'entry-resolve':
            cli.entry_resolve(args.address)
        elif args.command == 'addresses-register':
            cli.addresses_register(args.addresses)
        elif args.command == 'claim-show':
            cli.claim_show(args.claim_id)
        elif args.command == 'claim-submit':
            cli.claim_submit(args.path)
    except requests.exceptions.HTTPError as e:
        print(f"API Error: {e}", file=sys.stderr)
        if e.response is not None:
            print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except (requests.exceptions.RequestException, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
